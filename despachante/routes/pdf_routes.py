import os
from flask import Blueprint, send_file, redirect, current_app, abort
from flask_login import login_required

from despachante.services.contract_service import ContractService
from despachante.services.storage_service import LocalBlobStorage, get_storage

pdf_bp = Blueprint('pdf', __name__)
storage_bp = Blueprint('storage', __name__)


@pdf_bp.route('/api/contracts/<int:id>/pdf')
@login_required
def download_contract_pdf(id):
    """
    Redirects to the stored PDF of a finalized contract.
    """
    url = ContractService().get_download_url(id)
    return redirect(url)


@storage_bp.route('/api/storage/<path:storage_id>')
@login_required
def download_blob(storage_id):
    """Serves blobs for the local storage backend."""
    storage = get_storage()
    if not isinstance(storage, LocalBlobStorage):
        abort(404)

    try:
        path = storage.path_for(storage_id)
    except ValueError:
        abort(404)
    if not os.path.exists(path):
        abort(404)

    current_app.logger.info(f"Serving stored blob {storage_id}")
    return send_file(
        path,
        mimetype='application/pdf',
        as_attachment=True,
        download_name=os.path.basename(storage_id),
    )
