from flask import Blueprint, request, current_app
from flask_login import login_required, current_user

from despachante.errors import ResolutionError, ValidationError
from despachante.models import CONTRACT_STATUS_FINAL
from despachante.services.contract_service import ContractService
from despachante.services.draft_service import ContractDraft, DraftRepository
from despachante.services.entity_store import EntityStore
from despachante.services.generation_service import GenerationService
from despachante.utils import api_response

contracts_bp = Blueprint('contracts', __name__)

drafts = DraftRepository()


def _contract_service():
    return ContractService(pdf_service=current_app.extensions.get('pdf_service'))


def _int_or_none(value, field):
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Identificador inválido em '{field}'", field=field)


def _int_list(values, field):
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f"'{field}' deve ser uma lista", field=field)
    return [_int_or_none(v, field) for v in values if v not in (None, '')]


def _selection_from_json(data):
    fields = {}
    if 'name' in data:
        fields['name'] = data.get('name') or ''
    if 'description' in data:
        fields['description'] = data.get('description') or ''
    if 'template_id' in data:
        fields['template_id'] = _int_or_none(data.get('template_id'), 'template_id')
    if 'client_ids' in data:
        fields['client_ids'] = _int_list(data.get('client_ids'), 'client_ids')
    if 'notary_office_ids' in data:
        fields['notary_office_ids'] = _int_list(data.get('notary_office_ids'), 'notary_office_ids')
    return fields


def _require_draft():
    draft = drafts.load(current_user.id)
    if not draft:
        raise ValidationError("Nenhum contrato em edição", field='draft')
    return draft


# --- DRAFT SESSION ---

@contracts_bp.route('/api/contracts/draft', methods=['POST'])
@login_required
def open_draft():
    data = request.get_json(silent=True) or {}
    property_id = _int_or_none(data.get('property_id'), 'property_id')
    if not property_id:
        raise ValidationError("Imóvel é obrigatório", field='property_id')
    if not EntityStore().get_property(property_id):
        raise ResolutionError('property')

    draft = ContractDraft.start(property_id)
    draft.update_selection(**_selection_from_json(data))
    drafts.save(current_user.id, draft)
    return api_response(data=draft.snapshot(), status=201)


@contracts_bp.route('/api/contracts/<int:id>/draft', methods=['POST'])
@login_required
def open_existing_draft(id):
    contract = EntityStore().require_contract(id)
    draft = ContractDraft.open_existing(contract)
    drafts.save(current_user.id, draft)
    return api_response(data=draft.snapshot(), status=201)


@contracts_bp.route('/api/contracts/draft', methods=['GET'])
@login_required
def get_draft():
    return api_response(data=_require_draft().snapshot())


@contracts_bp.route('/api/contracts/draft', methods=['PATCH'])
@login_required
def update_draft():
    draft = _require_draft()
    draft.update_selection(**_selection_from_json(request.get_json(silent=True) or {}))
    drafts.save(current_user.id, draft)
    return api_response(data=draft.snapshot())


@contracts_bp.route('/api/contracts/draft/continue', methods=['POST'])
@login_required
def continue_draft():
    draft = _require_draft()
    try:
        draft.advance(GenerationService())
    finally:
        # Keep the error message on the session so the dialog can show it
        drafts.save(current_user.id, draft)
    return api_response(data=draft.snapshot())


@contracts_bp.route('/api/contracts/draft/back', methods=['POST'])
@login_required
def back_draft():
    draft = _require_draft()
    draft.back()
    drafts.save(current_user.id, draft)
    return api_response(data=draft.snapshot())


@contracts_bp.route('/api/contracts/draft/content', methods=['PUT'])
@login_required
def update_draft_content():
    data = request.get_json(silent=True) or {}
    if 'content' not in data:
        raise ValidationError("Conteúdo é obrigatório", field='content')
    draft = _require_draft()
    draft.set_content(data.get('content'))
    drafts.save(current_user.id, draft)
    return api_response(data=draft.snapshot())


@contracts_bp.route('/api/contracts/draft/save', methods=['POST'])
@login_required
def save_draft():
    draft = _require_draft()
    contract_id = _contract_service().save_draft(draft.save_fields())
    drafts.discard(current_user.id)

    contract = EntityStore().require_contract(contract_id)
    return api_response(data={'contract': contract.to_dict(), 'message': 'Contrato salvo como rascunho'})


@contracts_bp.route('/api/contracts/draft/finalize', methods=['POST'])
@login_required
def finalize_draft():
    data = request.get_json(silent=True) or {}
    status = data.get('status') or CONTRACT_STATUS_FINAL

    draft = _require_draft()
    result = _contract_service().finalize(draft.save_fields(), status=status)
    # Text is saved at this point even if the PDF failed
    drafts.discard(current_user.id)

    contract = EntityStore().require_contract(result.contract_id)
    payload = {'contract': contract.to_dict(), 'finalize': result.to_dict()}
    if not result.ok:
        return api_response(success=False, data=payload, error=result.error)
    payload['message'] = 'Contrato finalizado com sucesso'
    return api_response(data=payload)


@contracts_bp.route('/api/contracts/draft', methods=['DELETE'])
@login_required
def close_draft():
    discarded = drafts.discard(current_user.id)
    return api_response(data={'discarded': discarded})


# --- CONTRACTS ---

@contracts_bp.route('/api/contracts/<int:id>', methods=['GET'])
@login_required
def get_contract(id):
    contract = EntityStore().require_contract(id)
    return api_response(data=contract.to_dict())


@contracts_bp.route('/api/contracts/<int:id>/finalize/retry', methods=['POST'])
@login_required
def retry_finalize(id):
    result = _contract_service().retry_finalize(id)
    contract = EntityStore().require_contract(id)
    payload = {'contract': contract.to_dict(), 'finalize': result.to_dict()}
    if not result.ok:
        return api_response(success=False, data=payload, error=result.error)
    return api_response(data=payload)


@contracts_bp.route('/api/contracts/<int:id>/sign', methods=['POST'])
@login_required
def sign_contract(id):
    _contract_service().sign(id)
    contract = EntityStore().require_contract(id)
    return api_response(data=contract.to_dict())


@contracts_bp.route('/api/contracts/<int:id>', methods=['DELETE'])
@login_required
def delete_contract(id):
    _contract_service().delete(id)
    return api_response(data={'message': 'Contrato excluído'})
