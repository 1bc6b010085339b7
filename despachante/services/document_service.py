from flask import current_app

from despachante.errors import NotFoundError
from despachante.models import db, Contract, PropertyDocument, DOCUMENT_TYPE_CONTRACT, get_now_br
from despachante.services.storage_service import get_storage


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def get_contract_document(contract_id):
    return PropertyDocument.query.filter_by(contract_id=contract_id).first()


def attach(contract_id, storage_id, mime_type, size):
    """
    Lists a finalized contract PDF among its property's documents.
    A contract has at most one such document; a new artifact replaces the old one.
    """
    contract = db.session.get(Contract, contract_id)
    if not contract:
        raise NotFoundError("Contrato")

    document = get_contract_document(contract_id)
    if document:
        previous_storage_id = document.storage_id
        document.storage_id = storage_id
        document.mime_type = mime_type
        document.size = size
        document.name = contract.name
        document.created_at = get_now_br()
        _commit()

        if previous_storage_id and previous_storage_id != storage_id and not is_referenced(previous_storage_id):
            _drop_blob(previous_storage_id)
        return document.id

    document = PropertyDocument(
        name=contract.name,
        type=DOCUMENT_TYPE_CONTRACT,
        storage_id=storage_id,
        property_id=contract.property_id,
        mime_type=mime_type,
        size=size,
        contract_id=contract.id,
    )
    db.session.add(document)
    _commit()
    current_app.logger.info(f"Contract {contract.id} PDF listed under property {contract.property_id}")
    return document.id


def detach(contract_id):
    """Removes the contract's property document; its blob goes once nothing else points at it."""
    document = get_contract_document(contract_id)
    if not document:
        return False

    storage_id = document.storage_id
    db.session.delete(document)
    _commit()
    drop_blob_if_unreferenced(storage_id)
    return True


def is_referenced(storage_id):
    """True while a contract or property document still points at the blob."""
    return (
        Contract.query.filter_by(pdf_storage_id=storage_id).count() > 0
        or PropertyDocument.query.filter_by(storage_id=storage_id).count() > 0
    )


def drop_blob_if_unreferenced(storage_id):
    if storage_id and not is_referenced(storage_id):
        _drop_blob(storage_id)


def _drop_blob(storage_id):
    try:
        get_storage().delete(storage_id)
    except Exception as e:
        # Orphaned blob; the record change already went through
        current_app.logger.error(f"Failed to delete blob {storage_id}: {e}")
