"""
Contract lifecycle: save as draft, finalize (persist -> render -> upload ->
attach -> register), retry a failed finalize, sign and delete.

Finalizing is not a transaction. The text is saved first and is never rolled
back by a later failure; every step records its outcome on the contract so a
retry can resume from the first step that did not complete.
"""
import json
from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from despachante.errors import NotFoundError, RenderError, UploadError, ValidationError
from despachante.models import (
    db, get_now_br, CONTRACT_STATUS_DRAFT, CONTRACT_STATUS_FINAL, CONTRACT_STATUS_SIGNED,
)
from despachante.services import document_service
from despachante.services.entity_store import EntityStore
from despachante.services.pdf_service import PdfService
from despachante.services.storage_service import get_storage

PDF_MIME_TYPE = 'application/pdf'

STEP_PERSIST = 'persist_content'
STEP_RENDER = 'render_pdf'
STEP_UPLOAD = 'upload_pdf'
STEP_ATTACH = 'attach_artifact'
STEP_REGISTER = 'register_document'

FINALIZE_STEPS = (STEP_PERSIST, STEP_RENDER, STEP_UPLOAD, STEP_ATTACH, STEP_REGISTER)

STEP_PENDING = 'pending'
STEP_OK = 'ok'
STEP_FAILED = 'failed'

ERROR_RENDER = 'render'
ERROR_UPLOAD = 'upload'
ERROR_INTERNAL = 'internal'

FINAL_STATUSES = (CONTRACT_STATUS_FINAL, CONTRACT_STATUS_SIGNED)


@dataclass
class StepOutcome:
    name: str
    status: str = STEP_PENDING
    error: Optional[str] = None
    at: Optional[str] = None
    data: dict = field(default_factory=dict)

    def to_dict(self):
        return {'name': self.name, 'status': self.status, 'error': self.error, 'at': self.at, 'data': self.data}

    @classmethod
    def from_dict(cls, raw):
        return cls(
            name=raw['name'],
            status=raw.get('status', STEP_PENDING),
            error=raw.get('error'),
            at=raw.get('at'),
            data=raw.get('data') or {},
        )


class FinalizeSaga:
    def __init__(self, steps=None):
        self.steps = steps or [StepOutcome(name) for name in FINALIZE_STEPS]

    @classmethod
    def from_contract(cls, contract):
        raw = contract.steps
        if not raw:
            return cls()
        by_name = {item['name']: StepOutcome.from_dict(item) for item in raw}
        return cls([by_name.get(name, StepOutcome(name)) for name in FINALIZE_STEPS])

    def get(self, name):
        return next(step for step in self.steps if step.name == name)

    def mark(self, name, status, error=None, **data):
        step = self.get(name)
        step.status = status
        step.error = error
        step.at = get_now_br().isoformat()
        if data:
            step.data = data
        return step

    def first_incomplete(self):
        for step in self.steps:
            if step.status != STEP_OK:
                return step.name
        return None

    @property
    def completed(self):
        return self.first_incomplete() is None

    def to_json(self):
        return json.dumps([step.to_dict() for step in self.steps])


@dataclass
class FinalizeResult:
    contract_id: int
    status: str
    steps: list
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self):
        return self.error_kind is None

    def to_dict(self):
        return {
            'contract_id': self.contract_id,
            'status': self.status,
            'steps': [step.to_dict() for step in self.steps],
            'error_kind': self.error_kind,
            'error': self.error,
        }


class ContractService:
    def __init__(self, store=None, pdf_service=None, storage=None):
        self.store = store or EntityStore()
        self.pdf_service = pdf_service or PdfService()
        self._storage = storage

    @property
    def storage(self):
        return self._storage or get_storage()

    def _persist(self, fields, status):
        fields = dict(fields)
        contract_id = fields.pop('contract_id', None)
        if contract_id:
            self.store.update_contract(contract_id, status=status, **fields)
            return contract_id
        return self.store.create_contract(status=status, **fields)

    def save_draft(self, fields):
        """Persists content with status draft. No rendering."""
        if fields.get('contract_id'):
            contract = self.store.require_contract(fields['contract_id'])
            if contract.status != CONTRACT_STATUS_DRAFT:
                raise ValidationError("Contrato finalizado não pode voltar a rascunho", field='status')
        contract_id = self._persist(fields, CONTRACT_STATUS_DRAFT)
        current_app.logger.info(f"Contract {contract_id} saved as draft")
        return contract_id

    def finalize(self, fields, status=CONTRACT_STATUS_FINAL):
        """
        Saves the edited content with a terminal status, then renders and stores the PDF.
        Render/upload failures leave the contract finalized without an artifact.
        """
        if status not in FINAL_STATUSES:
            raise ValidationError(f"Status de finalização inválido: {status}", field='status')

        saga = FinalizeSaga()
        contract_id = self._persist(fields, status)
        saga.mark(STEP_PERSIST, STEP_OK)
        self.store.update_contract(contract_id, finalize_steps=saga.to_json())

        return self._run(contract_id, saga)

    def retry_finalize(self, contract_id):
        contract = self.store.require_contract(contract_id)
        if contract.status not in FINAL_STATUSES:
            raise ValidationError("Somente contratos finalizados podem gerar PDF", field='status')

        saga = FinalizeSaga.from_contract(contract)
        if saga.get(STEP_PERSIST).status != STEP_OK:
            saga.mark(STEP_PERSIST, STEP_OK)
        if saga.completed:
            return FinalizeResult(contract_id=contract.id, status=contract.status, steps=saga.steps)

        current_app.logger.info(f"Retrying finalize of contract {contract_id} from '{saga.first_incomplete()}'")
        return self._run(contract_id, saga)

    def _run(self, contract_id, saga):
        start = saga.first_incomplete()
        pending = list(FINALIZE_STEPS[FINALIZE_STEPS.index(start):]) if start else []
        # The rendered bytes are never stored, so redoing the upload means rendering again
        if STEP_UPLOAD in pending and STEP_RENDER not in pending:
            pending.insert(0, STEP_RENDER)

        pdf_bytes = None
        error_kind = error = None

        for name in pending:
            try:
                if name == STEP_RENDER:
                    contract = self.store.require_contract(contract_id)
                    pdf_bytes = self.pdf_service.render(contract.content)
                    saga.mark(STEP_RENDER, STEP_OK, size=len(pdf_bytes))

                elif name == STEP_UPLOAD:
                    destination = self.storage.request_upload_destination()
                    storage_id = self.storage.upload(destination, pdf_bytes, PDF_MIME_TYPE)
                    saga.mark(STEP_UPLOAD, STEP_OK, storage_id=storage_id, size=len(pdf_bytes))

                elif name == STEP_ATTACH:
                    uploaded = saga.get(STEP_UPLOAD).data
                    contract = self.store.require_contract(contract_id)
                    previous = contract.pdf_storage_id
                    self.store.update_contract(
                        contract_id, pdf_storage_id=uploaded['storage_id'], pdf_size=uploaded['size']
                    )
                    if previous and previous != uploaded['storage_id']:
                        document_service.drop_blob_if_unreferenced(previous)
                    saga.mark(STEP_ATTACH, STEP_OK, storage_id=uploaded['storage_id'])

                elif name == STEP_REGISTER:
                    uploaded = saga.get(STEP_UPLOAD).data
                    document_id = document_service.attach(
                        contract_id, uploaded['storage_id'], PDF_MIME_TYPE, uploaded['size']
                    )
                    saga.mark(STEP_REGISTER, STEP_OK, document_id=document_id)

            except RenderError as e:
                error_kind, error = ERROR_RENDER, e.message
            except UploadError as e:
                error_kind, error = ERROR_UPLOAD, e.message
            except Exception as e:
                # The step outcome is written through the same session
                db.session.rollback()
                current_app.logger.exception(f"Finalize step '{name}' crashed for contract {contract_id}")
                error_kind, error = ERROR_INTERNAL, f"Erro ao finalizar contrato: {e}"

            if error_kind:
                saga.mark(name, STEP_FAILED, error=error)
                current_app.logger.error(f"Contract {contract_id} finalize failed at '{name}': {error}")
                break

        self.store.update_contract(contract_id, finalize_steps=saga.to_json())
        contract = self.store.require_contract(contract_id)
        if not error_kind:
            current_app.logger.info(f"Contract {contract_id} finalized with PDF {contract.pdf_storage_id}")
        return FinalizeResult(
            contract_id=contract_id,
            status=contract.status,
            steps=saga.steps,
            error_kind=error_kind,
            error=error,
        )

    def sign(self, contract_id):
        contract = self.store.require_contract(contract_id)
        if contract.status != CONTRACT_STATUS_FINAL:
            raise ValidationError("Somente contratos finalizados podem ser assinados", field='status')
        self.store.update_contract(contract_id, status=CONTRACT_STATUS_SIGNED)
        current_app.logger.info(f"Contract {contract_id} signed")

    def delete(self, contract_id):
        """Hard delete. The PDF blob and the linked property document go with it."""
        contract = self.store.require_contract(contract_id)
        storage_id = contract.pdf_storage_id

        document_service.detach(contract_id)
        self.store.delete_contract(contract_id)
        document_service.drop_blob_if_unreferenced(storage_id)
        current_app.logger.info(f"Contract {contract_id} deleted")

    def get_download_url(self, contract_id):
        contract = self.store.require_contract(contract_id)
        if not contract.pdf_storage_id:
            raise NotFoundError("PDF do contrato")
        url = self.storage.get_download_url(contract.pdf_storage_id)
        if not url:
            raise NotFoundError("PDF do contrato")
        return url
