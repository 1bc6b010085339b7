"""
Authoring workflow for a contract: select -> preview -> edit.

A ContractDraft only holds in-memory state. Nothing is persisted until the
caller hands `current_content` to the ContractService (save as draft or
finalize). Closing a draft simply drops it.
"""
import json
from flask import current_app

from despachante.errors import ResolutionError, ValidationError
from despachante.models import db, ContractDraftState, CONTRACT_STATUS_DRAFT

STEP_SELECT = 'select'
STEP_PREVIEW = 'preview'
STEP_EDIT = 'edit'

STEPS = (STEP_SELECT, STEP_PREVIEW, STEP_EDIT)

STEP_CONFIG = {
    STEP_SELECT: {
        'title': 'Selecionar Dados',
        'description': 'Escolha o modelo e as informações do contrato',
    },
    STEP_PREVIEW: {
        'title': 'Visualizar Contrato',
        'description': 'Confira o contrato gerado antes de salvar',
    },
    STEP_EDIT: {
        'title': 'Editar Contrato',
        'description': 'Faça ajustes finais no texto do contrato',
    },
}

SELECTION_FIELDS = ('name', 'description', 'template_id', 'client_ids', 'notary_office_ids')


class ContractDraft:
    def __init__(self, property_id, step=STEP_SELECT, edit_only=False, contract_id=None,
                 name='', description='', template_id=None, client_ids=None, notary_office_ids=None,
                 template_name=None, generated_content='', content='', error=None):
        self.property_id = property_id
        self.step = step
        self.edit_only = edit_only
        self.contract_id = contract_id
        self.name = name or ''
        self.description = description or ''
        self.template_id = template_id
        self.client_ids = list(client_ids or [])
        self.notary_office_ids = list(notary_office_ids or [])
        self.template_name = template_name
        self.generated_content = generated_content or ''
        self.content = content or ''
        self.error = error

    @classmethod
    def start(cls, property_id):
        return cls(property_id=property_id)

    @classmethod
    def open_existing(cls, contract):
        """A persisted draft opens straight into edit, with no select/preview steps."""
        if contract.status != CONTRACT_STATUS_DRAFT:
            raise ValidationError("Somente contratos em rascunho podem ser editados", field='status')
        return cls(
            property_id=contract.property_id,
            step=STEP_EDIT,
            edit_only=True,
            contract_id=contract.id,
            name=contract.name,
            description=contract.description,
            template_id=contract.template_id,
            client_ids=contract.client_ids,
            notary_office_ids=contract.notary_office_ids,
            template_name=contract.template.name if contract.template else None,
            generated_content=contract.content,
            content=contract.content,
        )

    @property
    def steps(self):
        return (STEP_EDIT,) if self.edit_only else STEPS

    @property
    def primary_client_id(self):
        return self.client_ids[0] if self.client_ids else None

    @property
    def primary_notary_office_id(self):
        return self.notary_office_ids[0] if self.notary_office_ids else None

    @property
    def current_content(self):
        if self.step == STEP_EDIT:
            return self.content
        if self.step == STEP_PREVIEW:
            return self.generated_content
        return None

    @property
    def can_save(self):
        return self.step in (STEP_PREVIEW, STEP_EDIT)

    def validate(self):
        errors = {}
        if not self.name.strip():
            errors['name'] = 'Nome do contrato é obrigatório'
        if not self.client_ids:
            errors['client_ids'] = 'Selecione ao menos um cliente'
        if errors:
            field, message = next(iter(errors.items()))
            error = ValidationError(message, field=field)
            error.errors = errors
            raise error

    def update_selection(self, **fields):
        if self.step != STEP_SELECT:
            raise ValidationError("Os dados só podem ser alterados na etapa de seleção", field='step')
        unknown = set(fields) - set(SELECTION_FIELDS)
        if unknown:
            raise ValidationError(f"Campos desconhecidos: {', '.join(sorted(unknown))}")

        for key, value in fields.items():
            if key in ('client_ids', 'notary_office_ids'):
                value = list(value or [])
            elif key in ('name', 'description'):
                value = value or ''
            setattr(self, key, value)
        self.error = None

    def advance(self, generator):
        """
        select -> preview when a template is chosen (runs generation),
        select -> edit with empty content when there is none,
        preview -> edit carrying the generated content.
        """
        if self.step == STEP_SELECT:
            self.validate()
            if not self.template_id:
                self.generated_content = ''
                self.content = ''
                self.template_name = None
                self.step = STEP_EDIT
                return self.step

            try:
                generated = generator.generate(
                    template_id=self.template_id,
                    client_id=self.primary_client_id,
                    property_id=self.property_id,
                    notary_office_id=self.primary_notary_office_id,
                )
            except ResolutionError as e:
                self.error = e.message
                current_app.logger.warning(f"Contract generation aborted: {e.message}")
                raise

            self.error = None
            self.template_name = generated.template_name
            self.generated_content = generated.content
            self.content = generated.content
            self.step = STEP_PREVIEW
            return self.step

        if self.step == STEP_PREVIEW:
            self.content = self.generated_content
            self.step = STEP_EDIT
            return self.step

        raise ValidationError("O contrato já está na etapa de edição", field='step')

    def back(self):
        if self.edit_only:
            raise ValidationError("Não há etapa anterior ao editar um rascunho", field='step')
        if self.step == STEP_PREVIEW:
            self.step = STEP_SELECT
        elif self.step == STEP_EDIT:
            self.step = STEP_PREVIEW if self.template_id else STEP_SELECT
        else:
            raise ValidationError("Já está na primeira etapa", field='step')
        return self.step

    def set_content(self, content):
        if self.step != STEP_EDIT:
            raise ValidationError("O conteúdo só pode ser editado na etapa de edição", field='step')
        self.content = content or ''

    def save_fields(self):
        """Fields handed to the ContractService when the user saves or finalizes."""
        if not self.can_save:
            raise ValidationError("Gere ou escreva o contrato antes de salvar", field='step')
        self.validate()
        return {
            'contract_id': self.contract_id,
            'name': self.name.strip(),
            'description': self.description or None,
            'template_id': self.template_id,
            'property_id': self.property_id,
            'client_ids': list(self.client_ids),
            'notary_office_ids': list(self.notary_office_ids),
            'content': self.current_content,
        }

    def to_dict(self):
        return {
            'property_id': self.property_id,
            'step': self.step,
            'edit_only': self.edit_only,
            'contract_id': self.contract_id,
            'name': self.name,
            'description': self.description,
            'template_id': self.template_id,
            'client_ids': self.client_ids,
            'notary_office_ids': self.notary_office_ids,
            'template_name': self.template_name,
            'generated_content': self.generated_content,
            'content': self.content,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(**data)

    def snapshot(self):
        data = self.to_dict()
        data['steps'] = list(self.steps)
        data['step_config'] = STEP_CONFIG[self.step]
        data['can_go_back'] = not self.edit_only and self.step != STEP_SELECT
        data['can_save'] = self.can_save
        return data


class DraftRepository:
    """One open draft per user, kept in contract_draft_state."""

    def load(self, user_id):
        state = ContractDraftState.query.filter_by(user_id=user_id).first()
        if not state:
            return None
        return ContractDraft.from_dict(json.loads(state.data))

    def save(self, user_id, draft):
        state = ContractDraftState.query.filter_by(user_id=user_id).first()
        payload = json.dumps(draft.to_dict())
        if state:
            state.data = payload
        else:
            db.session.add(ContractDraftState(user_id=user_id, data=payload))
        db.session.commit()

    def discard(self, user_id):
        deleted = ContractDraftState.query.filter_by(user_id=user_id).delete()
        db.session.commit()
        return bool(deleted)
