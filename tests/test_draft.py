import pytest

from despachante.errors import ResolutionError, ValidationError
from despachante.models import db, Contract
from despachante.services.draft_service import (
    STEP_EDIT, STEP_PREVIEW, STEP_SELECT, ContractDraft, DraftRepository,
)
from despachante.services.entity_store import EntityStore
from despachante.services.generation_service import GeneratedContract, GenerationService


class StubGenerator:
    def __init__(self, content='<p>gerado</p>', error=None):
        self.content = content
        self.error = error
        self.calls = []

    def generate(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return GeneratedContract(template_id=kwargs['template_id'], template_name='Modelo', content=self.content)


def ready_draft(**overrides):
    draft = ContractDraft.start(property_id=7)
    fields = dict(name='Compra e Venda', template_id=3, client_ids=[11, 12], notary_office_ids=[5])
    fields.update(overrides)
    draft.update_selection(**fields)
    return draft


def test_new_draft_starts_on_select():
    draft = ContractDraft.start(property_id=7)
    assert draft.step == STEP_SELECT
    assert draft.current_content is None
    assert not draft.can_save


def test_validation_requires_name_and_client():
    draft = ContractDraft.start(property_id=7)
    with pytest.raises(ValidationError) as exc:
        draft.advance(StubGenerator())
    assert set(exc.value.errors) == {'name', 'client_ids'}
    assert draft.step == STEP_SELECT


def test_advance_with_template_goes_to_preview_using_primary_entities():
    draft = ready_draft()
    generator = StubGenerator()
    assert draft.advance(generator) == STEP_PREVIEW
    assert draft.current_content == '<p>gerado</p>'
    assert generator.calls == [{
        'template_id': 3, 'client_id': 11, 'property_id': 7, 'notary_office_id': 5,
    }]


def test_advance_without_template_skips_preview_with_empty_content():
    draft = ready_draft(template_id=None)
    generator = StubGenerator()
    assert draft.advance(generator) == STEP_EDIT
    assert draft.current_content == ''
    assert generator.calls == []


def test_preview_to_edit_carries_generated_content():
    draft = ready_draft()
    draft.advance(StubGenerator())
    assert draft.advance(StubGenerator()) == STEP_EDIT
    assert draft.content == '<p>gerado</p>'


def test_edit_is_terminal_for_advance():
    draft = ready_draft(template_id=None)
    draft.advance(StubGenerator())
    with pytest.raises(ValidationError):
        draft.advance(StubGenerator())


def test_back_from_edit_depends_on_template():
    with_template = ready_draft()
    with_template.advance(StubGenerator())
    with_template.advance(StubGenerator())
    assert with_template.back() == STEP_PREVIEW
    assert with_template.back() == STEP_SELECT

    freeform = ready_draft(template_id=None)
    freeform.advance(StubGenerator())
    assert freeform.back() == STEP_SELECT


def test_back_from_select_is_rejected():
    with pytest.raises(ValidationError):
        ContractDraft.start(property_id=7).back()


def test_selection_locked_outside_select():
    draft = ready_draft()
    draft.advance(StubGenerator())
    with pytest.raises(ValidationError):
        draft.update_selection(name='Outro')


def test_content_editable_only_in_edit():
    draft = ready_draft()
    draft.advance(StubGenerator())
    with pytest.raises(ValidationError):
        draft.set_content('<p>x</p>')
    draft.advance(StubGenerator())
    draft.set_content('<p>editado</p>')
    assert draft.save_fields()['content'] == '<p>editado</p>'


def test_preview_saves_generated_content():
    draft = ready_draft()
    draft.advance(StubGenerator())
    fields = draft.save_fields()
    assert fields['content'] == '<p>gerado</p>'
    assert fields['client_ids'] == [11, 12]
    assert fields['contract_id'] is None


def test_cannot_save_from_select():
    with pytest.raises(ValidationError):
        ready_draft().save_fields()


def test_generation_failure_stays_on_select_with_error(app_ctx):
    draft = ready_draft()
    with pytest.raises(ResolutionError):
        draft.advance(StubGenerator(error=ResolutionError('template')))
    assert draft.step == STEP_SELECT
    assert draft.error == 'Modelo não encontrado'


def test_round_trip_through_dict():
    draft = ready_draft()
    draft.advance(StubGenerator())
    restored = ContractDraft.from_dict(draft.to_dict())
    assert restored.to_dict() == draft.to_dict()


def test_open_existing_is_edit_only(app_ctx, seed):
    store = EntityStore()
    contract_id = store.create_contract(
        name='Rascunho', property_id=seed['property_id'], content='<p>salvo</p>',
        client_ids=[seed['client_id']],
    )
    draft = ContractDraft.open_existing(store.get_contract(contract_id))

    assert draft.step == STEP_EDIT
    assert draft.steps == (STEP_EDIT,)
    assert draft.current_content == '<p>salvo</p>'
    with pytest.raises(ValidationError):
        draft.back()
    assert draft.save_fields()['contract_id'] == contract_id


def test_open_existing_rejects_final_contract(app_ctx, seed):
    store = EntityStore()
    contract_id = store.create_contract(
        name='Final', property_id=seed['property_id'], content='x', status='final',
        client_ids=[seed['client_id']],
    )
    with pytest.raises(ValidationError):
        ContractDraft.open_existing(db.session.get(Contract, contract_id))


def test_generation_against_database(app_ctx, seed):
    draft = ContractDraft.start(seed['property_id'])
    draft.update_selection(
        name='Compra', template_id=seed['template_id'],
        client_ids=[seed['client_id']], notary_office_ids=[seed['notary_office_id']],
    )
    draft.advance(GenerationService())
    assert 'Comprador: Ana Silva, CPF 123.456.789-01, Casado(a).' in draft.content
    assert 'CEP 30130-000' in draft.content
    assert 'Cartório: 1º Ofício de Notas' in draft.content


def test_missing_client_blocks_generation(app_ctx, seed):
    draft = ContractDraft.start(seed['property_id'])
    draft.update_selection(name='Compra', template_id=seed['template_id'], client_ids=[9999])
    with pytest.raises(ResolutionError) as exc:
        draft.advance(GenerationService())
    assert exc.value.field == 'client'
    assert draft.generated_content == ''


def test_repository_keeps_one_draft_per_user(app_ctx, seed):
    repo = DraftRepository()
    repo.save(seed['user_id'], ready_draft(name='Primeiro'))
    repo.save(seed['user_id'], ready_draft(name='Segundo'))

    assert repo.load(seed['user_id']).name == 'Segundo'
    assert repo.discard(seed['user_id']) is True
    assert repo.load(seed['user_id']) is None
    assert repo.discard(seed['user_id']) is False
