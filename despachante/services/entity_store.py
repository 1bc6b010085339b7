from flask import current_app
from despachante.errors import NotFoundError, ValidationError
from despachante.models import (
    db, Client, Contract, ContractTemplate, NotaryOffice, Property,
    contract_clients, contract_notary_offices, get_now_br,
    CONTRACT_STATUSES, CONTRACT_STATUS_DRAFT,
)

_CONTRACT_FIELDS = ('name', 'description', 'template_id', 'property_id', 'content', 'status',
                    'pdf_storage_id', 'pdf_size', 'finalize_steps')


class EntityStore:
    """
    Read/write access to the records the contract engine depends on.
    Lookups return None on a miss; contract writes commit immediately.
    """

    def get_template(self, template_id):
        return db.session.get(ContractTemplate, template_id) if template_id else None

    def get_client(self, client_id):
        return db.session.get(Client, client_id) if client_id else None

    def get_property(self, property_id):
        return db.session.get(Property, property_id) if property_id else None

    def get_notary_office(self, notary_office_id):
        return db.session.get(NotaryOffice, notary_office_id) if notary_office_id else None

    def get_contract(self, contract_id):
        return db.session.get(Contract, contract_id) if contract_id else None

    def require_contract(self, contract_id):
        contract = self.get_contract(contract_id)
        if not contract:
            raise NotFoundError("Contrato")
        return contract

    def create_contract(self, client_ids=None, notary_office_ids=None, **fields):
        """client_ids[0] is stored as the primary client."""
        unknown = set(fields) - set(_CONTRACT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown contract fields: {sorted(unknown)}")

        status = fields.get('status') or CONTRACT_STATUS_DRAFT
        if status not in CONTRACT_STATUSES:
            raise ValidationError(f"Status inválido: {status}", field='status')
        fields['status'] = status

        try:
            contract = Contract(**fields)
            db.session.add(contract)
            db.session.flush()
            self._link_clients(contract.id, client_ids or [])
            self._link_notary_offices(contract.id, notary_office_ids or [])
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(f"Contract {contract.id} created with status '{status}'")
        return contract.id

    def update_contract(self, contract_id, client_ids=None, notary_office_ids=None, **fields):
        unknown = set(fields) - set(_CONTRACT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown contract fields: {sorted(unknown)}")

        contract = self.require_contract(contract_id)

        new_status = fields.get('status')
        if new_status is not None:
            if new_status not in CONTRACT_STATUSES:
                raise ValidationError(f"Status inválido: {new_status}", field='status')
            if CONTRACT_STATUSES.index(new_status) < CONTRACT_STATUSES.index(contract.status):
                raise ValidationError("Não é possível retornar o contrato a um status anterior", field='status')

        # Content of a finalized contract is frozen, except when the same write finalizes it.
        if 'content' in fields and fields['content'] != contract.content and contract.status != CONTRACT_STATUS_DRAFT:
            if new_status is None or contract.status == new_status:
                raise ValidationError("Não é possível editar o conteúdo de um contrato finalizado", field='content')

        try:
            for key, value in fields.items():
                setattr(contract, key, value)
            contract.updated_at = get_now_br()
            if client_ids is not None:
                db.session.execute(contract_clients.delete().where(contract_clients.c.contract_id == contract.id))
                self._link_clients(contract.id, client_ids)
            if notary_office_ids is not None:
                db.session.execute(
                    contract_notary_offices.delete().where(contract_notary_offices.c.contract_id == contract.id)
                )
                self._link_notary_offices(contract.id, notary_office_ids)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if client_ids is not None or notary_office_ids is not None:
            db.session.expire(contract, ['clients', 'notary_offices'])

    def delete_contract(self, contract_id):
        contract = self.require_contract(contract_id)
        try:
            db.session.execute(contract_clients.delete().where(contract_clients.c.contract_id == contract.id))
            db.session.execute(
                contract_notary_offices.delete().where(contract_notary_offices.c.contract_id == contract.id)
            )
            db.session.delete(contract)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def _link_clients(self, contract_id, client_ids):
        seen = set()
        for index, client_id in enumerate(client_ids):
            if client_id in seen:
                continue
            seen.add(client_id)
            db.session.execute(contract_clients.insert().values(
                contract_id=contract_id, client_id=client_id, is_primary=(index == 0)
            ))

    def _link_notary_offices(self, contract_id, notary_office_ids):
        seen = set()
        for position, office_id in enumerate(notary_office_ids):
            if office_id in seen:
                continue
            seen.add(office_id)
            db.session.execute(contract_notary_offices.insert().values(
                contract_id=contract_id, notary_office_id=office_id, position=position
            ))
