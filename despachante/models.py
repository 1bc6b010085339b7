from datetime import datetime, timedelta, timezone
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
import json

def get_now_br():
    return datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=3)

db = SQLAlchemy()

# Enums (plain strings, same values the web client uses)
CONTRACT_STATUS_DRAFT = 'draft'
CONTRACT_STATUS_FINAL = 'final'
CONTRACT_STATUS_SIGNED = 'signed'

CONTRACT_STATUSES = (CONTRACT_STATUS_DRAFT, CONTRACT_STATUS_FINAL, CONTRACT_STATUS_SIGNED)

CONTRACT_STATUS_LABELS = {
    CONTRACT_STATUS_DRAFT: 'Rascunho',
    CONTRACT_STATUS_FINAL: 'Finalizado',
    CONTRACT_STATUS_SIGNED: 'Assinado',
}

DOCUMENT_TYPE_CONTRACT = 'contract'


# Many-to-Many relationship between Contract and Client (one row flagged as primary)
contract_clients = db.Table('contract_clients',
    db.Column('contract_id', db.Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), primary_key=True),
    db.Column('client_id', db.Integer, db.ForeignKey('client.id'), primary_key=True),
    db.Column('is_primary', db.Boolean, default=False, nullable=False)
)

# Many-to-Many relationship between Contract and NotaryOffice (first one feeds placeholders)
contract_notary_offices = db.Table('contract_notary_offices',
    db.Column('contract_id', db.Integer, db.ForeignKey('contract.id', ondelete='CASCADE'), primary_key=True),
    db.Column('notary_office_id', db.Integer, db.ForeignKey('notary_office.id'), primary_key=True),
    db.Column('position', db.Integer, default=0, nullable=False)
)


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=get_now_br)


class Client(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(50))
    tax_id = db.Column(db.String(20), nullable=True) # CPF/CNPJ, digits only or masked
    marital_status = db.Column(db.String(30), nullable=True) # single, common_law_marriage, married, widowed, divorced
    father_name = db.Column(db.String(100), nullable=True)
    mother_name = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), default='active') # active, inactive, pending

    created_at = db.Column(db.DateTime, default=get_now_br)
    updated_at = db.Column(db.DateTime, default=get_now_br, onupdate=get_now_br)


class Property(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    zip_code = db.Column(db.String(10), nullable=False)
    street = db.Column(db.String(150), nullable=False)
    number = db.Column(db.String(20), nullable=False)
    complement = db.Column(db.String(100), nullable=True)
    neighborhood = db.Column(db.String(100), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(2), nullable=False)
    type = db.Column(db.String(20), default='house') # land, house, apartment, building
    area = db.Column(db.Float, default=0.0) # m²
    value = db.Column(db.Float, default=0.0) # BRL
    status = db.Column(db.String(20), default='active')

    created_at = db.Column(db.DateTime, default=get_now_br)
    updated_at = db.Column(db.DateTime, default=get_now_br, onupdate=get_now_br)

    documents = db.relationship('PropertyDocument', backref='property', cascade='all, delete-orphan', lazy=True)


class NotaryOffice(db.Model):
    __tablename__ = 'notary_office'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(50), nullable=False)
    zip_code = db.Column(db.String(10), nullable=True)
    street = db.Column(db.String(150), nullable=True)
    number = db.Column(db.String(20), nullable=True)
    complement = db.Column(db.String(100), nullable=True)
    neighborhood = db.Column(db.String(100), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(2), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    status = db.Column(db.String(20), default='active') # active, inactive

    created_at = db.Column(db.DateTime, default=get_now_br)
    updated_at = db.Column(db.DateTime, default=get_now_br, onupdate=get_now_br)


class ContractTemplate(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    content = db.Column(db.Text, nullable=False) # HTML with {{namespace.field}} placeholders
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=get_now_br)
    updated_at = db.Column(db.DateTime, default=get_now_br, onupdate=get_now_br)

    @property
    def contracts_count(self):
        return Contract.query.filter_by(template_id=self.id).count()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'content': self.content,
            'active': self.active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Contract(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    template_id = db.Column(db.Integer, db.ForeignKey('contract_template.id'), nullable=True) # Null for freeform contracts
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)

    content = db.Column(db.Text, nullable=False, default='')
    status = db.Column(db.String(20), default=CONTRACT_STATUS_DRAFT) # draft, final, signed

    # Artifact (present only after a successful finalize)
    pdf_storage_id = db.Column(db.String(255), nullable=True)
    pdf_size = db.Column(db.Integer, nullable=True)

    finalize_steps = db.Column(db.Text, nullable=True) # JSON list of step outcomes

    created_at = db.Column(db.DateTime, default=get_now_br)
    updated_at = db.Column(db.DateTime, default=get_now_br, onupdate=get_now_br)

    template = db.relationship('ContractTemplate')
    linked_property = db.relationship('Property', backref=db.backref('contracts', lazy=True))
    clients = db.relationship('Client', secondary=contract_clients, lazy='selectin', viewonly=True)
    notary_offices = db.relationship('NotaryOffice', secondary=contract_notary_offices, lazy='selectin', viewonly=True)

    @property
    def primary_client_id(self):
        row = db.session.execute(
            db.select(contract_clients.c.client_id).where(
                contract_clients.c.contract_id == self.id,
                contract_clients.c.is_primary.is_(True)
            )
        ).first()
        if row:
            return row[0]
        return self.clients[0].id if self.clients else None

    @property
    def primary_notary_office_id(self):
        row = db.session.execute(
            db.select(contract_notary_offices.c.notary_office_id)
            .where(contract_notary_offices.c.contract_id == self.id)
            .order_by(contract_notary_offices.c.position)
        ).first()
        return row[0] if row else None

    @property
    def client_ids(self):
        primary = self.primary_client_id
        others = [c.id for c in self.clients if c.id != primary]
        return ([primary] if primary is not None else []) + others

    @property
    def notary_office_ids(self):
        rows = db.session.execute(
            db.select(contract_notary_offices.c.notary_office_id)
            .where(contract_notary_offices.c.contract_id == self.id)
            .order_by(contract_notary_offices.c.position)
        ).all()
        return [r[0] for r in rows]

    @property
    def status_label(self):
        return CONTRACT_STATUS_LABELS.get(self.status, self.status)

    @property
    def steps(self):
        if not self.finalize_steps:
            return []
        try:
            return json.loads(self.finalize_steps)
        except ValueError:
            return []

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'template_id': self.template_id,
            'property_id': self.property_id,
            'client_ids': self.client_ids,
            'primary_client_id': self.primary_client_id,
            'notary_office_ids': self.notary_office_ids,
            'primary_notary_office_id': self.primary_notary_office_id,
            'content': self.content,
            'status': self.status,
            'status_label': self.status_label,
            'pdf_storage_id': self.pdf_storage_id,
            'pdf_size': self.pdf_size,
            'finalize_steps': self.steps,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class PropertyDocument(db.Model):
    __tablename__ = 'property_document'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(30), default=DOCUMENT_TYPE_CONTRACT) # contract, deed, registration, other
    storage_id = db.Column(db.String(255), nullable=False)
    property_id = db.Column(db.Integer, db.ForeignKey('property.id'), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False, default=0)
    contract_id = db.Column(db.Integer, db.ForeignKey('contract.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=get_now_br)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'storage_id': self.storage_id,
            'property_id': self.property_id,
            'mime_type': self.mime_type,
            'size': self.size,
            'contract_id': self.contract_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ContractDraftState(db.Model):
    __tablename__ = 'contract_draft_state'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    data = db.Column(db.Text, nullable=False) # JSON snapshot of the ContractDraft
    updated_at = db.Column(db.DateTime, default=get_now_br, onupdate=get_now_br)
