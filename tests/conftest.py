"""Shared fixtures: in-memory database, local blob storage and a browserless rasterizer."""

import pytest
from PIL import Image

from despachante.app import create_app
from despachante.errors import RenderError
from despachante.models import db, Client, ContractTemplate, NotaryOffice, Property, User
from despachante.services.pdf_service import PdfService

TEMPLATE_CONTENT = (
    "<h1>Contrato de Compra e Venda</h1>"
    "<p>Comprador: {{client.name}}, CPF {{client.cpf}}, {{client.maritalStatus}}.</p>"
    "<p>Imóvel: {{property.address}}, {{property.city}}/{{property.state}}, CEP {{property.zipCode}}.</p>"
    "<p>Cartório: {{notaryOffice.name}}</p>"
)


class FakeRasterizer:
    """Stands in for headless Chromium. Produces a blank bitmap `pages` A4 bands tall."""

    def __init__(self, pages=1.0, fail_stage=None):
        self.pages = pages
        self.fail_stage = fail_stage
        self.calls = []

    def rasterize(self, html, width_px, height_px, scale):
        self.calls.append(html)
        if self.fail_stage:
            raise RenderError(self.fail_stage, 'falha simulada')
        width = int(width_px * scale)
        band = round(width * 297 / 210)
        return Image.new('RGB', (width, int(band * self.pages)), 'white')


@pytest.fixture
def rasterizer():
    return FakeRasterizer()


@pytest.fixture
def app(tmp_path, rasterizer):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'STORAGE_BACKEND': 'local',
        'UPLOAD_FOLDER': str(tmp_path / 'blobs'),
        'PDF_SERVICE': PdfService(rasterizer=rasterizer),
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.test_request_context():
        yield app


@pytest.fixture
def seed(app):
    """Creates one of each entity and returns their ids."""
    with app.app_context():
        user = User(name='Operador', email='operador@despachante.com.br')
        client = Client(
            name='Ana Silva',
            email='ana@email.com',
            phone='31999998888',
            tax_id='12345678901',
            marital_status='married',
        )
        other_client = Client(name='Bruno Costa', tax_id=None)
        prop = Property(
            zip_code='30130000',
            street='Rua das Palmeiras',
            number='456',
            complement='Apto 101',
            neighborhood='Centro',
            city='Belo Horizonte',
            state='MG',
            type='apartment',
            area=120.5,
            value=350000.0,
        )
        office = NotaryOffice(name='1º Ofício de Notas', code='1OF', street='Av. Brasil', number='1000')
        template = ContractTemplate(name='Compra e Venda', content=TEMPLATE_CONTENT)
        db.session.add_all([user, client, other_client, prop, office, template])
        db.session.commit()

        return {
            'user_id': user.id,
            'client_id': client.id,
            'other_client_id': other_client.id,
            'property_id': prop.id,
            'notary_office_id': office.id,
            'template_id': template.id,
        }


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client, seed):
    with client.session_transaction() as sess:
        sess['_user_id'] = str(seed['user_id'])
        sess['_fresh'] = True
    return client


@pytest.fixture
def storage(app):
    return app.blob_storage
