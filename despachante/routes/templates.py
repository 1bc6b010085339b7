from flask import Blueprint, request
from flask_login import login_required

from despachante.errors import NotFoundError, ValidationError
from despachante.models import db, ContractTemplate
from despachante.services.placeholder_service import PLACEHOLDER_GROUPS, PlaceholderKey, find_placeholders
from despachante.utils import api_response

templates_bp = Blueprint('templates', __name__)


def _get_template_or_404(id):
    template = db.session.get(ContractTemplate, id)
    if not template:
        raise NotFoundError("Modelo")
    return template


def _template_payload(template):
    data = template.to_dict()
    keys = find_placeholders(template.content)
    data['placeholders'] = keys
    # Unknown keys survive generation untouched, flag them for the author
    data['unknown_placeholders'] = [k for k in keys if PlaceholderKey.parse(k) is None]
    return data


@templates_bp.route('/api/contract-templates', methods=['GET'])
@login_required
def list_templates():
    query = ContractTemplate.query
    if request.args.get('include_inactive') != '1':
        query = query.filter(ContractTemplate.active.is_(True))
    templates = query.order_by(ContractTemplate.name).all()
    return api_response(data=[t.to_dict() for t in templates])


@templates_bp.route('/api/contract-templates/placeholders', methods=['GET'])
@login_required
def list_placeholders():
    return api_response(data=PLACEHOLDER_GROUPS)


@templates_bp.route('/api/contract-templates', methods=['POST'])
@login_required
def create_template():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    content = data.get('content') or ''
    if not name:
        raise ValidationError("Nome do modelo é obrigatório", field='name')
    if not content.strip():
        raise ValidationError("Conteúdo do modelo é obrigatório", field='content')

    template = ContractTemplate(
        name=name,
        description=data.get('description'),
        content=content,
        active=bool(data.get('active', True)),
    )
    db.session.add(template)
    db.session.commit()
    return api_response(data=_template_payload(template), status=201)


@templates_bp.route('/api/contract-templates/<int:id>', methods=['GET'])
@login_required
def get_template(id):
    return api_response(data=_template_payload(_get_template_or_404(id)))


@templates_bp.route('/api/contract-templates/<int:id>', methods=['PUT', 'POST'])
@login_required
def update_template(id):
    # Contracts keep the text generated at their creation; editing here never reaches them
    template = _get_template_or_404(id)
    data = request.get_json(silent=True) or {}

    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError("Nome do modelo é obrigatório", field='name')
        template.name = name
    if 'description' in data:
        template.description = data.get('description')
    if 'content' in data:
        if not (data.get('content') or '').strip():
            raise ValidationError("Conteúdo do modelo é obrigatório", field='content')
        template.content = data['content']
    if 'active' in data:
        template.active = bool(data['active'])

    db.session.commit()
    return api_response(data=_template_payload(template))


@templates_bp.route('/api/contract-templates/<int:id>', methods=['DELETE'])
@login_required
def delete_template(id):
    template = _get_template_or_404(id)
    if template.contracts_count:
        # Referenced templates are only deactivated
        template.active = False
        db.session.commit()
        return api_response(data={'message': 'Modelo desativado', 'deactivated': True})

    db.session.delete(template)
    db.session.commit()
    return api_response(data={'message': 'Modelo excluído', 'deactivated': False})
