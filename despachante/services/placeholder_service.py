import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from despachante.models import get_now_br
from despachante.utils import (
    format_area,
    format_currency,
    format_date_br,
    format_phone,
    format_tax_id,
    format_zip_code,
    get_date_extenso_br,
    get_marital_status_label,
    get_property_type_label,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{([^}]+)\}\}')


class PlaceholderKey(str, Enum):
    CLIENT_NAME = 'client.name'
    CLIENT_CPF = 'client.cpf'
    CLIENT_EMAIL = 'client.email'
    CLIENT_PHONE = 'client.phone'
    CLIENT_MARITAL_STATUS = 'client.maritalStatus'
    CLIENT_FATHER_NAME = 'client.fatherName'
    CLIENT_MOTHER_NAME = 'client.motherName'

    PROPERTY_ADDRESS = 'property.address'
    PROPERTY_STREET = 'property.street'
    PROPERTY_NUMBER = 'property.number'
    PROPERTY_COMPLEMENT = 'property.complement'
    PROPERTY_NEIGHBORHOOD = 'property.neighborhood'
    PROPERTY_CITY = 'property.city'
    PROPERTY_STATE = 'property.state'
    PROPERTY_ZIP_CODE = 'property.zipCode'
    PROPERTY_AREA = 'property.area'
    PROPERTY_VALUE = 'property.value'
    PROPERTY_TYPE = 'property.type'

    NOTARY_OFFICE_NAME = 'notaryOffice.name'
    NOTARY_OFFICE_CODE = 'notaryOffice.code'
    NOTARY_OFFICE_ADDRESS = 'notaryOffice.address'
    NOTARY_OFFICE_NEIGHBORHOOD = 'notaryOffice.neighborhood'
    NOTARY_OFFICE_CITY = 'notaryOffice.city'
    NOTARY_OFFICE_STATE = 'notaryOffice.state'
    NOTARY_OFFICE_ZIP_CODE = 'notaryOffice.zipCode'
    NOTARY_OFFICE_PHONE = 'notaryOffice.phone'
    NOTARY_OFFICE_EMAIL = 'notaryOffice.email'

    DATE_CURRENT = 'date.current'
    DATE_CURRENT_EXTENDED = 'date.currentExtended'

    @classmethod
    def parse(cls, raw: str) -> Optional['PlaceholderKey']:
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(frozen=True)
class ReplacementData:
    """Entities feeding one generation. Built from the current selection, never persisted."""
    client: Any
    property: Any
    notary_office: Any = None


def _or_none(value):
    # Empty source fields resolve to "unknown" so the token stays visible
    if value is None or value == '':
        return None
    return value


def _property_address(prop):
    address = f"{prop.street}, {prop.number}"
    if prop.complement:
        address += f" - {prop.complement}"
    return address


def _notary_office_address(office):
    if not office or not office.street:
        return ''
    parts = [office.street]
    if office.number:
        parts.append(office.number)
    if office.complement:
        parts.append(office.complement)
    return ', '.join(parts)


def _office_field(name):
    def resolve(data, now):
        office = data.notary_office
        return (getattr(office, name, None) or '') if office else ''
    return resolve


_RESOLVERS = {
    PlaceholderKey.CLIENT_NAME: lambda d, now: _or_none(d.client.name),
    PlaceholderKey.CLIENT_CPF: lambda d, now: format_tax_id(d.client.tax_id) if d.client.tax_id else '',
    PlaceholderKey.CLIENT_EMAIL: lambda d, now: _or_none(d.client.email),
    PlaceholderKey.CLIENT_PHONE: lambda d, now: format_phone(d.client.phone) if d.client.phone else '',
    PlaceholderKey.CLIENT_MARITAL_STATUS: lambda d, now: (
        get_marital_status_label(d.client.marital_status) if d.client.marital_status else ''
    ),
    PlaceholderKey.CLIENT_FATHER_NAME: lambda d, now: d.client.father_name or '',
    PlaceholderKey.CLIENT_MOTHER_NAME: lambda d, now: d.client.mother_name or '',

    PlaceholderKey.PROPERTY_ADDRESS: lambda d, now: _property_address(d.property),
    PlaceholderKey.PROPERTY_STREET: lambda d, now: _or_none(d.property.street),
    PlaceholderKey.PROPERTY_NUMBER: lambda d, now: _or_none(d.property.number),
    PlaceholderKey.PROPERTY_COMPLEMENT: lambda d, now: d.property.complement or '',
    PlaceholderKey.PROPERTY_NEIGHBORHOOD: lambda d, now: _or_none(d.property.neighborhood),
    PlaceholderKey.PROPERTY_CITY: lambda d, now: _or_none(d.property.city),
    PlaceholderKey.PROPERTY_STATE: lambda d, now: _or_none(d.property.state),
    PlaceholderKey.PROPERTY_ZIP_CODE: lambda d, now: format_zip_code(d.property.zip_code) if d.property.zip_code else None,
    PlaceholderKey.PROPERTY_AREA: lambda d, now: format_area(d.property.area) if d.property.area is not None else None,
    PlaceholderKey.PROPERTY_VALUE: lambda d, now: format_currency(d.property.value) if d.property.value is not None else None,
    PlaceholderKey.PROPERTY_TYPE: lambda d, now: get_property_type_label(d.property.type) if d.property.type else None,

    PlaceholderKey.NOTARY_OFFICE_NAME: _office_field('name'),
    PlaceholderKey.NOTARY_OFFICE_CODE: _office_field('code'),
    PlaceholderKey.NOTARY_OFFICE_ADDRESS: lambda d, now: _notary_office_address(d.notary_office),
    PlaceholderKey.NOTARY_OFFICE_NEIGHBORHOOD: _office_field('neighborhood'),
    PlaceholderKey.NOTARY_OFFICE_CITY: _office_field('city'),
    PlaceholderKey.NOTARY_OFFICE_STATE: _office_field('state'),
    PlaceholderKey.NOTARY_OFFICE_ZIP_CODE: lambda d, now: (
        format_zip_code(d.notary_office.zip_code) if d.notary_office and d.notary_office.zip_code else ''
    ),
    PlaceholderKey.NOTARY_OFFICE_PHONE: lambda d, now: (
        format_phone(d.notary_office.phone) if d.notary_office and d.notary_office.phone else ''
    ),
    PlaceholderKey.NOTARY_OFFICE_EMAIL: _office_field('email'),

    PlaceholderKey.DATE_CURRENT: lambda d, now: format_date_br(now),
    PlaceholderKey.DATE_CURRENT_EXTENDED: lambda d, now: get_date_extenso_br(now),
}

_missing = set(PlaceholderKey) - set(_RESOLVERS)
if _missing:
    raise RuntimeError(f"Placeholder keys without resolver: {sorted(k.value for k in _missing)}")


def resolve_placeholder(key, data: ReplacementData, now=None) -> Optional[str]:
    """
    Returns the display value for a dotted placeholder key, or None when the
    key is not recognized or its source field is empty.
    """
    placeholder = key if isinstance(key, PlaceholderKey) else PlaceholderKey.parse(key)
    if placeholder is None:
        return None

    value = _RESOLVERS[placeholder](data, now or get_now_br())
    if value is None:
        return None
    return str(value)


def replace_placeholders(template: str, data: ReplacementData, now=None) -> str:
    """
    Replaces every {{key}} token in a single left-to-right pass.
    Resolved values are never scanned again; unknown keys keep their token.
    """
    now = now or get_now_br()
    unresolved = []

    def _replace(match):
        key = match.group(1).strip()
        value = resolve_placeholder(key, data, now)
        if value is None:
            unresolved.append(key)
            return match.group(0)
        return value

    content = PLACEHOLDER_PATTERN.sub(_replace, template or '')
    if unresolved:
        logger.debug(f"Placeholders left unresolved: {', '.join(unresolved)}")
    return content


def find_placeholders(template: str):
    """Distinct keys referenced by a template, in order of appearance."""
    seen = []
    for match in PLACEHOLDER_PATTERN.finditer(template or ''):
        key = match.group(1).strip()
        if key not in seen:
            seen.append(key)
    return seen


PLACEHOLDER_GROUPS = [
    {
        'category': 'Cliente',
        'icon': 'User',
        'placeholders': [
            {'key': PlaceholderKey.CLIENT_NAME.value, 'label': 'Nome', 'example': 'João da Silva'},
            {'key': PlaceholderKey.CLIENT_CPF.value, 'label': 'CPF', 'example': '123.456.789-00'},
            {'key': PlaceholderKey.CLIENT_EMAIL.value, 'label': 'Email', 'example': 'joao@email.com'},
            {'key': PlaceholderKey.CLIENT_PHONE.value, 'label': 'Telefone', 'example': '(31) 99999-9999'},
            {'key': PlaceholderKey.CLIENT_MARITAL_STATUS.value, 'label': 'Estado Civil', 'example': 'Casado(a)'},
            {'key': PlaceholderKey.CLIENT_FATHER_NAME.value, 'label': 'Nome do Pai', 'example': 'José da Silva'},
            {'key': PlaceholderKey.CLIENT_MOTHER_NAME.value, 'label': 'Nome da Mãe', 'example': 'Maria da Silva'},
        ],
    },
    {
        'category': 'Imóvel',
        'icon': 'Building2',
        'placeholders': [
            {'key': PlaceholderKey.PROPERTY_ADDRESS.value, 'label': 'Endereço Completo', 'example': 'Rua das Palmeiras, 456 - Apto 101'},
            {'key': PlaceholderKey.PROPERTY_STREET.value, 'label': 'Logradouro', 'example': 'Rua das Palmeiras'},
            {'key': PlaceholderKey.PROPERTY_NUMBER.value, 'label': 'Número', 'example': '456'},
            {'key': PlaceholderKey.PROPERTY_COMPLEMENT.value, 'label': 'Complemento', 'example': 'Apto 101'},
            {'key': PlaceholderKey.PROPERTY_NEIGHBORHOOD.value, 'label': 'Bairro', 'example': 'Centro'},
            {'key': PlaceholderKey.PROPERTY_CITY.value, 'label': 'Cidade', 'example': 'Belo Horizonte'},
            {'key': PlaceholderKey.PROPERTY_STATE.value, 'label': 'Estado', 'example': 'MG'},
            {'key': PlaceholderKey.PROPERTY_ZIP_CODE.value, 'label': 'CEP', 'example': '30130-000'},
            {'key': PlaceholderKey.PROPERTY_AREA.value, 'label': 'Área (m²)', 'example': '120,50 m²'},
            {'key': PlaceholderKey.PROPERTY_VALUE.value, 'label': 'Valor', 'example': 'R$ 350.000,00'},
            {'key': PlaceholderKey.PROPERTY_TYPE.value, 'label': 'Tipo', 'example': 'Apartamento'},
        ],
    },
    {
        'category': 'Cartório',
        'icon': 'Landmark',
        'placeholders': [
            {'key': PlaceholderKey.NOTARY_OFFICE_NAME.value, 'label': 'Nome', 'example': '1º Ofício de Notas'},
            {'key': PlaceholderKey.NOTARY_OFFICE_CODE.value, 'label': 'Código', 'example': '1º OFICIO'},
            {'key': PlaceholderKey.NOTARY_OFFICE_ADDRESS.value, 'label': 'Endereço', 'example': 'Av. Brasil, 1000'},
            {'key': PlaceholderKey.NOTARY_OFFICE_NEIGHBORHOOD.value, 'label': 'Bairro', 'example': 'Funcionários'},
            {'key': PlaceholderKey.NOTARY_OFFICE_CITY.value, 'label': 'Cidade', 'example': 'Belo Horizonte'},
            {'key': PlaceholderKey.NOTARY_OFFICE_STATE.value, 'label': 'Estado', 'example': 'MG'},
            {'key': PlaceholderKey.NOTARY_OFFICE_ZIP_CODE.value, 'label': 'CEP', 'example': '30140-000'},
            {'key': PlaceholderKey.NOTARY_OFFICE_PHONE.value, 'label': 'Telefone', 'example': '(31) 3222-0000'},
            {'key': PlaceholderKey.NOTARY_OFFICE_EMAIL.value, 'label': 'Email', 'example': 'contato@cartorio.com.br'},
        ],
    },
    {
        'category': 'Data',
        'icon': 'Calendar',
        'placeholders': [
            {'key': PlaceholderKey.DATE_CURRENT.value, 'label': 'Data Atual', 'example': '28/01/2026'},
            {'key': PlaceholderKey.DATE_CURRENT_EXTENDED.value, 'label': 'Data por Extenso', 'example': '28 de janeiro de 2026'},
        ],
    },
]
