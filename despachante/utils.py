import re
from flask import jsonify
from despachante.models import get_now_br

MONTHS_PT_BR = (
    'janeiro', 'fevereiro', 'março', 'abril', 'maio', 'junho',
    'julho', 'agosto', 'setembro', 'outubro', 'novembro', 'dezembro',
)

MARITAL_STATUS_LABELS = {
    'single': 'Solteiro(a)',
    'common_law_marriage': 'União Estável',
    'married': 'Casado(a)',
    'widowed': 'Viúvo(a)',
    'divorced': 'Divorciado(a)',
}

PROPERTY_TYPE_LABELS = {
    'land': 'Terreno',
    'house': 'Casa',
    'apartment': 'Apartamento',
    'building': 'Prédio',
}


def _digits(value):
    return re.sub(r'\D', '', str(value or ''))


def format_tax_id(tax_id):
    """CPF: 000.000.000-00 / CNPJ: 00.000.000/0000-00. Anything else is returned as given."""
    cleaned = _digits(tax_id)
    if len(cleaned) == 11:
        return f"{cleaned[:3]}.{cleaned[3:6]}.{cleaned[6:9]}-{cleaned[9:]}"
    if len(cleaned) == 14:
        return f"{cleaned[:2]}.{cleaned[2:5]}.{cleaned[5:8]}/{cleaned[8:12]}-{cleaned[12:]}"
    return tax_id


def format_phone(phone):
    """(00) 00000-0000 for mobiles, (00) 0000-0000 for landlines."""
    cleaned = _digits(phone)
    if len(cleaned) == 11:
        return f"({cleaned[:2]}) {cleaned[2:7]}-{cleaned[7:]}"
    if len(cleaned) == 10:
        return f"({cleaned[:2]}) {cleaned[2:6]}-{cleaned[6:]}"
    return phone


def format_zip_code(zip_code):
    cleaned = _digits(zip_code)
    if len(cleaned) == 8:
        return f"{cleaned[:5]}-{cleaned[5:]}"
    return zip_code or ''


def _format_decimal_br(value):
    # 1,234.56 -> 1.234,56
    return f"{float(value):,.2f}".replace(',', '_').replace('.', ',').replace('_', '.')


def format_currency(value):
    if value is None:
        return ''
    return f"R$ {_format_decimal_br(value)}"


def format_area(value):
    if value is None:
        return ''
    return f"{_format_decimal_br(value)} m²"


def format_date_br(moment):
    return moment.strftime('%d/%m/%Y')


def get_date_extenso_br(moment=None):
    """Returns the date in format: 10 de fevereiro de 2026"""
    moment = moment or get_now_br()
    return f"{moment.day} de {MONTHS_PT_BR[moment.month - 1]} de {moment.year}"


def get_marital_status_label(status):
    return MARITAL_STATUS_LABELS.get(status, status)


def get_property_type_label(property_type):
    return PROPERTY_TYPE_LABELS.get(property_type, property_type)


def api_response(success=True, data=None, error=None, status=200):
    """Standardized JSON response for all API routes."""
    response = {
        'success': success,
        'data': data,
        'error': error
    }
    return jsonify(response), status
