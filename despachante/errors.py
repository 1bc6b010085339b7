"""
Error types raised by the contract engine.
Messages are in Portuguese since they reach the user as-is.
"""


class ContractError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(ContractError):
    """Form validation or illegal state transition. Never reaches the orchestrator."""
    status_code = 400

    def __init__(self, message, field=None):
        super().__init__(message)
        self.field = field


class NotFoundError(ContractError):
    status_code = 404

    def __init__(self, entity):
        super().__init__(f"{entity} não encontrado")
        self.entity = entity


class ResolutionError(NotFoundError):
    """A template, client, property or notary office needed for generation could not be loaded."""

    LABELS = {
        'template': 'Modelo',
        'client': 'Cliente',
        'property': 'Imóvel',
        'notary_office': 'Cartório',
    }

    def __init__(self, field):
        super().__init__(self.LABELS.get(field, field))
        self.field = field


class RenderError(ContractError):
    """Rasterization or PDF assembly failed. `stage` is one of surface, rasterize, assemble."""

    SURFACE = 'surface'
    RASTERIZE = 'rasterize'
    ASSEMBLE = 'assemble'

    def __init__(self, stage, detail):
        super().__init__(f"Erro ao gerar PDF ({stage}): {detail}")
        self.stage = stage
        self.detail = detail


class UploadError(ContractError):
    def __init__(self, detail):
        super().__init__(f"Erro ao enviar PDF: {detail}")
        self.detail = detail
