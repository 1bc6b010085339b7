from dataclasses import dataclass
from flask import current_app

from despachante.errors import ResolutionError
from despachante.services.entity_store import EntityStore
from despachante.services.placeholder_service import ReplacementData, replace_placeholders


@dataclass
class GeneratedContract:
    template_id: int
    template_name: str
    content: str


class GenerationService:
    def __init__(self, store=None):
        self.store = store or EntityStore()

    def load_replacement_data(self, client_id, property_id, notary_office_id=None):
        client = self.store.get_client(client_id)
        if not client:
            raise ResolutionError('client')

        prop = self.store.get_property(property_id)
        if not prop:
            raise ResolutionError('property')

        notary_office = None
        if notary_office_id:
            notary_office = self.store.get_notary_office(notary_office_id)
            if not notary_office:
                raise ResolutionError('notary_office')

        return ReplacementData(client=client, property=prop, notary_office=notary_office)

    def generate(self, template_id, client_id, property_id, notary_office_id=None, now=None):
        """
        Resolves the template and the primary entities, then substitutes placeholders.
        Nothing is produced if any of them is missing.
        """
        template = self.store.get_template(template_id)
        if not template:
            raise ResolutionError('template')

        data = self.load_replacement_data(client_id, property_id, notary_office_id)
        content = replace_placeholders(template.content, data, now=now)

        current_app.logger.info(
            f"Generated content from template {template.id} for client {client_id} / property {property_id}"
        )
        return GeneratedContract(template_id=template.id, template_name=template.name, content=content)
