"""Field Nation marketplace access: REST client + token path."""

from fieldcron.core.marketplace.client import FieldNationClient
from fieldcron.core.marketplace.tokens import IntegrationService

__all__ = ["FieldNationClient", "IntegrationService"]
