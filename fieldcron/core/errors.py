"""Domain error types.

Raised by the core; the dispatcher catches them per cron, the API layer maps
them to HTTP responses.
"""

from __future__ import annotations


class FieldCronError(Exception):
    """Base class for fieldcron errors."""


class ValidationError(FieldCronError):
    """Malformed cron configuration. Rejected at create/update time."""


class NotFoundError(FieldCronError):
    def __init__(self, resource_type: str, resource_id: object):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class NotAuthorizedError(FieldCronError):
    """Caller is neither the owner nor an admin."""


class AuthError(FieldCronError):
    """Marketplace rejected the access token (expired or invalid)."""


class InvalidGrant(AuthError):
    """Marketplace rejected a refresh token or password grant."""


class NetworkError(FieldCronError):
    """Marketplace unreachable or answered with a server error."""


class MarketplaceTimeout(NetworkError):
    """A marketplace call exceeded its timeout."""


class PersistenceError(FieldCronError):
    """A store write failed."""
