"""Service layer helpers (gateways, settings, page catalog)."""

from .errors import GatewayError, GatewayTimeoutError, GatewayUnavailableError, NoteLinkError
from .gateways import ApiSettings, PersistenceGateway, SuggestionGateway, TagGateway, WorkspaceApiClient
from .page_catalog import PageCatalog

__all__ = [
    "ApiSettings",
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "NoteLinkError",
    "PageCatalog",
    "PersistenceGateway",
    "SuggestionGateway",
    "TagGateway",
    "WorkspaceApiClient",
]
