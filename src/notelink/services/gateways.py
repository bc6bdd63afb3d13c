"""Gateway interfaces and the httpx-backed workspace API client.

The session components depend only on the three protocols below. The
:class:`WorkspaceApiClient` implements all of them against the workspace REST
API; tests substitute in-memory stubs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..models.suggestions import CandidatePage, LinkSuggestion, TagGenerationResult, TagSuggestion
from .errors import GatewayError, GatewayTimeoutError, GatewayUnavailableError, NoteLinkError

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class PersistenceGateway(Protocol):
    async def save(self, document_id: str, content: Sequence[Mapping[str, Any]]) -> None:
        """Persist ``content`` for ``document_id``; raise :class:`GatewayError` on failure."""


@runtime_checkable
class SuggestionGateway(Protocol):
    async def generate_link_suggestions(
        self,
        text: str,
        workspace_id: str,
        page_id: str | None = None,
        context_window: int = 100,
    ) -> list[LinkSuggestion]:
        ...


@runtime_checkable
class TagGateway(Protocol):
    async def generate_tags(
        self,
        title: str,
        content: Sequence[Mapping[str, Any]],
        workspace_id: str,
    ) -> TagGenerationResult:
        ...

    async def page_tag_names(self, page_id: str) -> set[str]:
        ...


@dataclass(slots=True)
class ApiSettings:
    """Subset of settings required to configure the workspace client."""

    base_url: str
    api_token: str = ""
    request_timeout: float | None = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None


class WorkspaceApiClient:
    """Async client for the workspace REST API.

    Saves are sent exactly once; the session layer owns the decision to try
    again. Suggestion and tag requests retry transient transport failures.
    """

    def __init__(self, settings: ApiSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ApiSettings:
        return self._settings

    # ------------------------------------------------------------------
    # PersistenceGateway
    # ------------------------------------------------------------------
    async def save(self, document_id: str, content: Sequence[Mapping[str, Any]]) -> None:
        await self._request("PUT", f"/api/pages/{document_id}", json_body={"content": list(content)})
        LOGGER.debug("Saved page %s (%d top-level blocks)", document_id, len(content))

    # ------------------------------------------------------------------
    # SuggestionGateway
    # ------------------------------------------------------------------
    async def generate_link_suggestions(
        self,
        text: str,
        workspace_id: str,
        page_id: str | None = None,
        context_window: int = 100,
    ) -> list[LinkSuggestion]:
        body = {
            "text": text,
            "workspaceId": workspace_id,
            "pageId": page_id,
            "contextWindow": context_window or 100,
        }
        data = await self._request_with_retry("POST", "/api/ai/link-suggestions", json_body=body)
        raw = data.get("suggestions") if isinstance(data, Mapping) else None
        if not isinstance(raw, list):
            raise GatewayError(message="Link suggestion response is missing 'suggestions'", error_code="invalid_response")
        return [LinkSuggestion.from_payload(item) for item in raw if isinstance(item, Mapping)]

    # ------------------------------------------------------------------
    # TagGateway
    # ------------------------------------------------------------------
    async def generate_tags(
        self,
        title: str,
        content: Sequence[Mapping[str, Any]],
        workspace_id: str,
    ) -> TagGenerationResult:
        body = {"title": title, "content": list(content), "workspaceId": workspace_id}
        data = await self._request_with_retry("POST", "/api/ai/generate-tags", json_body=body)
        if not isinstance(data, Mapping):
            raise GatewayError(message="Tag response is not an object", error_code="invalid_response")
        tags = tuple(
            TagSuggestion.from_payload(item) for item in data.get("tags") or [] if isinstance(item, Mapping)
        )
        return TagGenerationResult(tags=tags, reasoning=str(data.get("reasoning") or ""))

    async def page_tag_names(self, page_id: str) -> set[str]:
        data = await self._request_with_retry("GET", f"/api/pages/{page_id}/tags")
        items = data.get("tags") if isinstance(data, Mapping) else data
        if not isinstance(items, list):
            return set()
        return {str(item.get("name")) for item in items if isinstance(item, Mapping) and item.get("name")}

    async def list_pages(self, workspace_id: str) -> list[CandidatePage]:
        """Fetch the workspace's pages, used to seed the candidate page catalog."""

        data = await self._request_with_retry("GET", "/api/pages", params={"workspaceId": workspace_id})
        items = data.get("pages") if isinstance(data, Mapping) else data
        if not isinstance(items, list):
            return []
        return [CandidatePage.from_payload(item) for item in items if isinstance(item, Mapping)]

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _build_client(self, settings: ApiSettings) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json", **dict(settings.default_headers or {})}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        return httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            headers=headers,
            timeout=settings.request_timeout,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_is_retryable),
        )

    async def _request_with_retry(self, method: str, path: str, **kwargs: Any) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await self._request(method, path, **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json_body, params=params)
        except httpx.TimeoutException as exc:
            raise GatewayTimeoutError(details={"path": path}) from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailableError(message=f"Workspace service is unreachable: {exc}", details={"path": path}) from exc

        if response.is_error:
            raise _error_from_response(response, path)
        if not response.content:
            return None
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise GatewayError(message="Workspace service returned invalid JSON", error_code="invalid_response") from exc
        if isinstance(payload, Mapping) and "data" in payload and payload["data"] is not None:
            return payload["data"]
        return payload


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, NoteLinkError) and exc.retryable


def _error_from_response(response: httpx.Response, path: str) -> GatewayError:
    message = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        body = None
    if isinstance(body, Mapping) and body.get("error"):
        message = str(body["error"])
    code = "unauthorized" if response.status_code in (401, 403) else "http_status"
    if response.status_code >= 500:
        return GatewayUnavailableError(
            message=message,
            error_code=code,
            status_code=response.status_code,
            details={"path": path},
        )
    return GatewayError(message=message, error_code=code, status_code=response.status_code, details={"path": path})


__all__ = [
    "ApiSettings",
    "PersistenceGateway",
    "SuggestionGateway",
    "TagGateway",
    "WorkspaceApiClient",
]
