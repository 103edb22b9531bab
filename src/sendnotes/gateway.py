from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .errors import RemoteError
from .models import Item
from .schemas import ItemCreate, ItemOut, ItemStatus, StatusTransition, TransitionResult

logger = logging.getLogger(__name__)

ITEMS_PATH = "/api/v1/items"


# PUBLIC_INTERFACE
class RemoteGateway(ABC):
    """
    Contract of the remote item store (the source of truth).

    All calls are request/response. Any non-success outcome raises RemoteError;
    callers do not branch on the underlying status code.
    """

    @abstractmethod
    async def list(self, status: ItemStatus, week_of: Optional[str] = None) -> List[Item]:
        """Return remote items with `status` (and `week_of` when given), newest first."""

    @abstractmethod
    async def create(self, data: ItemCreate) -> Item:
        """Create an item and return the confirmed record with its permanent id."""

    @abstractmethod
    async def update(self, item_id: str, changes: Mapping[str, Any]) -> Item:
        """Apply a partial update and return the confirmed record."""

    @abstractmethod
    async def soft_delete(self, item_id: str) -> None:
        """Mark an item deleted remotely."""

    @abstractmethod
    async def bulk_transition_status(self, from_status: ItemStatus, week_of: str, to_status: ItemStatus) -> int:
        """Move every item of `week_of` in `from_status` to `to_status`; return how many moved."""

    async def close(self) -> None:
        """Release transport resources."""


class HttpItemGateway(RemoteGateway):
    """
    RemoteGateway speaking JSON over HTTP to the item service.

    Usage:
        gateway = HttpItemGateway("https://notes.example.com", timeout=10)
        items = await gateway.list(ItemStatus.ACTIVE, "2024-06-03")
        await gateway.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.debug("remote_transport_error", extra={"method": method, "path": path, "error": str(e)})
            raise RemoteError(f"{method} {path} failed: {e}") from e
        if response.is_error:
            raise RemoteError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError("Remote returned a body that is not JSON", status_code=response.status_code) from e

    def _to_item(self, payload: Any) -> Item:
        try:
            return Item.from_remote(ItemOut.model_validate(payload))
        except ValueError as e:
            raise RemoteError(f"Remote returned a malformed item: {e}") from e

    async def list(self, status: ItemStatus, week_of: Optional[str] = None) -> List[Item]:
        params: Dict[str, str] = {"status": status.value}
        if week_of is not None:
            params["week_of"] = week_of
        payload = self._decode(await self._request("GET", ITEMS_PATH, params=params))
        if not isinstance(payload, list):
            raise RemoteError("Remote list response is not an array")
        return [self._to_item(p) for p in payload]

    async def create(self, data: ItemCreate) -> Item:
        response = await self._request("POST", ITEMS_PATH, json=data.model_dump(mode="json"))
        return self._to_item(self._decode(response))

    async def update(self, item_id: str, changes: Mapping[str, Any]) -> Item:
        response = await self._request("PATCH", f"{ITEMS_PATH}/{item_id}", json=dict(changes))
        return self._to_item(self._decode(response))

    async def soft_delete(self, item_id: str) -> None:
        await self._request("DELETE", f"{ITEMS_PATH}/{item_id}")

    async def bulk_transition_status(self, from_status: ItemStatus, week_of: str, to_status: ItemStatus) -> int:
        body = StatusTransition(from_status=from_status, week_of=week_of, to_status=to_status)
        response = await self._request("POST", f"{ITEMS_PATH}/transitions", json=body.model_dump(mode="json"))
        try:
            return TransitionResult.model_validate(self._decode(response)).count
        except ValueError as e:
            raise RemoteError(f"Remote returned a malformed transition result: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
