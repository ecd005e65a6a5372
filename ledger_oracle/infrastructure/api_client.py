"""
Ledger API client for the service under test.

Point lookups go over HTTP with httpx; slot subscriptions are websocket
streams. Every failure is translated into the oracle's taxonomy at this
boundary: lookups raise TransientFetchError, subscriptions that cannot be
established raise SubscriptionError.

The client is an async context manager owning the HTTP connection pool:

    async with LedgerClient.from_settings(settings) as client:
        await client.wait_until_ready(timeout=240)
        slot = await client.get_slot(12, IncludeChildren.FULL)
        async with await client.subscribe_slots(with_children=True) as slots:
            async for slot in slots:
                ...
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Union, runtime_checkable

import httpx
import websockets
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ledger_oracle.config import Settings
from ledger_oracle.domain.errors import SubscriptionError, TransientFetchError
from ledger_oracle.domain.models import IncludeChildren, LedgerBatch, Slot
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)

RecordId = Union[int, str]

SLOTS_PATH = "/ledger/slots/{id}"
BATCHES_PATH = "/ledger/batches/{id}"
LATEST_SLOTS_WS = "/ledger/slots/latest/ws"
FINALIZED_SLOTS_WS = "/ledger/slots/finalized/ws"
SUBMIT_TX_PATH = "/sequencer/txs"
SEQUENCER_READY_PATH = "/sequencer/ready"


def _unwrap(body: Any) -> Dict[str, Any]:
    """Accept both bare records and `{"data": record}` envelopes."""
    if isinstance(body, dict) and isinstance(body.get("data"), dict) and "number" not in body:
        return body["data"]
    return body


def _children_params(children: IncludeChildren) -> Dict[str, str]:
    return {} if children.value is None else {"children": children.value}


@runtime_checkable
class SlotStream(Protocol):
    """An open, ordered subscription of slots."""

    def __aiter__(self) -> AsyncIterator[Slot]: ...

    async def __anext__(self) -> Slot: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class LedgerService(Protocol):
    """
    The slice of the service API the checks and the soak harness consume.

    LedgerClient is the production implementation; tests substitute in-memory
    fakes.
    """

    async def subscribe_slots(
        self, with_children: bool = False, finalized_only: bool = False
    ) -> SlotStream: ...

    async def get_slot(
        self, slot_id: RecordId, children: IncludeChildren = IncludeChildren.NONE
    ) -> Slot: ...

    async def get_batch(
        self, batch_id: RecordId, children: IncludeChildren = IncludeChildren.NONE
    ) -> LedgerBatch: ...

    async def submit_transaction(self, body: str) -> Dict[str, Any]: ...


class SlotSubscription:
    """Websocket slot stream. Ends on a clean close, raises on an abnormal one."""

    def __init__(self, connection: Any, name: str) -> None:
        self._connection = connection
        self.name = name

    def __aiter__(self) -> "SlotSubscription":
        return self

    async def __anext__(self) -> Slot:
        try:
            message = await self._connection.recv()
        except ConnectionClosedOK:
            raise StopAsyncIteration
        except ConnectionClosed as exc:
            raise SubscriptionError(f"{self.name} subscription dropped: {exc}") from exc
        return Slot.from_payload(_unwrap(json.loads(message)))

    async def aclose(self) -> None:
        await self._connection.close()

    async def __aenter__(self) -> "SlotSubscription":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()


@dataclass
class LedgerClient:
    """
    Async client for the ledger, sequencer and subscription endpoints.

    Attributes:
        api_url: Base HTTP URL of the service.
        ws_url: Base websocket URL of the service.
        connect_timeout: Seconds allowed to establish a connection.
        read_timeout: Seconds allowed between response bytes.
        request_timeout: Default bound for every other phase of a request.
    """

    api_url: str
    ws_url: str
    connect_timeout: float = 60.0
    read_timeout: float = 120.0
    request_timeout: float = 600.0

    _http_client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerClient":
        return cls(
            api_url=settings.api_url,
            ws_url=settings.websocket_url,
            connect_timeout=settings.connect_timeout_seconds,
            read_timeout=settings.read_timeout_seconds,
            request_timeout=settings.request_timeout_seconds,
        )

    async def __aenter__(self) -> "LedgerClient":
        self._http_client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=httpx.Timeout(
                self.request_timeout, connect=self.connect_timeout, read=self.read_timeout
            ),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise RuntimeError(
                "LedgerClient must be used as an async context manager. "
                "Use 'async with LedgerClient(...) as client:'"
            )
        return self._http_client

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"{method} {path} failed: {exc}") from exc
        if not response.is_success:
            raise TransientFetchError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _get_record(self, path: str, children: IncludeChildren) -> Dict[str, Any]:
        response = await self._request("GET", path, params=_children_params(children))
        return _unwrap(response.json())

    async def get_slot(
        self, slot_id: RecordId, children: IncludeChildren = IncludeChildren.NONE
    ) -> Slot:
        payload = await self._get_record(SLOTS_PATH.format(id=slot_id), children)
        return Slot.from_payload(payload)

    async def get_batch(
        self, batch_id: RecordId, children: IncludeChildren = IncludeChildren.NONE
    ) -> LedgerBatch:
        payload = await self._get_record(BATCHES_PATH.format(id=batch_id), children)
        return LedgerBatch.from_payload(payload)

    async def submit_transaction(self, body: str) -> Dict[str, Any]:
        """Submit a base64-encoded signed transaction to the sequencer."""
        response = await self._request("POST", SUBMIT_TX_PATH, json={"body": body})
        return _unwrap(response.json())

    async def _probe_ready(self) -> None:
        await self._request("GET", SLOTS_PATH.format(id=0))
        await self._request("GET", SEQUENCER_READY_PATH)

    async def wait_until_ready(self, timeout: float, interval: float = 0.1) -> None:
        """
        Poll until the ledger serves slot 0 and the sequencer reports ready.

        Raises the last TransientFetchError once `timeout` seconds have passed.
        """
        log.info("Waiting for service readiness", extra={"timeout": timeout})
        async for attempt in AsyncRetrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(TransientFetchError),
            reraise=True,
        ):
            with attempt:
                await self._probe_ready()
        log.info("Service is ready")

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((OSError, WebSocketException, TimeoutError)),
        reraise=True,
    )
    async def _connect(self, url: str) -> Any:
        return await websockets.connect(url, open_timeout=self.connect_timeout, max_size=None)

    async def subscribe_slots(
        self, with_children: bool = False, finalized_only: bool = False
    ) -> SlotSubscription:
        path = FINALIZED_SLOTS_WS if finalized_only else LATEST_SLOTS_WS
        url = f"{self.ws_url}{path}"
        if with_children:
            url = f"{url}?children=1"
        name = f"{'finalized' if finalized_only else 'latest'} slots" + (
            " with children" if with_children else ""
        )
        try:
            connection = await self._connect(url)
        except (OSError, WebSocketException, TimeoutError) as exc:
            raise SubscriptionError(f"Could not subscribe to {name} at {url}: {exc}") from exc
        log.debug("Subscribed", extra={"subscription": name})
        return SlotSubscription(connection, name)


__all__ = [
    "LedgerClient",
    "LedgerService",
    "RecordId",
    "SlotStream",
    "SlotSubscription",
]
