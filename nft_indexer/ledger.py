"""
Ledger Client

Websocket connection to a rippled / clio server.

One socket carries both the `transactions` subscription stream and ordinary
request/response commands such as `nft_info`. Responses are matched to their
requests by the integer `id` field; every other `transaction` message is
queued for the consumer of `transactions()`.

The stream queue is bounded and the reader never blocks on it: transaction
messages that arrive while it is full are dropped and counted, responses are
always delivered.
"""

from __future__ import annotations
from typing import Any, AsyncIterator, Dict, Iterable, Optional
import asyncio
import itertools
import json
import logging

import aiohttp

from .config import DEFAULT_LEDGER_URL
from .contracts import NFTokenInfo


logger = logging.getLogger(__name__)

_CLOSED = object()

DEFAULT_STREAM_BUFFER = 10000


class LedgerError(Exception):
    """Base class for ledger client failures."""


class LedgerConnectionError(LedgerError):
    """The websocket could not be opened or was lost."""


class LedgerRequestError(LedgerError):
    """The server answered a request with an error."""

    def __init__(self, error: str, message: Optional[str] = None):
        self.error = error
        self.message = message
        super().__init__(f"{error}: {message}" if message else error)


class LedgerClient:
    """Async websocket client for the XRP Ledger API."""

    def __init__(
        self,
        url: str = DEFAULT_LEDGER_URL,
        request_timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        stream_buffer: int = DEFAULT_STREAM_BUFFER
    ):
        self._url = url
        self._request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._stream: asyncio.Queue = asyncio.Queue(maxsize=stream_buffer)
        self._dropped = 0
        self._closed = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def dropped(self) -> int:
        """Transaction messages discarded because the stream buffer was full."""
        return self._dropped

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self._url, heartbeat=30.0)
        except (aiohttp.ClientError, OSError) as e:
            raise LedgerConnectionError(f"Could not connect to {self._url}: {e}") from e
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("Connected to the XRPL server at %s", self._url)

    async def close(self):
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._reader is not None:
            await self._reader
            self._reader = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'LedgerClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # =========================================================================
    # REQUESTS
    # =========================================================================

    async def request(self, command: str, **params: Any) -> Dict[str, Any]:
        """
        Send a command and wait for its response.

        Returns the `result` object. Raises LedgerRequestError for error
        responses and LedgerConnectionError if the socket is gone.
        """
        if not self.connected:
            raise LedgerConnectionError("Not connected")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._ws.send_str(json.dumps({'id': request_id, 'command': command, **params}))
            response = await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise LedgerRequestError('timeout', f"{command} timed out") from e
        except ConnectionResetError as e:
            raise LedgerConnectionError(str(e)) from e
        finally:
            self._pending.pop(request_id, None)

        if response.get('status') == 'error' or 'error' in response:
            raise LedgerRequestError(
                response.get('error', 'unknown'),
                response.get('error_message')
            )
        return response.get('result', {})

    async def subscribe(self, streams: Iterable[str]) -> Dict[str, Any]:
        streams = list(streams)
        result = await self.request('subscribe', streams=streams)
        logger.info("Subscribed to streams: %s", ', '.join(streams))
        return result

    async def nft_info(self, nft_id: str) -> Optional[NFTokenInfo]:
        """
        Detail lookup for one NFT.

        Returns None when the server does not know the token yet or the
        lookup fails for any ledger-side reason.
        """
        try:
            result = await self.request('nft_info', nft_id=nft_id)
        except LedgerError as e:
            logger.warning("Error fetching nft_info for %s: %s", nft_id, e)
            return None
        return NFTokenInfo.from_result(nft_id, result)

    # =========================================================================
    # STREAM
    # =========================================================================

    async def transactions(self) -> AsyncIterator[Dict[str, Any]]:
        """Transaction messages in arrival order, until the socket closes."""
        while True:
            if self._closed and self._stream.empty():
                return
            message = await self._stream.get()
            if message is _CLOSED:
                return
            yield message

    async def _read_loop(self):
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("Websocket error: %s", self._ws.exception())
                    break
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ConnectionResetError("Websocket closed"))
            self._closed = True
            # A full buffer is drained first; the flag ends the iteration then
            if not self._stream.full():
                self._stream.put_nowait(_CLOSED)
            logger.info("Disconnected from %s", self._url)

    def _dispatch(self, data: str):
        try:
            message = json.loads(data)
        except ValueError:
            logger.warning("Ignoring non-JSON message from server")
            return
        if not isinstance(message, dict):
            return

        request_id = message.get('id')
        if message.get('type') == 'response' and request_id in self._pending:
            future = self._pending[request_id]
            if not future.done():
                future.set_result(message)
        elif message.get('type') == 'transaction':
            try:
                self._stream.put_nowait(message)
            except asyncio.QueueFull:
                self._dropped += 1
                if self._dropped == 1 or self._dropped % 1000 == 0:
                    logger.warning("Stream buffer full, %d transaction messages dropped so far", self._dropped)
