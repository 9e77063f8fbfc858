"""Fine-grained job telemetry channels: websocket push or status polling."""

import asyncio
import json
import logging
import ssl
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import websockets
import websockets.exceptions

from .config import TrackerConfig
from .errors import TransportUnavailable

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException)


class Transport(ABC):
    """Feeds fine job data into a tracker.

    The sink is the tracker; transports use its ``running``,
    ``is_terminal``, ``auto_refresh`` and ``job_id`` attributes plus
    ``fetch_status()`` and ``handle_push_message()``.
    """

    name = "transport"

    def __init__(self, sink):
        self.sink = sink

    def _active(self) -> bool:
        return self.sink.running and not self.sink.is_terminal

    async def open(self):
        """Prepare the channel. Raises TransportUnavailable on failure."""

    @abstractmethod
    async def run(self):
        """Deliver data until the job is terminal or the tracker stops."""

    async def close(self):
        """Release any connection held by the channel."""


class PollTransport(Transport):
    """Re-fetches the job status on a fixed interval."""

    name = "poll"

    def __init__(self, sink, interval: float = 10.0):
        super().__init__(sink)
        self.interval = interval

    async def run(self):
        while self._active():
            await asyncio.sleep(self.interval)
            if not self._active():
                break
            if not self.sink.auto_refresh or not self.sink.job_id:
                continue
            await self.sink.fetch_status()


class PushTransport(Transport):
    """Subscribes to a job's progress events over a websocket."""

    name = "push"

    def __init__(self, sink, config: TrackerConfig):
        super().__init__(sink)
        self.config = config
        self.job_id = sink.job_id
        self.reconnect_delay = config.reconnect_delay
        self.websocket = None
        self.ssl_context = self._setup_ssl()

    def _setup_ssl(self) -> Optional[ssl.SSLContext]:
        """Configure SSL context."""
        if not self.config.ws_url.startswith("wss://"):
            return None
        if not self.config.verify_ssl:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            return context
        return ssl.create_default_context()

    @property
    def url(self) -> str:
        if not self.config.token:
            return self.config.ws_url
        sep = "&" if "?" in self.config.ws_url else "?"
        return f"{self.config.ws_url}{sep}token={self.config.token}"

    async def _connect(self):
        kwargs: Dict[str, Any] = {}
        if self.ssl_context is not None:
            kwargs["ssl"] = self.ssl_context
        websocket = await websockets.connect(self.url, **kwargs)
        await websocket.send(json.dumps({"type": "subscribe", "jobId": self.job_id}))
        logger.info(f"Subscribed to job {self.job_id}")
        return websocket

    async def open(self):
        try:
            self.websocket = await self._connect()
        except _CONNECT_ERRORS as e:
            raise TransportUnavailable(f"Push channel unavailable: {e}") from e

    async def run(self):
        try:
            while self._active():
                try:
                    if self.websocket is None:
                        self.websocket = await self._connect()
                    await self._consume(self.websocket)
                except websockets.exceptions.ConnectionClosed as e:
                    logger.warning(f"Push channel closed: {e}")
                except _CONNECT_ERRORS as e:
                    logger.error(f"Push channel error: {e}")

                await self.close()
                if self._active():
                    logger.info(f"Reconnecting in {self.reconnect_delay} seconds...")
                    await asyncio.sleep(self.reconnect_delay)
        finally:
            await self.close()

    async def _consume(self, websocket):
        async for message in websocket:
            try:
                data = json.loads(message)
            except json.JSONDecodeError as e:
                logger.error(f"Invalid message format: {e}")
                continue
            self.sink.handle_push_message(data)
            if not self._active():
                break

    async def close(self):
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except _CONNECT_ERRORS as e:
                logger.debug(f"Error closing push channel: {e}")


async def select_transport(sink, config: TrackerConfig) -> Transport:
    """Prefer the push channel, fall back to polling when it cannot connect."""
    if config.ws_url and sink.job_id:
        push = PushTransport(sink, config)
        try:
            await push.open()
            return push
        except TransportUnavailable as e:
            logger.warning(f"{e}; falling back to polling")
    return PollTransport(sink, config.fine_interval)
