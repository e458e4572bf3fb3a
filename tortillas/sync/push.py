"""
Push Listener

Websocket subscriber for ``/ws``. Dispatches incoming SyncEvents to
callbacks registered per event type, typically ``SyncedView.notify``.

Lost connections are retried with exponential backoff (base delay doubled
per attempt). After the configured number of failed attempts the listener
gives up; the attached views keep converging through polling.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterable, Optional

import websockets
from pydantic import ValidationError as SchemaError
from websockets.exceptions import WebSocketException

from tortillas.core.config import get_settings
from tortillas.schemas import EventType, SyncEvent
from tortillas.sync.views import SyncedView

logger = logging.getLogger(__name__)

Callback = Callable[[SyncEvent], Any]


def push_url(base_url: str, topics: Iterable[EventType] = ()) -> str:
    """ws(s):// URL of the push endpoint for an http(s):// API base URL."""
    url = base_url.rstrip("/")
    if url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://"):]
    url += "/ws"
    names = sorted(t.value for t in topics)
    if names:
        url += "?topics=" + ",".join(names)
    return url


class PushListener:
    """
    Example:
        >>> listener = PushListener()
        >>> listener.attach(kitchen_view)
        >>> task = asyncio.create_task(listener.run())
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        connect: Callable[[str], Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self._url = url
        self._base_url = settings.api_base_url
        self.max_attempts = max_attempts if max_attempts is not None else settings.push_reconnect_attempts
        self.base_delay = base_delay if base_delay is not None else settings.push_reconnect_delay
        self._connect = connect
        self._sleep = sleep
        self._subscribers: dict[EventType, list[Callback]] = defaultdict(list)
        self.connected = False
        self.failed_attempts = 0

    @property
    def url(self) -> str:
        return self._url or push_url(self._base_url, self._subscribers)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, event_type: EventType, callback: Callback) -> Callable[[], None]:
        """Register a callback. Returns a function that removes it again."""
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(event_type, None)

        return unsubscribe

    def attach(self, view: SyncedView) -> Callable[[], None]:
        """Wake ``view`` on every event type it cares about."""
        removers = [self.subscribe(topic, view.notify) for topic in view.topics]

        def detach() -> None:
            for remove in removers:
                remove()

        return detach

    async def dispatch(self, message: str | bytes) -> Optional[SyncEvent]:
        try:
            event = SyncEvent.model_validate_json(message)
        except SchemaError as e:
            logger.warning(f"Ignoring malformed push message: {e}")
            return None

        for callback in list(self._subscribers.get(event.type, [])):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Push callback for '{event.type.value}' failed")
        return event

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def run(self) -> None:
        """Listen until cancelled or until reconnecting gives up."""
        while True:
            try:
                async with self._connect(self.url) as websocket:
                    self.connected = True
                    self.failed_attempts = 0
                    logger.info(f"Push channel connected: {self.url}")
                    async for message in websocket:
                        await self.dispatch(message)
                logger.info("Push channel closed by server")
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning(f"Push channel error: {e!r}")
            finally:
                self.connected = False

            self.failed_attempts += 1
            if self.failed_attempts > self.max_attempts:
                logger.warning(
                    f"Push channel unavailable after {self.max_attempts} attempts; relying on polling"
                )
                return

            delay = self.base_delay * 2 ** (self.failed_attempts - 1)
            logger.info(f"Reconnecting push channel in {delay:.1f}s (attempt {self.failed_attempts})")
            await self._sleep(delay)
