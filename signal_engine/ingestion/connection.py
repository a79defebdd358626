"""
Persistent WebSocket connection to the Polymarket CLOB market channel.

Owns the socket lifecycle: connect, subscribe, heartbeat, reconnect with
exponential backoff. Parsed messages are handed to a callback (normally the
MarketDataRouter); this class never interprets them.

States:
    DISCONNECTED -> CONNECTING -> CONNECTED -> (CLOSING | ERROR) -> DISCONNECTED
and back to CONNECTING while scanning is still requested.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import ConnectionConfig
from ..events import ConnectionExhausted, ConnectionStateChanged, EventBus

logger = logging.getLogger(__name__)

PONG = "PONG"
PING = "PING"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    ERROR = "error"


def backoff_delay(attempt: int, base: float, max_delay: float) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based)"""
    return min(base * (2 ** attempt), max_delay)


class ConnectionManager:
    """
    Keeps one market-data socket alive.

    Usage:
        manager = ConnectionManager(on_message=router.dispatch, bus=bus)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        on_message: Callable[[dict], None],
        bus: Optional[EventBus] = None,
        config: Optional[ConnectionConfig] = None,
        connect: Callable = websockets.connect,
    ):
        """
        Args:
            on_message: Called with every parsed JSON object from the socket
            bus: Receives connection state and exhaustion events
            config: Connection parameters (uses defaults if not provided)
            connect: Socket factory, ``websockets.connect`` compatible
        """
        self.on_message = on_message
        self.bus = bus
        self.config = config or ConnectionConfig()
        self._connect = connect

        # Connection state
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._scanning = False
        self._exhausted = False
        self._reconnect_attempts = 0
        self._run_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

        # Subscriptions
        self._subscribed_assets: Set[str] = set()
        self._request_id = 0

        # Stats
        self._messages_received = 0
        self._parse_errors = 0
        self._pongs_received = 0
        self._last_message_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def subscribed_assets(self) -> Set[str]:
        return set(self._subscribed_assets)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Begin scanning in a background task"""
        if self._scanning:
            logger.warning("ConnectionManager is already running")
            return

        self._scanning = True
        self._exhausted = False
        self._reconnect_attempts = 0
        self._run_task = asyncio.create_task(self.run())

    async def stop(self):
        """Stop scanning, cancel timers and close the socket"""
        self._scanning = False
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            self._set_state(ConnectionState.CLOSING)

        await self._stop_heartbeat()

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing socket: {e}")

        # Cancels a pending reconnect sleep as well
        if self._run_task and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
        self._run_task = None

        if not self._exhausted:
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Market connection stopped")

    async def wait_closed(self):
        """Block until the run loop exits (stop or exhaustion)"""
        if self._run_task:
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass

    async def run(self):
        """Connect and process messages, reconnecting with backoff on failure"""
        self._scanning = True

        while self._scanning:
            self._set_state(ConnectionState.CONNECTING)
            failed = False

            try:
                logger.info(f"Connecting to market channel: {self.config.ws_url}")
                async with self._connect(
                    self.config.ws_url,
                    ping_interval=None,  # literal PING heartbeat below
                    close_timeout=self.config.close_timeout,
                ) as ws:
                    self._ws = ws
                    await self._on_connected()
                    await self._message_loop()

            except ConnectionClosed as e:
                logger.warning(f"Market channel closed: {e}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failed = True
                logger.error(f"Market channel error: {e}")
            finally:
                await self._stop_heartbeat()
                self._ws = None

            if not self._scanning:
                break

            self._set_state(ConnectionState.ERROR if failed else ConnectionState.CLOSING)
            self._set_state(ConnectionState.DISCONNECTED)

            delay = self.next_reconnect_delay()
            if delay is None:
                self._on_exhausted()
                break

            logger.info(
                f"Reconnecting in {delay:.1f}s "
                f"(attempt {self._reconnect_attempts}/{self.config.max_reconnect_attempts})"
            )
            await asyncio.sleep(delay)

    def next_reconnect_delay(self) -> Optional[float]:
        """
        Consume one reconnect attempt and return its delay in seconds,
        or None once the attempt budget is spent.
        """
        if self._reconnect_attempts >= self.config.max_reconnect_attempts:
            return None
        self._reconnect_attempts += 1
        return backoff_delay(
            self._reconnect_attempts,
            self.config.base_reconnect_delay,
            self.config.max_reconnect_delay,
        )

    async def _on_connected(self):
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Market channel connected")

        await self._send({
            "type": "subscribe",
            "channel": "markets",
            "id": self._next_id(),
            "payload": {},
        })

        # Resubscribe to assets tracked before the reconnect
        if self._subscribed_assets:
            await self._send_asset_subscription(sorted(self._subscribed_assets))
            logger.info(f"Resubscribed to {len(self._subscribed_assets)} assets")

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _on_exhausted(self):
        self._exhausted = True
        self._scanning = False
        self._set_state(ConnectionState.ERROR)
        logger.error(
            f"Max reconnection attempts ({self.config.max_reconnect_attempts}) reached; "
            f"market channel abandoned, operator intervention required"
        )
        if self.bus:
            self.bus.publish(ConnectionExhausted(attempts=self._reconnect_attempts))

    def _set_state(self, new_state: ConnectionState):
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        logger.debug(f"Connection state {old_state.value} -> {new_state.value}")
        if self.bus:
            self.bus.publish(ConnectionStateChanged(old_state.value, new_state.value))

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            if self._ws is None or self._state != ConnectionState.CONNECTED:
                return
            try:
                await self._ws.send(PING)
            except ConnectionClosed:
                return
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")
                return

    async def _stop_heartbeat(self):
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def _message_loop(self):
        async for message in self._ws:
            self.handle_raw_message(message)

    def handle_raw_message(self, raw):
        """Parse one frame and dispatch each JSON object it contains"""
        self._messages_received += 1
        self._last_message_time = time.time()

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        if raw.strip() == PONG:
            self._pongs_received += 1
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            self._parse_errors += 1
            logger.warning(f"Invalid JSON message: {raw[:100]}")
            return

        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                logger.debug(f"Unexpected message format: {type(item)}")
                continue
            try:
                self.on_message(item)
            except Exception as e:
                logger.error(f"Error handling message: {e}")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe_assets(self, asset_ids: Iterable[str]):
        """Subscribe to per-asset quote updates"""
        new_ids = [a for a in asset_ids if a and a not in self._subscribed_assets]
        if not new_ids:
            return

        self._subscribed_assets.update(new_ids)
        if self.is_connected:
            await self._send_asset_subscription(new_ids)
            logger.info(f"Subscribed to {len(new_ids)} new assets")

    async def unsubscribe_assets(self, asset_ids: Iterable[str]):
        removed = [a for a in asset_ids if a in self._subscribed_assets]
        if not removed:
            return

        self._subscribed_assets.difference_update(removed)
        if self.is_connected:
            await self._send({
                "type": "unsubscribe",
                "channel": "orderbook",
                "id": self._next_id(),
                "payload": {"asset_ids": removed},
            })

    async def _send_asset_subscription(self, asset_ids: List[str]):
        await self._send({
            "type": "subscribe",
            "channel": "orderbook",
            "id": self._next_id(),
            "payload": {"asset_ids": list(asset_ids)},
        })

    async def _send(self, msg: dict):
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps(msg))
        except Exception as e:
            logger.error(f"Failed to send {msg.get('type')} message: {e}")

    def _next_id(self) -> str:
        self._request_id += 1
        return str(self._request_id)

    def get_stats(self) -> dict:
        """Get connection statistics"""
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "exhausted": self._exhausted,
            "reconnect_attempts": self._reconnect_attempts,
            "subscribed_assets": len(self._subscribed_assets),
            "messages_received": self._messages_received,
            "parse_errors": self._parse_errors,
            "pongs_received": self._pongs_received,
            "last_message_age": (
                time.time() - self._last_message_time
                if self._last_message_time else None
            ),
        }
