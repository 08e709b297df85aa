# =============================================================================
# success_core/offline/connection_manager.py
# Connection Status Detection and Network Event Subscriptions
# =============================================================================
"""
ConnectionManager - Detects and monitors internet/Supabase connectivity.

Features:
- Connection probing (public DNS + Supabase host) without blocking the loop
- Periodic health checks as an asyncio task
- Explicit subscribe()/unsubscribe() for ONLINE / OFFLINE / FOCUS events

The host application reports focus regain through `notify_focus()`; online
and offline transitions come from the probes (or `set_online()` when the host
already knows, e.g. from a browser bridge).
"""

from __future__ import annotations
import asyncio
import socket
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Full connectivity (Internet + Supabase)
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but Supabase unavailable
    UNKNOWN = "unknown"         # Initial state


class NetworkEvent(Enum):
    """Trigger signals consumed by the sync layer."""
    ONLINE = "online"
    OFFLINE = "offline"
    FOCUS = "focus"


EventCallback = Callable[[NetworkEvent], None]


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to detach."""

    def __init__(self, events: NetworkEvents, kind: NetworkEvent, callback: EventCallback):
        self._events = events
        self.kind = kind
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._events._remove(self)
            self.active = False


class NetworkEvents:
    """
    Minimal event hub. Callbacks are synchronous and must not block; a
    callback that needs I/O schedules its own task.
    """

    def __init__(self):
        self._subscriptions: Dict[NetworkEvent, List[Subscription]] = {kind: [] for kind in NetworkEvent}

    def subscribe(self, kind: NetworkEvent, callback: EventCallback) -> Subscription:
        subscription = Subscription(self, kind, callback)
        self._subscriptions[kind].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscriptions[subscription.kind]
        if subscription in subs:
            subs.remove(subscription)

    def subscriber_count(self, kind: Optional[NetworkEvent] = None) -> int:
        if kind is not None:
            return len(self._subscriptions[kind])
        return sum(len(subs) for subs in self._subscriptions.values())

    def emit(self, kind: NetworkEvent) -> None:
        """Notify all subscribers of `kind`."""
        for subscription in list(self._subscriptions[kind]):
            try:
                subscription.callback(kind)
            except Exception as e:
                logger.error(f"Error in {kind.value} callback: {e}")

    def notify_focus(self) -> None:
        """Host hook: the window/page regained focus."""
        self.emit(NetworkEvent.FOCUS)


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    supabase_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager(NetworkEvents):
    """
    Connectivity monitor that emits ONLINE/OFFLINE on transitions.

    Usage:
        manager = ConnectionManager(supabase_url=settings.supabase_url)
        await manager.check_connection()
        manager.start_monitoring()
        ...
        await manager.stop_monitoring()
    """

    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline
    CONNECTION_TIMEOUT = 5          # Timeout for connection tests

    PROBE_HOSTS: Tuple[Tuple[str, int], ...] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )

    def __init__(
        self,
        supabase_url: str = "",
        check_interval_online: float = CHECK_INTERVAL_ONLINE,
        check_interval_offline: float = CHECK_INTERVAL_OFFLINE,
    ):
        super().__init__()
        self.supabase_url = supabase_url
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self._state = ConnectionState()
        self._monitor_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Full connectivity. UNKNOWN counts as online until a probe says otherwise."""
        return self._state.status in (ConnectionStatus.ONLINE, ConnectionStatus.UNKNOWN)

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    def _apply_status(self, new_status: ConnectionStatus) -> None:
        was_online = self.is_online
        old_status = self._state.status
        self._state.status = new_status

        if new_status == ConnectionStatus.ONLINE:
            self._state.last_online = datetime.now()
            self._state.consecutive_failures = 0
            self._state.error_message = None
        else:
            self._state.consecutive_failures += 1

        if old_status != new_status:
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")

        if was_online and not self.is_online:
            self.emit(NetworkEvent.OFFLINE)
        elif not was_online and self.is_online:
            self.emit(NetworkEvent.ONLINE)

    def set_online(self, online: bool) -> None:
        """Apply a transition reported by the host (e.g. browser online/offline)."""
        self._state.internet_available = online
        self._state.supabase_available = online
        self._state.last_check = datetime.now()
        self._apply_status(ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE)

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self.set_online(False)
        logger.info("Forced offline mode")

    async def check_connection(self) -> ConnectionState:
        """
        Probe connectivity and update state, emitting events on transitions.

        Returns:
            Updated ConnectionState
        """
        self._state.last_check = datetime.now()

        internet_ok = await asyncio.to_thread(self._check_internet)
        self._state.internet_available = internet_ok

        supabase_ok = False
        if internet_ok:
            supabase_ok = await asyncio.to_thread(self._check_supabase)
        self._state.supabase_available = supabase_ok

        if internet_ok and supabase_ok:
            self._apply_status(ConnectionStatus.ONLINE)
        elif internet_ok:
            self._apply_status(ConnectionStatus.DEGRADED)
        else:
            self._apply_status(ConnectionStatus.OFFLINE)

        return self._state

    def _probe(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=self.CONNECTION_TIMEOUT):
                return True
        except OSError:
            return False

    def _check_internet(self) -> bool:
        """Check internet connectivity by reaching well-known hosts."""
        return any(self._probe(host, port) for host, port in self.PROBE_HOSTS)

    def _check_supabase(self) -> bool:
        """Check that the Supabase host accepts connections."""
        if not self.supabase_url:
            # No Supabase configured - local-only mode
            return True

        parsed = urlparse(self.supabase_url)
        host = parsed.hostname
        if not host:
            self._state.error_message = f"Invalid Supabase URL: {self.supabase_url}"
            return False

        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        ok = self._probe(host, port)
        if not ok:
            self._state.error_message = f"Supabase host unreachable: {host}:{port}"
            logger.debug(self._state.error_message)
        return ok

    def start_monitoring(self) -> None:
        """Start background connection monitoring on the running loop."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._monitoring_loop(), name="ConnectionMonitor"
        )
        logger.debug("Connection monitoring started")

    async def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Connection monitoring stopped")

    async def _monitoring_loop(self) -> None:
        while True:
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )
            await asyncio.sleep(interval)

            try:
                await self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "internet": self._state.internet_available,
            "supabase": self._state.supabase_available,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
