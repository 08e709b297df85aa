# =============================================================================
# success_core/notifications.py
# User-facing notifications (toasts and the offline banner)
# =============================================================================
"""
Notifiers turn sync events into user feedback.

The sync layer never talks to the UI directly; it calls a Notifier. The
Streamlit implementation shows toasts and keeps the offline banner flag in
session state so the page can render it on every rerun.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Protocol
import logging

logger = logging.getLogger(__name__)


class NotificationLevel(Enum):
    """Severity of a notification."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    """A single notification as shown to the user."""
    title: str
    description: str = ""
    level: NotificationLevel = NotificationLevel.INFO


class Notifier(Protocol):
    """Anything that can surface sync feedback to the user."""

    def notify(
        self,
        title: str,
        description: str = "",
        level: NotificationLevel = NotificationLevel.INFO,
    ) -> None:
        ...

    def set_offline(self, offline: bool) -> None:
        ...


class LoggingNotifier:
    """Headless notifier: writes notifications to the log."""

    _LEVELS = {
        NotificationLevel.INFO: logging.INFO,
        NotificationLevel.SUCCESS: logging.INFO,
        NotificationLevel.WARNING: logging.WARNING,
        NotificationLevel.ERROR: logging.ERROR,
    }

    def __init__(self):
        self.offline = False

    def notify(self, title, description="", level=NotificationLevel.INFO) -> None:
        message = f"{title}: {description}" if description else title
        logger.log(self._LEVELS[level], message)

    def set_offline(self, offline: bool) -> None:
        if offline != self.offline:
            logger.warning("Offline mode") if offline else logger.info("Connection restored")
        self.offline = offline


@dataclass
class RecordingNotifier:
    """Keeps every notification in memory. Used by tests and batch jobs."""
    notifications: List[Notification] = field(default_factory=list)
    offline: bool = False

    def notify(self, title, description="", level=NotificationLevel.INFO) -> None:
        self.notifications.append(Notification(title, description, level))

    def set_offline(self, offline: bool) -> None:
        self.offline = offline

    @property
    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]


class StreamlitNotifier:
    """
    Streamlit notifier.

    Toasts are transient; the offline flag lives in session state and is
    rendered by `render_offline_banner()` on every rerun until connectivity
    returns.
    """

    OFFLINE_STATE_KEY = "sync_offline_banner"

    _ICONS = {
        NotificationLevel.INFO: "ℹ️",
        NotificationLevel.SUCCESS: "✅",
        NotificationLevel.WARNING: "⚠️",
        NotificationLevel.ERROR: "🚨",
    }

    def notify(self, title, description="", level=NotificationLevel.INFO) -> None:
        import streamlit as st

        body = f"**{title}**"
        if description:
            body += f"\n\n{description}"
        st.toast(body, icon=self._ICONS[level])

    def set_offline(self, offline: bool) -> None:
        import streamlit as st

        st.session_state[self.OFFLINE_STATE_KEY] = offline

    def render_offline_banner(self) -> bool:
        """Show the offline warning if we're offline. Returns the flag."""
        import streamlit as st

        offline = bool(st.session_state.get(self.OFFLINE_STATE_KEY, False))
        if offline:
            st.warning("You are offline. Showing cached data until the connection returns.")
        return offline
