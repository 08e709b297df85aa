# =============================================================================
# tests/unit/test_errors.py
# Unit Tests for error handling and notifiers
# =============================================================================

import logging

import pytest

from success_core.errors import (
    ConfigurationError,
    ErrorContext,
    NetworkError,
    SuccessCoreError,
    SyncTimeoutError,
    error_boundary,
    handle_error,
    safe_execute,
)
from success_core.notifications import (
    LoggingNotifier,
    NotificationLevel,
    StreamlitNotifier,
)


class TestExceptionHierarchy:
    """Error codes and details"""

    def test_timeout_is_a_network_error(self):
        error = SyncTimeoutError(timeout=5)
        assert isinstance(error, NetworkError)
        assert error.code == "SYNC_002"
        assert error.details == {"timeout": 5}

    def test_network_error_details(self):
        error = NetworkError("down", url="https://x", status=503)
        assert error.to_dict()["details"] == {"url": "https://x", "status": 503}
        assert "[SYNC_001] down" in str(error)

    def test_configuration_errors_are_not_recoverable(self):
        assert ConfigurationError("bad").recoverable is False


class TestHandleError:
    """Logging plus user notification"""

    def test_recoverable_error_notifies_with_title(self, notifier):
        handle_error(NetworkError("down"), notifier=notifier, title="Error fetching clients")

        assert notifier.titles == ["Error fetching clients"]
        assert notifier.notifications[0].level == NotificationLevel.ERROR
        assert notifier.notifications[0].description == "down"

    def test_unrecoverable_error_asks_for_support(self, notifier):
        handle_error(ConfigurationError("missing key"), notifier=notifier)
        assert notifier.titles == ["Critical error"]
        assert "contact support" in notifier.notifications[0].description

    def test_error_is_logged(self, caplog):
        with caplog.at_level(logging.ERROR):
            handle_error(ValueError("boom"), user_message="Parsing failed")
        assert "Parsing failed" in caplog.text


class TestSafeExecute:
    """safe_execute degrades to a default"""

    def test_returns_value(self):
        assert safe_execute(lambda: 3, default=0) == 3

    def test_returns_default_on_error(self, notifier):
        def broken():
            raise SuccessCoreError("nope")

        assert safe_execute(broken, default=[], notifier=notifier) == []
        assert len(notifier.notifications) == 1

    def test_reraise(self):
        with pytest.raises(ZeroDivisionError):
            safe_execute(lambda: 1 / 0, reraise=True)


class TestErrorContext:
    """Context manager suppression rules"""

    def test_recoverable_context_suppresses(self, notifier):
        with ErrorContext("Restoring session", notifier=notifier):
            raise NetworkError("down")
        assert notifier.titles == ["Error"]

    def test_unrecoverable_context_reraises(self):
        with pytest.raises(RuntimeError):
            with ErrorContext("Starting", recoverable=False):
                raise RuntimeError("fatal")


class TestErrorBoundary:
    def test_failing_call_returns_default(self):
        @error_boundary(default_return={})
        def parse(raw):
            raise KeyError(raw)

        assert parse("x") == {}


class TestNotifiers:
    """Headless and Streamlit notifiers"""

    def test_logging_notifier_tracks_offline(self, caplog):
        notifier = LoggingNotifier()
        with caplog.at_level(logging.INFO):
            notifier.notify("Back online", "Reconnected", NotificationLevel.SUCCESS)
            notifier.set_offline(True)

        assert notifier.offline is True
        assert "Back online: Reconnected" in caplog.text

    def test_streamlit_notifier_shows_toast(self, mock_streamlit):
        StreamlitNotifier().notify("Sync completed", "3 operations", NotificationLevel.SUCCESS)

        mock_streamlit.toast.assert_called_once()
        body = mock_streamlit.toast.call_args[0][0]
        assert "**Sync completed**" in body
        assert "3 operations" in body

    def test_streamlit_offline_banner(self, mock_streamlit):
        notifier = StreamlitNotifier()

        notifier.set_offline(True)
        assert notifier.render_offline_banner() is True
        mock_streamlit.warning.assert_called_once()

        notifier.set_offline(False)
        assert notifier.render_offline_banner() is False
        assert mock_streamlit.warning.call_count == 1
