# =============================================================================
# success_core/config/__init__.py
# Settings for the sync core
# =============================================================================

from .settings import (
    SyncSettings,
    load_settings,
    DEFAULT_SECRETS_PATH,
)

__all__ = [
    "SyncSettings",
    "load_settings",
    "DEFAULT_SECRETS_PATH",
]
