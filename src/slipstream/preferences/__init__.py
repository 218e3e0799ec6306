"""User preference models and loader exports."""

from .loader import UserConfigError, UserConfigLoader, load_user_config
from .models import DaemonPreferences, UiPreferences, UserConfig

__all__ = [
    "DaemonPreferences",
    "UiPreferences",
    "UserConfig",
    "UserConfigError",
    "UserConfigLoader",
    "load_user_config",
]
