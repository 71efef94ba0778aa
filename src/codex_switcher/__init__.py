"""Codex Switcher - usage tracking for saved Codex profiles"""

__version__ = "1.0.0"

from .api_client import UsageAPI
from .cache_manager import UsageCacheStore
from .config_manager import ConfigManager
from .summarizer import summarize_snapshot
from .token_reader import read_auth_tokens
from .usage_manager import UsageManager
from .usage_types import (
    CachedUsage,
    Profile,
    RefreshState,
    SummaryStatus,
    UsageError,
    UsageMessage,
    UsageSummary,
)

__all__ = [
    "__version__",
    "CachedUsage",
    "ConfigManager",
    "Profile",
    "RefreshState",
    "SummaryStatus",
    "UsageAPI",
    "UsageCacheStore",
    "UsageError",
    "UsageManager",
    "UsageMessage",
    "UsageSummary",
    "read_auth_tokens",
    "summarize_snapshot",
]
