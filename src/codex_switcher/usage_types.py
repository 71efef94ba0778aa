"""
Data types for usage tracking

This module defines the values passed between the token reader, the usage
API client, the summarizer and the usage cache, plus the constants of the
remote endpoint and the on-disk cache format.

Dictionary keys used by ``to_dict``/``from_dict`` match the cache file
written by earlier releases, so existing caches keep loading.
"""

import math
from enum import Enum
from typing import Dict, Any, Optional, Union
from dataclasses import dataclass, field


# Remote endpoint
USAGE_ENDPOINT = "https://chatgpt.com/backend-api/wham/usage"
USAGE_REFERER = "https://chatgpt.com/codex/settings/usage"
REQUEST_TIMEOUT = 5.0  # seconds

# Cache file format
CACHE_FILE_NAME = "usage_cache.json"
CACHE_VERSION = 1

# Refresh pacing
DEFAULT_CACHE_TTL = 15 * 60  # seconds
DEFAULT_FETCH_DELAY = 2.0  # seconds

# Message limits
ERROR_BODY_LIMIT = 140
MESSAGE_LIMIT = 160


class UsageError(Exception):
    """Exception raised for misuse of the usage components"""
    pass


class TokenState(str, Enum):
    """Outcome of reading a profile's auth.json"""
    OK = "ok"
    MISSING = "missing"
    INCOMPLETE = "incomplete"
    PARSE_ERROR = "parse_error"


class SnapshotState(str, Enum):
    """Outcome of fetching a usage snapshot for one profile"""
    OK = "ok"
    MISSING = "missing"
    INCOMPLETE = "incomplete"
    PARSE_ERROR = "parse_error"
    ERROR = "error"


class SummaryStatus(str, Enum):
    """Status tag of a cached summary"""
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class RefreshState(str, Enum):
    """Refresh coordinator state"""
    IDLE = "idle"
    FETCHING = "fetching"
    FETCHING_WITH_PENDING = "fetching_with_pending"


@dataclass(frozen=True)
class Profile:
    """A named credential context and the path to its auth.json"""
    name: str
    auth_file: str = ""


@dataclass(frozen=True)
class TokenResult:
    """Result of reading credentials from an auth.json file"""
    state: TokenState
    access_token: Optional[str] = None
    account_id: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.state == TokenState.OK


@dataclass(frozen=True)
class Snapshot:
    """Raw outcome of one usage fetch: the response body or a failure message"""
    state: SnapshotState
    data: Optional[Dict[str, Any]] = None
    message: str = ""

    @classmethod
    def from_token_result(cls, token: TokenResult) -> 'Snapshot':
        """Carry a failed token read through as a snapshot"""
        return cls(state=SnapshotState(token.state.value), message=token.message)

    @classmethod
    def error(cls, message: str) -> 'Snapshot':
        return cls(state=SnapshotState.ERROR, message=message)


def number_or_none(value: Any) -> Optional[Union[int, float]]:
    # bool is an int subclass but never a valid measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    # json accepts Infinity and NaN
    if not math.isfinite(value):
        return None
    return value


def bool_or_none(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def dict_or_none(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


@dataclass(frozen=True)
class RateWindow:
    """One rate-limit window; the API may omit any of the fields"""
    used_percent: Optional[float] = None
    reset_after_seconds: Optional[float] = None
    limit_window_seconds: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional['RateWindow']:
        data = dict_or_none(data)
        if data is None:
            return None
        return cls(
            used_percent=number_or_none(data.get('usedPercent')),
            reset_after_seconds=number_or_none(data.get('resetAfterSeconds')),
            limit_window_seconds=number_or_none(data.get('limitWindowSeconds')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'usedPercent': self.used_percent,
            'resetAfterSeconds': self.reset_after_seconds,
            'limitWindowSeconds': self.limit_window_seconds,
        }


@dataclass(frozen=True)
class RateLimit:
    allowed: Optional[bool] = None
    limit_reached: Optional[bool] = None
    primary: Optional[RateWindow] = None
    secondary: Optional[RateWindow] = None

    @classmethod
    def from_dict(cls, data: Any) -> 'RateLimit':
        data = dict_or_none(data) or {}
        return cls(
            allowed=bool_or_none(data.get('allowed')),
            limit_reached=bool_or_none(data.get('limitReached')),
            primary=RateWindow.from_dict(data.get('primary')),
            secondary=RateWindow.from_dict(data.get('secondary')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'limitReached': self.limit_reached,
            'primary': self.primary.to_dict() if self.primary else None,
            'secondary': self.secondary.to_dict() if self.secondary else None,
        }


@dataclass(frozen=True)
class Credits:
    unlimited: Optional[bool] = None
    balance: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional['Credits']:
        data = dict_or_none(data)
        if data is None:
            return None
        return cls(
            unlimited=bool_or_none(data.get('unlimited')),
            balance=str_or_none(data.get('balance')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'unlimited': self.unlimited, 'balance': self.balance}


@dataclass(frozen=True)
class UsageSummary:
    """Normalized usage data for a profile whose fetch succeeded"""
    plan_type: Optional[str] = None
    rate_limit: RateLimit = field(default_factory=RateLimit)
    credits: Optional[Credits] = None
    status: SummaryStatus = SummaryStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'planType': self.plan_type,
            'rateLimit': self.rate_limit.to_dict(),
            'credits': self.credits.to_dict() if self.credits else None,
        }


@dataclass(frozen=True)
class UsageMessage:
    """A warning or error shown in place of usage data"""
    status: SummaryStatus
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status.value, 'message': self.message}


Summary = Optional[Union[UsageSummary, UsageMessage]]


def summary_to_dict(summary: Summary) -> Optional[Dict[str, Any]]:
    return summary.to_dict() if summary is not None else None


def summary_from_dict(data: Any) -> Summary:
    """Rebuild a summary from its cached form

    Raises:
        ValueError: if the data is not a recognizable summary
    """
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Summary must be an object, got {type(data).__name__}")

    status = SummaryStatus(data.get('status'))
    if status == SummaryStatus.OK:
        return UsageSummary(
            plan_type=str_or_none(data.get('planType')),
            rate_limit=RateLimit.from_dict(data.get('rateLimit')),
            credits=Credits.from_dict(data.get('credits')),
        )

    message = data.get('message')
    if not isinstance(message, str):
        raise ValueError("Summary message must be a string")
    return UsageMessage(status=status, message=message)


@dataclass
class UsageEntry:
    """A cached summary and when it was fetched (epoch milliseconds)"""
    summary: Summary
    fetched_at: int

    @classmethod
    def from_dict(cls, data: Any) -> 'UsageEntry':
        """Create UsageEntry from its cached form

        Raises:
            ValueError: on a malformed entry
        """
        if not isinstance(data, dict):
            raise ValueError("Cache entry must be an object")
        fetched_at = number_or_none(data.get('fetchedAt'))
        if fetched_at is None:
            raise ValueError("Cache entry is missing fetchedAt")
        return cls(summary=summary_from_dict(data.get('summary')), fetched_at=int(fetched_at))

    def to_dict(self) -> Dict[str, Any]:
        return {'summary': summary_to_dict(self.summary), 'fetchedAt': self.fetched_at}


@dataclass(frozen=True)
class CachedUsage:
    """Read view of a cache entry with its age at the time of the read"""
    summary: Summary
    fetched_at: int
    age_ms: int
    stale: bool


@dataclass
class CacheFile:
    """In-memory image of the usage cache file"""
    version: int = CACHE_VERSION
    entries: Dict[str, UsageEntry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'entries': {name: entry.to_dict() for name, entry in self.entries.items()},
        }
