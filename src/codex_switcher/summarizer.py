"""Normalize usage snapshots into cacheable summaries."""

from typing import Any, Dict, Optional

from .usage_types import (
    MESSAGE_LIMIT,
    Credits,
    RateLimit,
    RateWindow,
    Snapshot,
    SnapshotState,
    Summary,
    SummaryStatus,
    UsageMessage,
    UsageSummary,
    bool_or_none,
    dict_or_none,
    number_or_none,
    str_or_none,
)


def truncate(message: str, limit: int = MESSAGE_LIMIT) -> str:
    """Shorten a message to at most ``limit`` characters"""
    if len(message) > limit:
        return f"{message[:limit - 3]}..."
    return message


def normalize_rate_window(window: Any) -> Optional[RateWindow]:
    """Convert an API rate window (snake_case) to a RateWindow"""
    window = dict_or_none(window)
    if window is None:
        return None
    return RateWindow(
        used_percent=number_or_none(window.get('used_percent')),
        reset_after_seconds=number_or_none(window.get('reset_after_seconds')),
        limit_window_seconds=number_or_none(window.get('limit_window_seconds')),
    )


def _summarize_response(data: Dict[str, Any]) -> UsageSummary:
    rate_limit = dict_or_none(data.get('rate_limit')) or {}
    credits = dict_or_none(data.get('credits'))

    return UsageSummary(
        plan_type=str_or_none(data.get('plan_type')),
        rate_limit=RateLimit(
            allowed=bool_or_none(rate_limit.get('allowed')),
            limit_reached=bool_or_none(rate_limit.get('limit_reached')),
            primary=normalize_rate_window(rate_limit.get('primary_window')),
            secondary=normalize_rate_window(rate_limit.get('secondary_window')),
        ),
        credits=Credits(
            unlimited=bool_or_none(credits.get('unlimited')),
            balance=str_or_none(credits.get('balance')),
        ) if credits is not None else None,
    )


def summarize_snapshot(snapshot: Optional[Snapshot]) -> Summary:
    """Map a snapshot to a summary; failures become warnings or errors"""
    if snapshot is None:
        return None

    state = snapshot.state
    if state == SnapshotState.OK:
        return _summarize_response(snapshot.data or {})
    if state in (SnapshotState.MISSING, SnapshotState.INCOMPLETE):
        return UsageMessage(status=SummaryStatus.WARNING, message=truncate(snapshot.message))
    if state == SnapshotState.PARSE_ERROR:
        return UsageMessage(status=SummaryStatus.ERROR, message=truncate(f"Invalid auth.json: {snapshot.message}"))
    return UsageMessage(status=SummaryStatus.ERROR, message=truncate(snapshot.message))
