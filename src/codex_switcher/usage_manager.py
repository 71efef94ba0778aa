"""
Usage Manager - cached usage summaries with coalesced background refreshes

The manager owns the in-memory usage cache, refreshes it from the usage API
and tells listeners whenever it changes. Refreshes run one batch at a time:

- Idle: nothing is being fetched
- Fetching: one batch is fetching profiles one after another
- Fetching with pending: another refresh was requested meanwhile and was
  merged into the single batch that starts when the current one finishes

Requests made while a batch is running never queue up beyond that one
pending batch; they are merged into it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from .api_client import UsageAPI
from .cache_manager import UsageCacheStore
from .summarizer import summarize_snapshot
from .usage_types import (
    DEFAULT_CACHE_TTL,
    DEFAULT_FETCH_DELAY,
    CacheFile,
    CachedUsage,
    Profile,
    RefreshState,
    UsageEntry,
    UsageError,
)


Listener = Callable[[], Any]
ProfileLike = Union[Profile, Mapping[str, Any]]


def _as_profile(item: ProfileLike) -> Optional[Profile]:
    if isinstance(item, Profile):
        return item
    if isinstance(item, Mapping):
        name = item.get('name')
        auth_file = item.get('auth_file', item.get('authFile', ''))
        if not isinstance(name, str):
            return None
        return Profile(name=name, auth_file=auth_file or '')
    return None


def normalize_profiles(profiles: Optional[Iterable[ProfileLike]]) -> Dict[str, Profile]:
    """Deduplicate profiles by name, keeping the last one given for each name"""
    normalized: Dict[str, Profile] = {}
    for item in profiles or ():
        profile = _as_profile(item)
        if profile is None or not profile.name:
            continue
        normalized[profile.name] = profile
    return normalized


@dataclass
class PendingBatch:
    """Profiles to fetch in one pass, and when everyone waiting on it is done"""
    profiles: Dict[str, Profile]
    force: bool = False
    prune_missing: bool = False
    done: Optional[asyncio.Future] = field(default=None, repr=False)

    def merge(self, profiles: Dict[str, Profile], force: bool, prune_missing: bool):
        self.profiles.update(profiles)
        self.force = self.force or force
        self.prune_missing = self.prune_missing or prune_missing


class UsageManager:
    """Owns the usage cache, its refresh schedule and its listeners"""

    def __init__(self, store: UsageCacheStore, api: Optional[UsageAPI] = None,
                 cache_ttl: float = DEFAULT_CACHE_TTL, fetch_delay: float = DEFAULT_FETCH_DELAY,
                 clock: Optional[Callable[[], float]] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
                 debug: bool = False):
        """
        Initialize the usage manager

        Args:
            store: Cache store backing the in-memory cache
            api: Usage API client (a default client is created if omitted)
            cache_ttl: Seconds before a cached summary is stale
            fetch_delay: Seconds to wait between two fetches of one batch
            clock: Returns the current time in seconds (defaults to time.time)
            sleep: Coroutine used for the delay (defaults to asyncio.sleep)
            debug: Enable debug logging
        """
        if cache_ttl < 0:
            raise UsageError(f"cache_ttl cannot be negative: {cache_ttl}")
        if fetch_delay < 0:
            raise UsageError(f"fetch_delay cannot be negative: {fetch_delay}")

        self.store = store
        self.api = api or UsageAPI(debug=debug)
        self.cache_ttl = cache_ttl
        self.fetch_delay = fetch_delay
        self.debug = debug

        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

        self._cache: CacheFile = store.load()
        self._listeners: List[Listener] = []

        # Two slots: the running batch and at most one batch waiting behind it
        self._current: Optional[PendingBatch] = None
        self._pending: Optional[PendingBatch] = None
        self._task: Optional[asyncio.Task] = None

        self.logger = logging.getLogger("UsageManager")
        if debug:
            self.logger.setLevel(logging.DEBUG)
        else:
            self.logger.setLevel(logging.INFO)

    @classmethod
    def from_config(cls, config_manager, api: Optional[UsageAPI] = None,
                    debug: Optional[bool] = None) -> 'UsageManager':
        """Build a manager from a ConfigManager's paths and usage settings"""
        debug = config_manager.debug if debug is None else debug
        config_manager.ensure_dirs()
        return cls(
            UsageCacheStore.in_directory(config_manager.config_root, debug=debug),
            api=api or UsageAPI.from_config(config_manager, debug=debug),
            cache_ttl=config_manager.usage_cache_ttl,
            fetch_delay=config_manager.usage_fetch_delay,
            debug=debug,
        )

    # Time helpers

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def cache_ttl_ms(self) -> int:
        return int(self.cache_ttl * 1000)

    @property
    def state(self) -> RefreshState:
        if self._current is None:
            return RefreshState.IDLE
        if self._pending is None:
            return RefreshState.FETCHING
        return RefreshState.FETCHING_WITH_PENDING

    # Reads

    def _wrap(self, entry: Optional[UsageEntry]) -> Optional[CachedUsage]:
        if entry is None:
            return None
        age_ms = self._now_ms() - entry.fetched_at
        return CachedUsage(
            summary=entry.summary,
            fetched_at=entry.fetched_at,
            age_ms=age_ms,
            stale=age_ms >= self.cache_ttl_ms,
        )

    def get_summary(self, name: str) -> Optional[CachedUsage]:
        """Cached summary for a profile, or None if nothing was fetched yet"""
        return self._wrap(self._cache.entries.get(name))

    def get_all_summaries(self, profiles: Union[Mapping[str, Any], Iterable[Union[str, ProfileLike]]]
                          ) -> Dict[str, Optional[CachedUsage]]:
        """Cached summaries for several profiles, keyed by name

        Accepts a mapping keyed by profile name (such as the accounts
        registry) or an iterable of names or profiles.
        """
        if isinstance(profiles, Mapping):
            names = list(profiles.keys())
        else:
            names = []
            for item in profiles:
                if isinstance(item, str):
                    names.append(item)
                else:
                    profile = _as_profile(item)
                    if profile is not None:
                        names.append(profile.name)
        return {name: self.get_summary(name) for name in names}

    def get_status(self) -> Dict[str, Any]:
        """Current refresh state and cache statistics"""
        return {
            'state': self.state.value,
            'cached_profiles': sorted(self._cache.entries),
            'running_profiles': list(self._current.profiles) if self._current else [],
            'pending_profiles': list(self._pending.profiles) if self._pending else [],
            'listeners': len(self._listeners),
            'cache_file': str(self.store.cache_file),
        }

    # Listeners

    def on_update(self, listener: Listener) -> Callable[[], None]:
        """Register a callback run after every cache change

        Returns:
            A function that unregisters the callback
        """
        self._listeners.append(listener)

        def unsubscribe():
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    async def wait_for_update(self, timeout: Optional[float] = None) -> bool:
        """Wait for the next cache change

        Returns:
            True if a change happened, False if the timeout expired first
        """
        future = asyncio.get_running_loop().create_future()

        def resolve():
            if not future.done():
                future.set_result(None)

        unsubscribe = self.on_update(resolve)
        try:
            await asyncio.wait_for(future, timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                self.logger.warning(f"Usage listener failed: {e}")

    def _persist(self):
        self.store.save(self._cache)

    # Direct mutations

    def invalidate_cache(self):
        """Drop every cached summary, in memory and on disk"""
        self._cache = CacheFile()
        self._persist()
        self._notify()

    def remove_account(self, name: str):
        if name in self._cache.entries:
            del self._cache.entries[name]
            self._persist()
            self._notify()

    def rename_account(self, old_name: str, new_name: str):
        """Move a cached summary to a new profile name without refetching"""
        if old_name == new_name:
            return
        if old_name in self._cache.entries:
            self._cache.entries[new_name] = self._cache.entries.pop(old_name)
            self._persist()
            self._notify()

    def _prune_missing(self, keep: Set[str]):
        removed = [name for name in self._cache.entries if name not in keep]
        if not removed:
            return
        for name in removed:
            del self._cache.entries[name]
        self.logger.debug(f"Pruned cached usage for {', '.join(removed)}")
        self._persist()
        self._notify()

    # Refreshing

    def _should_fetch(self, name: str, force: bool) -> bool:
        if force:
            return True
        entry = self._cache.entries.get(name)
        if entry is None:
            return True
        return self._now_ms() - entry.fetched_at >= self.cache_ttl_ms

    async def _fetch_and_store(self, profile: Profile):
        snapshot = await asyncio.to_thread(self.api.fetch_snapshot, profile.auth_file)
        summary = summarize_snapshot(snapshot)
        self._cache.entries[profile.name] = UsageEntry(summary=summary, fetched_at=self._now_ms())
        self._persist()
        self._notify()

    async def _refresh_profiles(self, batch: PendingBatch):
        first = True
        for profile in list(batch.profiles.values()):
            if not self._should_fetch(profile.name, batch.force):
                self.logger.debug(f"Usage for '{profile.name}' is fresh, skipping")
                continue
            if not first:
                await self._sleep(self.fetch_delay)
            first = False

            self.logger.debug(f"Refreshing usage for '{profile.name}'")
            try:
                await self._fetch_and_store(profile)
            except Exception as e:
                self.logger.warning(f"Failed to refresh usage for '{profile.name}': {e}")

    async def _run_batch(self, batch: PendingBatch):
        try:
            await self._refresh_profiles(batch)
        except Exception as e:
            self.logger.warning(f"Usage refresh failed: {e}")
        finally:
            self._current = None
            if not batch.done.done():
                batch.done.set_result(None)
            if self._pending is not None:
                next_batch, self._pending = self._pending, None
                self._start(next_batch)

    def _start(self, batch: PendingBatch):
        self._current = batch
        self.logger.debug(f"Starting usage refresh for {len(batch.profiles)} profile(s)")
        self._task = asyncio.get_running_loop().create_task(self._run_batch(batch))

    def _schedule(self, profiles: Dict[str, Profile], force: bool, prune_missing: bool) -> PendingBatch:
        loop = asyncio.get_running_loop()

        if self._current is None:
            batch = PendingBatch(profiles, force, prune_missing, loop.create_future())
            self._start(batch)
            return batch

        if self._pending is None:
            self._pending = PendingBatch(dict(profiles), force, prune_missing, loop.create_future())
        else:
            self._pending.merge(profiles, force, prune_missing)
        return self._pending

    async def refresh_accounts(self, profiles: Iterable[ProfileLike], force: bool = False,
                               prune_missing: bool = False):
        """Refresh cached usage for the given profiles

        Profiles whose summary is younger than the TTL are skipped unless
        ``force`` is set. With ``prune_missing``, cached entries for profiles
        not in ``profiles`` are dropped right away. Returns once every given
        profile has been attempted; fetch failures are cached as summaries,
        never raised.
        """
        normalized = normalize_profiles(profiles)
        if prune_missing:
            self._prune_missing(set(normalized))
        if not normalized:
            return

        batch = self._schedule(normalized, force, prune_missing)
        # A cancelled caller must not cancel a batch others are waiting on
        await asyncio.shield(batch.done)

    async def stop(self):
        """Drop the pending batch and cancel the running one"""
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done.done():
            pending.done.set_result(None)

        current, task = self._current, self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # A task cancelled before its first step never runs its own cleanup.
        # Its cleanup may instead have started a batch requested meanwhile.
        if self._current is current:
            self._current = None
        if current is not None and not current.done.done():
            current.done.set_result(None)
