"""Thread-safe DNS cache with TTL support and background refresh."""
import math
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from .config import logger, DEFAULT_TTL, REFRESH_POLICY, REFRESH_DELAY
from .errors import ValidationError
from .resolvers import forward_lookup, ipv4_only, reverse_lookup
from .rwlock import ReadWriteLock
from .scheduler import RefreshScheduler
from .stats import CacheStats

Resolver = Callable[[str], Sequence[str]]

REFRESH_POLICIES = ('resolve', 'delete')


@dataclass(frozen=True)
class CacheEntry:
    """One resolved lookup. Replaced wholesale, never mutated."""
    results: Tuple[str, ...]
    expires_at: float
    ipv4: Tuple[str, ...] = ()

    def is_expired(self, now: Optional[float] = None) -> bool:
        """An entry is fresh only while ``expires_at`` is strictly in the future."""
        if now is None:
            now = time.time()
        return self.expires_at <= now


def _validate_ttl(ttl) -> float:
    if ttl is None or not math.isfinite(ttl) or ttl <= 0:
        raise ValidationError(f"invalid ttl {ttl!r}: must be positive and finite")
    return float(ttl)


class DNSCache:
    """
    TTL cache in front of a resolver callable.

    Lookups take a shared lock, writes an exclusive one. When
    ``default_ttl`` is positive a background thread sweeps expired
    entries every ``refresh_interval`` seconds until ``close()``.

    Args:
        resolver: Callable mapping a key to an ordered list of results
        default_ttl: Seconds an entry stays fresh
        refresh_policy: ``'resolve'`` re-resolves expired entries during a
            sweep, ``'delete'`` evicts them
        refresh_delay: Pause between re-resolutions within one sweep
    """

    def __init__(self, resolver: Resolver, default_ttl: float = DEFAULT_TTL,
                 refresh_policy: str = REFRESH_POLICY, refresh_delay: float = REFRESH_DELAY):
        if refresh_policy not in REFRESH_POLICIES:
            raise ValidationError(
                f"invalid refresh policy {refresh_policy!r}: expected one of {REFRESH_POLICIES}"
            )
        if default_ttl is None or math.isnan(default_ttl):
            raise ValidationError(f"invalid ttl {default_ttl!r}")
        self._resolver = resolver
        self._default_ttl = default_ttl
        self._ttls: Dict[str, float] = {}
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = ReadWriteLock()
        self.refresh_policy = refresh_policy
        self.refresh_delay = refresh_delay
        self.stats = CacheStats()

        self._scheduler: Optional[RefreshScheduler] = None
        if default_ttl > 0:
            self._scheduler = RefreshScheduler(
                self.refresh,
                lambda: self.refresh_interval,
                name=f"{type(self).__name__}-refresh",
            )
            self._scheduler.start()

    # --- Configuration ---

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def refresh_interval(self) -> float:
        """Sweep period: the shortest TTL currently configured."""
        with self._lock.read_lock():
            return min([self._default_ttl, *self._ttls.values()])

    def set_ttl(self, ttl: float):
        """
        Change the default TTL for future insertions.

        Raises:
            ValidationError: If ``ttl`` is not positive
        """
        ttl = _validate_ttl(ttl)
        with self._lock.write_lock():
            self._default_ttl = ttl
        logger.debug(f"Default TTL set to {ttl}s")

    def set_key_ttl(self, key: str, ttl: float):
        """Override the TTL used for future insertions of ``key``."""
        ttl = _validate_ttl(ttl)
        with self._lock.write_lock():
            self._ttls[key] = ttl

    def ttl_for(self, key: str) -> float:
        with self._lock.read_lock():
            return self._ttls.get(key, self._default_ttl)

    # --- Lookups ---

    def fetch(self, key: str) -> List[str]:
        """
        Return results for ``key``, from the cache while the entry is fresh.

        A missing or expired entry is resolved live and stored. Resolver
        errors propagate unchanged and nothing is cached for them.
        """
        entry = self._get_fresh(key)
        if entry is not None:
            return list(entry.results)
        return self.resolve(key)

    def resolve(self, key: str) -> List[str]:
        """Resolve ``key`` bypassing the cache and store the fresh result."""
        return list(self._resolve_entry(key).results)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for ``key`` (fresh or not), if any."""
        with self._lock.read_lock():
            return self._cache.get(key)

    def _get_fresh(self, key: str) -> Optional[CacheEntry]:
        with self._lock.read_lock():
            entry = self._cache.get(key)
        if entry is not None and not entry.is_expired():
            self.stats.record_hit()
            return entry
        self.stats.record_miss()
        return None

    def _build_entry(self, results: Sequence[str], expires_at: float) -> CacheEntry:
        return CacheEntry(results=tuple(results), expires_at=expires_at)

    def _resolve_entry(self, key: str) -> CacheEntry:
        start_time = time.time()
        try:
            results = self._resolver(key)
        except Exception:
            self.stats.record_failure()
            raise
        now = time.time()
        self.stats.record_resolution(now - start_time)

        with self._lock.write_lock():
            ttl = self._ttls.get(key, self._default_ttl)
            entry = self._build_entry(results, now + ttl)
            self._cache[key] = entry
        logger.debug(f"[RESOLVED] {key} -> {list(entry.results)} TTL:{ttl}")
        return entry

    # --- Maintenance ---

    def refresh(self):
        """
        Sweep expired entries according to ``refresh_policy``.

        Failed re-resolutions evict the entry instead of raising, so a
        sweep never leaves an entry with its old expiry behind.
        """
        now = time.time()
        with self._lock.read_lock():
            expired = [k for k, v in self._cache.items() if v.is_expired(now)]
        if not expired:
            return

        if self.refresh_policy == 'delete':
            self._evict(expired, now)
        else:
            for i, key in enumerate(expired):
                if i and self.refresh_delay > 0:
                    time.sleep(self.refresh_delay)
                try:
                    self._resolve_entry(key)
                except Exception as e:
                    logger.warning(f"Re-resolving {key} failed, evicting: {e}")
                    self._evict([key], now)
        logger.debug(f"Refreshed {len(expired)} expired cache entries ({self.refresh_policy})")

    def _evict(self, keys: Sequence[str], now: float):
        removed = 0
        with self._lock.write_lock():
            for key in keys:
                entry = self._cache.get(key)
                # Skip entries replaced since the sweep snapshot
                if entry is not None and entry.is_expired(now):
                    del self._cache[key]
                    removed += 1
        if removed:
            self.stats.record_evictions(removed)
            logger.debug(f"Evicted {removed} expired cache entries")

    def clear(self):
        """Drop every entry."""
        with self._lock.write_lock():
            self._cache.clear()

    # --- Lifecycle ---

    @property
    def refreshing(self) -> bool:
        """Whether the background refresh thread is alive."""
        return self._scheduler is not None and self._scheduler.running

    def close(self):
        """Stop background refresh. Safe to call more than once."""
        if self._scheduler is not None:
            self._scheduler.stop()

    stop = close

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._cache)

    def __contains__(self, key: str) -> bool:
        with self._lock.read_lock():
            return key in self._cache


class ReverseDNSCache(DNSCache):
    """Caches address -> hostname lookups."""

    def __init__(self, default_ttl: float = DEFAULT_TTL, resolver: Resolver = reverse_lookup, **kwargs):
        super().__init__(resolver, default_ttl=default_ttl, **kwargs)


class ForwardDNSCache(DNSCache):
    """Caches hostname -> IP address lookups, keeping the IPv4 subset apart."""

    def __init__(self, default_ttl: float = DEFAULT_TTL, resolver: Resolver = forward_lookup, **kwargs):
        super().__init__(resolver, default_ttl=default_ttl, **kwargs)

    def _build_entry(self, results: Sequence[str], expires_at: float) -> CacheEntry:
        return CacheEntry(results=tuple(results), expires_at=expires_at, ipv4=tuple(ipv4_only(results)))

    def fetch_one(self, hostname: str) -> Optional[str]:
        """Return one address for ``hostname``, chosen at random."""
        addresses = self.fetch(hostname)
        return random.choice(addresses) if addresses else None

    def fetch_v4(self, hostname: str) -> List[str]:
        """Return only the IPv4 addresses for ``hostname``."""
        entry = self._get_fresh(hostname)
        if entry is None:
            entry = self._resolve_entry(hostname)
        return list(entry.ipv4)

    def fetch_one_v4(self, hostname: str) -> Optional[str]:
        addresses = self.fetch_v4(hostname)
        return random.choice(addresses) if addresses else None
