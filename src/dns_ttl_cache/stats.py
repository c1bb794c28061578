"""Hit/miss and resolution metrics for a DNS cache."""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List
from .config import logger


@dataclass
class CacheStats:
    """Tracks cache activity between two log intervals."""

    hits: int = 0
    misses: int = 0
    resolutions: int = 0
    failures: int = 0
    evictions: int = 0
    resolution_times: List[float] = field(default_factory=list)
    last_log_time: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_hit(self):
        """Record a lookup served from the cache."""
        with self._lock:
            self.hits += 1

    def record_miss(self):
        """Record a lookup that had to resolve."""
        with self._lock:
            self.misses += 1

    def record_resolution(self, response_time: float):
        """Record a successful resolution and how long it took."""
        with self._lock:
            self.resolutions += 1
            self.resolution_times.append(response_time)
            # Keep list bounded to last 1000 entries
            if len(self.resolution_times) > 1000:
                self.resolution_times = self.resolution_times[-1000:]

    def record_failure(self):
        """Record a failed resolution."""
        with self._lock:
            self.failures += 1

    def record_evictions(self, count: int = 1):
        """Record entries removed from the store."""
        with self._lock:
            self.evictions += count

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    def get_hit_rate(self) -> float:
        """Calculate cache hit rate as a percentage."""
        if self.lookups == 0:
            return 0.0
        return (self.hits / self.lookups) * 100

    def get_min_resolution_time(self) -> float:
        if not self.resolution_times:
            return 0.0
        return min(self.resolution_times)

    def get_mean_resolution_time(self) -> float:
        if not self.resolution_times:
            return 0.0
        return sum(self.resolution_times) / len(self.resolution_times)

    def get_max_resolution_time(self) -> float:
        if not self.resolution_times:
            return 0.0
        return max(self.resolution_times)

    def snapshot(self) -> Dict[str, float]:
        """Return the current counters as a plain dict."""
        with self._lock:
            return {
                'hits': self.hits,
                'misses': self.misses,
                'resolutions': self.resolutions,
                'failures': self.failures,
                'evictions': self.evictions,
                'hit_rate': self.get_hit_rate(),
                'mean_resolution_time': self.get_mean_resolution_time(),
            }

    def log_stats(self):
        """Log statistics and reset the counters for the next interval."""
        with self._lock:
            hit_rate = self.get_hit_rate()
            cache_stats = (
                f"Cache: {self.hits} hits / {self.misses} misses ({hit_rate:.1f}% hit rate), "
                f"{self.resolutions} resolutions, {self.failures} failures, {self.evictions} evictions"
            )
            if self.resolution_times:
                response_stats = (
                    f", Resolution times: min={self.get_min_resolution_time():.3f}s, "
                    f"mean={self.get_mean_resolution_time():.3f}s, "
                    f"max={self.get_max_resolution_time():.3f}s"
                )
            else:
                response_stats = ""

            logger.info(f"{cache_stats}{response_stats}")

            self.hits = 0
            self.misses = 0
            self.resolutions = 0
            self.failures = 0
            self.evictions = 0
            self.resolution_times = []
            self.last_log_time = time.time()
