"""
Result Cache - Bounded TTL store for oracle verdicts

Maps (normalized message, language) -> the oracle verdict obtained for it,
so repeated or resumed inputs do not pay for a second oracle call.

Keys:
    normalize: trim, collapse whitespace, lowercase, drop trailing
    sentence punctuation ("Hello!" and "hello" share an entry).
    The key is SHA-256("<lang>:<normalized>")[:16]; raw text is not kept.

Expiry:
    No entry outlives its TTL, however often it is read. Verdicts go stale
    as the oracle model and calibration evolve, so this is a correctness
    rule, not a tuning knob. Enforced on every read and opportunistically
    on writes.

Overflow:
    Oldest insertion is evicted first.

Thread-safe: one lock guards the map and counters. A lost write under a
race costs at most one extra oracle call; a torn entry is impossible
because entries are immutable and swapped in under the lock.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
import hashlib
import re
import threading
import time

from oracle_gate.signals import OracleVerdict


_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCT = re.compile(r"[.!?…]+$")

LENGTH_BUCKETS = (
    ("0-25", 25),
    ("26-50", 50),
    ("51-100", 100),
    ("101-200", 200),
    ("200+", None),
)


def normalize_message(text: str) -> str:
    normalized = _WHITESPACE.sub(" ", text.strip()).lower()
    return _TRAILING_PUNCT.sub("", normalized).rstrip()


@dataclass(frozen=True)
class CacheKey:
    """Normalized (message, language) pair."""
    normalized: str
    language: str

    @classmethod
    def for_message(cls, text: str, language: str) -> "CacheKey":
        return cls(normalized=normalize_message(text), language=language.lower())

    @property
    def digest(self) -> str:
        payload = f"{self.language}:{self.normalized}".encode("utf-8")
        return hashlib.sha256(payload).hexdigest()[:16]


@dataclass
class CacheConfig:
    enabled: bool = True
    max_entries: int = 1000
    ttl_seconds: float = 3600.0

    def __post_init__(self):
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {self.max_entries}")
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {self.ttl_seconds}")


@dataclass(frozen=True)
class CacheEntry:
    digest: str
    verdict: OracleVerdict
    stored_at: float
    expires_at: float
    message_length: int

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class CacheStats:
    size: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    evictions: int = 0
    expirations: int = 0
    avg_cached_length: float = 0.0
    length_distribution: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "avg_cached_length": self.avg_cached_length,
            "length_distribution": dict(self.length_distribution),
        }


class ResultCache:
    """
    In-process verdict cache.

    `clock` returns seconds; it defaults to time.monotonic and is
    injectable for tests.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    # -------------------------------------------------------------------------
    # Core API
    # -------------------------------------------------------------------------

    def get(self, key: CacheKey) -> Optional[OracleVerdict]:
        """Verdict for `key`, or None on miss / expiry (expired entries are evicted)."""
        with self._lock:
            if not self.config.enabled:
                self._misses += 1
                return None

            entry = self._entries.get(key.digest)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key.digest]
                self._expirations += 1
                self._misses += 1
                return None

            self._hits += 1
            return entry.verdict

    def set(self, key: CacheKey, verdict: OracleVerdict) -> None:
        with self._lock:
            if not self.config.enabled:
                return

            now = self._clock()
            self._drop_expired_head(now)

            # Re-storing a key counts as a fresh insertion
            self._entries.pop(key.digest, None)

            while len(self._entries) >= self.config.max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

            self._entries[key.digest] = CacheEntry(
                digest=key.digest,
                verdict=verdict,
                stored_at=now,
                expires_at=now + self.config.ttl_seconds,
                message_length=len(key.normalized),
            )

    def has(self, key: CacheKey) -> bool:
        """Membership check without hit/miss accounting."""
        with self._lock:
            if not self.config.enabled:
                return False
            entry = self._entries.get(key.digest)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key.digest]
                self._expirations += 1
                return False
            return True

    # Convenience wrappers keyed by raw text

    def lookup(self, text: str, language: str) -> Optional[OracleVerdict]:
        return self.get(CacheKey.for_message(text, language))

    def store(self, text: str, language: str, verdict: OracleVerdict) -> None:
        self.set(CacheKey.for_message(text, language), verdict)

    def contains(self, text: str, language: str) -> bool:
        return self.has(CacheKey.for_message(text, language))

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def _drop_expired_head(self, now: float) -> int:
        # Insertion order == stored_at order and TTL is uniform,
        # so expired entries are always at the front.
        dropped = 0
        while self._entries:
            first = next(iter(self._entries.values()))
            if not first.is_expired(now):
                break
            self._entries.popitem(last=False)
            dropped += 1
        self._expirations += dropped
        return dropped

    def prune(self) -> int:
        """Remove all expired entries; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [d for d, e in self._entries.items() if e.is_expired(now)]
            for digest in expired:
                del self._entries[digest]
            self._expirations += len(expired)
            return len(expired)

    def clear(self) -> None:
        """Drop every entry and reset counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            buckets = {label: 0 for label, _ in LENGTH_BUCKETS}
            total_length = 0
            for entry in self._entries.values():
                total_length += entry.message_length
                for label, upper in LENGTH_BUCKETS:
                    if upper is None or entry.message_length <= upper:
                        buckets[label] += 1
                        break
            size = len(self._entries)
            return CacheStats(
                size=size,
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
                evictions=self._evictions,
                expirations=self._expirations,
                avg_cached_length=total_length / size if size else 0.0,
                length_distribution=buckets,
            )
