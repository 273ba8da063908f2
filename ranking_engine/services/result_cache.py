"""Process-local cache for computed tables and ranks.

Two tiers with different TTLs:
- basic: season/global figures keyed by (user, gameweek), minutes
- league: mini-league tables keyed by (user, league-set, gameweek) or
  (league, gameweek), plus each user's last known league ids; shorter

Every key carries the cache schema version. A value written under another
version is never served, so a deploy that changes the shape of cached results
forces recomputation instead of returning incompatible data.

Expired entries are retained for one extra TTL and returned with
is_fresh=False, so a caller whose recomputation fails can still fall back to
the last good value.

Concurrent misses for the same key are not coalesced: the computation is
idempotent and read-mostly, so redundant recomputation is acceptable.
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from cachetools import TLRUCache

from ranking_engine.config import get_settings

logger = logging.getLogger(__name__)

BASIC_TIER = "basic"
LEAGUE_TIER = "league"


@dataclass(slots=True, frozen=True)
class CacheKey:
    """Versioned cache key bound to a tier."""

    tier: str
    name: str
    parts: tuple[str, ...]
    version: int

    def __str__(self) -> str:
        return f"v{self.version}:{self.name}:" + ":".join(self.parts)


@dataclass(slots=True)
class CacheEntry:
    """Cache entry with freshness deadline and retention deadline.

    Note: both deadlines are set by ResultCache.set(); there is no default
    to avoid creating immediately-expired entries.
    """

    data: Any
    schema_version: int
    expires_at: float
    retain_until: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


def _retention_deadline(key: CacheKey, entry: CacheEntry, now: float) -> float:
    """TLRUCache time-to-use: keep entries until their retention deadline."""
    return entry.retain_until


class ResultCache:
    """Two-tier TTL cache with versioned keys."""

    def __init__(
        self,
        basic_ttl: float,
        league_ttl: float,
        schema_version: int,
        maxsize: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.schema_version = schema_version
        self._ttls = {BASIC_TIER: basic_ttl, LEAGUE_TIER: league_ttl}
        self._timer = timer
        self._tiers: dict[str, TLRUCache[CacheKey, CacheEntry]] = {
            tier: TLRUCache(maxsize=maxsize, ttu=_retention_deadline, timer=timer)
            for tier in self._ttls
        }

    # -------------------------------------------------------------------------
    # Key builders
    # -------------------------------------------------------------------------

    def ranks_key(self, user_id: str, gameweek: int) -> CacheKey:
        return CacheKey(BASIC_TIER, "ranks", (user_id, str(gameweek)), self.schema_version)

    def league_set_key(
        self, user_id: str, league_ids: Iterable[str], gameweek: int
    ) -> CacheKey:
        league_part = ",".join(sorted(league_ids))
        return CacheKey(
            LEAGUE_TIER,
            "leagues",
            (user_id, league_part, str(gameweek)),
            self.schema_version,
        )

    def user_leagues_key(self, user_id: str, gameweek: int) -> CacheKey:
        """Last known league ids of a user."""
        return CacheKey(
            LEAGUE_TIER, "memberships", (user_id, str(gameweek)), self.schema_version
        )

    def league_key(self, league_id: str, gameweek: int) -> CacheKey:
        return CacheKey(LEAGUE_TIER, "league", (league_id, str(gameweek)), self.schema_version)

    def gameweek_table_key(self, league_id: str, gameweek: int) -> CacheKey:
        return CacheKey(
            LEAGUE_TIER, "gw_table", (league_id, str(gameweek)), self.schema_version
        )

    # -------------------------------------------------------------------------
    # Read / write
    # -------------------------------------------------------------------------

    def get(self, key: CacheKey) -> tuple[Any | None, bool]:
        """Return (value, is_fresh). (None, False) on miss or version mismatch."""
        tier = self._tiers[key.tier]
        if key.version != self.schema_version:
            logger.debug("Cache key %s predates schema v%s", key, self.schema_version)
            return None, False

        entry = tier.get(key)
        if entry is None:
            return None, False

        if entry.schema_version != self.schema_version:
            logger.debug("Dropping cache entry %s written under v%s", key, entry.schema_version)
            tier.pop(key, None)
            return None, False

        fresh = entry.is_fresh(self._timer())
        logger.debug("Cache %s for %s", "hit" if fresh else "stale hit", key)
        return entry.data, fresh

    def set(self, key: CacheKey, value: Any, ttl: float | None = None) -> None:
        """Store a value. `ttl` defaults to the key's tier TTL."""
        if key.version != self.schema_version:
            logger.warning(f"Refusing to cache {key}: schema is v{self.schema_version}")
            return

        ttl = self._ttls[key.tier] if ttl is None else ttl
        now = self._timer()
        self._tiers[key.tier][key] = CacheEntry(
            data=value,
            schema_version=self.schema_version,
            expires_at=now + ttl,
            retain_until=now + 2 * ttl,
        )

    def invalidate(self, key: CacheKey) -> None:
        """Remove a single entry."""
        self._tiers[key.tier].pop(key, None)

    def bump_schema_version(self) -> int:
        """Move to a new schema version and drop every existing entry."""
        self.schema_version += 1
        self.clear()
        logger.info(f"Result cache schema bumped to v{self.schema_version}")
        return self.schema_version

    def clear(self) -> None:
        for tier in self._tiers.values():
            tier.clear()

    def stats(self) -> dict[str, Any]:
        """Get cache statistics for monitoring."""
        return {
            "schema_version": self.schema_version,
            "entries": {name: len(tier) for name, tier in self._tiers.items()},
            "ttl_seconds": dict(self._ttls),
        }


@lru_cache
def get_result_cache() -> ResultCache:
    """Get the shared process-local cache."""
    settings = get_settings()
    return ResultCache(
        basic_ttl=settings.cache_ttl_basic,
        league_ttl=settings.cache_ttl_league,
        schema_version=settings.cache_schema_version,
        maxsize=settings.cache_max_entries,
    )


def clear_cache() -> None:
    """Clear the shared cache. Used by tests to ensure isolation."""
    get_result_cache().clear()
