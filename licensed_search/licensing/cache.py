import hashlib
import logging
import time
from typing import Any, Callable, Dict, Optional

from .models import LicenseVerdict

logger = logging.getLogger(__name__)


class VerdictCache:
    """In-memory expiring store of license verdicts, keyed by URL.

    Process-lifetime state owned by the license directory client. Entries
    carry an absolute expiry timestamp; a write for an existing key replaces
    it (last write wins).
    """

    key_prefix = "license_verdict:"

    def __init__(self, default_ttl: int = 300, max_entries: int = 1000,
                 clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Dict[str, Any]] = {}

        logger.info(f"Cache de verdicts initialisé (TTL: {default_ttl}s, max: {max_entries})")

    def _generate_cache_key(self, url: str) -> str:
        """Génère une clé de cache hashée"""
        key_hash = hashlib.md5(url.encode()).hexdigest()
        return f"{self.key_prefix}{key_hash}"

    async def get(self, url: str) -> Optional[LicenseVerdict]:
        """Récupère un verdict non expiré"""
        cache_key = self._generate_cache_key(url)
        cached_item = self._entries.get(cache_key)
        if cached_item is None:
            logger.debug(f"Cache miss: {url}")
            return None

        if cached_item["expires_at"] > self._clock():
            logger.debug(f"Cache hit: {url}")
            return cached_item["verdict"]

        del self._entries[cache_key]
        logger.debug(f"Cache expiré: {url}")
        return None

    async def set(self, url: str, verdict: LicenseVerdict, ttl: Optional[int] = None) -> bool:
        """Stocke un verdict jusqu'à now + ttl"""
        if ttl is None:
            ttl = self.default_ttl

        cache_key = self._generate_cache_key(url)
        if cache_key not in self._entries and len(self._entries) >= self.max_entries:
            self._cleanup_memory_cache()

        now = self._clock()
        self._entries[cache_key] = {
            "verdict": verdict,
            "expires_at": now + ttl,
            "created_at": now,
        }
        logger.debug(f"Cache set: {url} (TTL: {ttl}s)")
        return True

    async def delete(self, url: str) -> bool:
        """Supprime une clé du cache"""
        return self._entries.pop(self._generate_cache_key(url), None) is not None

    async def clear_all(self) -> bool:
        """Vide tout le cache"""
        self._entries.clear()
        logger.info("Cache de verdicts vidé")
        return True

    async def get_stats(self) -> Dict[str, Any]:
        """Retourne des statistiques sur le cache"""
        now = self._clock()
        live = sum(1 for item in self._entries.values() if item["expires_at"] > now)
        return {
            "enabled": True,
            "entries": len(self._entries),
            "live_entries": live,
            "max_entries": self.max_entries,
            "default_ttl": self.default_ttl,
        }

    def _cleanup_memory_cache(self):
        """Supprime les éléments expirés puis, si besoin, les 20% plus anciens"""
        now = self._clock()

        expired_keys = [key for key, item in self._entries.items() if item["expires_at"] <= now]
        for key in expired_keys:
            del self._entries[key]

        if len(self._entries) >= self.max_entries:
            items = sorted(self._entries.items(), key=lambda kv: kv[1]["created_at"])
            to_remove = max(1, len(items) // 5)
            for key, _ in items[:to_remove]:
                del self._entries[key]

        logger.debug(f"Cache nettoyé: {len(expired_keys)} expirés, taille: {len(self._entries)}")

    async def close(self):
        """Libère le cache"""
        self._entries.clear()


class NullCache:
    """Cache that never stores anything; used when caching is disabled."""

    async def get(self, url: str) -> Optional[LicenseVerdict]:
        return None

    async def set(self, url: str, verdict: LicenseVerdict, ttl: Optional[int] = None) -> bool:
        return False

    async def delete(self, url: str) -> bool:
        return False

    async def clear_all(self) -> bool:
        return True

    async def get_stats(self) -> Dict[str, Any]:
        return {"enabled": False}

    async def close(self):
        pass
