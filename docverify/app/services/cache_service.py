import json
import threading
import time
from typing import Any, Dict, Optional

from ..config import settings
from ..utils.logging import logger


class CacheService:
    """In-process TTL cache with namespaced helpers and a fixed-window rate limiter"""

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _clean_expired(self):
        now = time.time()
        for key in [key for key, expires_at in self._expiry.items() if expires_at < now]:
            self._values.pop(key, None)
            self._expiry.pop(key, None)

    def set(self, key: str, value: Any, ttl_seconds: int = 3600) -> bool:
        """Store a value; objects are JSON encoded"""
        string_value = value if isinstance(value, str) else json.dumps(value, default=str)
        with self._lock:
            self._values[key] = string_value
            self._expiry[key] = time.time() + ttl_seconds
        return True

    def get(self, key: str, parse_json: bool = True) -> Optional[Any]:
        with self._lock:
            self._clean_expired()
            value = self._values.get(key)

        if value is None:
            self.misses += 1
            return None

        self.hits += 1
        if parse_json:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    def delete(self, key: str) -> bool:
        with self._lock:
            self._expiry.pop(key, None)
            return self._values.pop(key, None) is not None

    # Verification
    def cache_verification(self, certificate_id: str, result: Dict[str, Any]) -> bool:
        return self.set(f"verify:{certificate_id}", result, settings.VERIFICATION_CACHE_TTL)

    def get_cached_verification(self, certificate_id: str) -> Optional[Dict[str, Any]]:
        return self.get(f"verify:{certificate_id}")

    def invalidate_verification(self, certificate_id: str) -> bool:
        return self.delete(f"verify:{certificate_id}")

    # AI extraction
    def cache_ai_extraction(self, content_hash: str, result: Any) -> bool:
        return self.set(f"ai:extract:{content_hash}", result, settings.AI_CACHE_TTL)

    def get_cached_ai_extraction(self, content_hash: str) -> Optional[Any]:
        return self.get(f"ai:extract:{content_hash}")

    # Analytics
    def cache_analytics(self, name: str, data: Dict[str, Any]) -> bool:
        return self.set(f"analytics:{name}", data, settings.ANALYTICS_CACHE_TTL)

    def get_cached_analytics(self, name: str) -> Optional[Dict[str, Any]]:
        return self.get(f"analytics:{name}")

    def invalidate_analytics(self, name: str) -> bool:
        return self.delete(f"analytics:{name}")

    def check_rate_limit(
        self,
        identifier: str,
        action: str,
        max_requests: int,
        window_seconds: int,
    ) -> Dict[str, Any]:
        """Count one request against a fixed window.

        Returns allowed/remaining/reset_in/total; a rejected request does
        not consume the window.
        """
        key = f"ratelimit:{action}:{identifier}"
        now = time.time()
        with self._lock:
            window = self._values.get(key)
            current = json.loads(window) if window else None
            if not current or current["reset_at"] <= now:
                current = {"count": 0, "reset_at": now + window_seconds}

            reset_in = max(int(current["reset_at"] - now + 0.999), 0)
            if current["count"] >= max_requests:
                logger.log_step("rate_limit_exceeded", {"action": action, "identifier": identifier})
                return {"allowed": False, "remaining": 0, "reset_in": reset_in, "total": max_requests}

            current["count"] += 1
            self._values[key] = json.dumps(current)
            self._expiry[key] = current["reset_at"]

        return {
            "allowed": True,
            "remaining": max_requests - current["count"],
            "reset_in": reset_in,
            "total": max_requests,
        }

    def clear_all(self):
        with self._lock:
            self._values.clear()
            self._expiry.clear()
        self.hits = 0
        self.misses = 0

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._clean_expired()
            keys = len(self._values)
        return {"backend": "memory", "keys": keys, "hits": self.hits, "misses": self.misses}


cache_service = CacheService()
