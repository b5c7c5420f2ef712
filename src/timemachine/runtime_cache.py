"""
Small JSON runtime cache in the project metadata directory.

Holds values the daemon wants to remember between runs without asking
the remote service again, such as the project id and subscription tier.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from .api_client import RemoteClient
from .exceptions import RemoteAPIError
from .models import now_ms

logger = logging.getLogger(__name__)

TIER_FREE = "FREE"
TIER_PRO = "PRO"
TIER_CACHE_TTL_MS = 5 * 60 * 1000


class RuntimeCache:
    """Key-value cache persisted as a JSON object."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Dict[str, Any]:
        """Read the cache; a missing or corrupt file reads as empty."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable runtime cache %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def update(self, **values: Any) -> Dict[str, Any]:
        """Merge values into the cache and write it atomically."""
        with self._lock:
            data = self.load()
            data.update(values)

            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".config.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.write("\n")
                os.replace(temp_path, self.path)
            except BaseException:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
            return data

    @property
    def project_id(self) -> Optional[str]:
        return self.get("projectId")

    def cached_tier(self, ttl_ms: int = TIER_CACHE_TTL_MS) -> Optional[str]:
        """Cached subscription tier if it is younger than the TTL."""
        data = self.load()
        tier = data.get("tier")
        cached_at = data.get("tierCachedAt")
        if tier and isinstance(cached_at, (int, float)) and now_ms() - cached_at < ttl_ms:
            return tier
        return None

    def cache_tier(self, tier: str) -> None:
        self.update(tier=tier, tierCachedAt=now_ms())


def tier_from_subscription(subscription: Dict[str, Any]) -> str:
    """PRO for an active or trialing professional plan, otherwise FREE."""
    plan = subscription.get("plan") or {}
    slug = plan.get("slug") if isinstance(plan, dict) else None
    active = subscription.get("status") in ("active", "trial") or bool(subscription.get("isTrial"))
    return TIER_PRO if slug == "professional" and active else TIER_FREE


def resolve_tier(cache: RuntimeCache, client: Optional[RemoteClient] = None) -> str:
    """
    Subscription tier from cache, else from the remote service.

    Defaults to FREE when offline or the tier cannot be determined.
    """
    cached = cache.cached_tier()
    if cached:
        return cached

    if client is None:
        return TIER_FREE

    try:
        tier = tier_from_subscription(client.get_subscription_status())
    except RemoteAPIError as e:
        logger.debug("Could not fetch subscription status: %s", e)
        return TIER_FREE

    cache.cache_tier(tier)
    return tier
