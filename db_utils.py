"""
Read-only access to the famous-person readings directory.

Records live in the Supabase table ``famous_bazi`` (slug, name, bio,
category and the pre-computed reading columns).
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from config import Settings, get_settings
from errors import StoreError, StoreNotConfigured

logger = logging.getLogger(__name__)

FAMOUS_TABLE = "famous_bazi"
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MAX_SEARCH_LIMIT = 50

# Characters with meaning inside a PostgREST ``or`` filter.
_FILTER_UNSAFE_RE = re.compile(r'[,()*%\\]')

_supabase_client: Optional[Client] = None
_supabase_init_attempted = False


def get_supabase_client(settings: Optional[Settings] = None) -> Optional[Client]:
    """Initialize and return a singleton Supabase client."""
    global _supabase_client, _supabase_init_attempted
    if _supabase_init_attempted:
        return _supabase_client

    _supabase_init_attempted = True
    settings = settings or get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning("Supabase credentials not found in environment variables.")
        _supabase_client = None
        return None

    try:
        _supabase_client = create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error("Failed to initialize Supabase client: %s", e)
        _supabase_client = None

    return _supabase_client


def clamp_limit(limit: Optional[int], search: str = "") -> int:
    limit = min(limit or DEFAULT_LIMIT, MAX_LIMIT)
    if search:
        limit = min(limit, MAX_SEARCH_LIMIT)
    return max(limit, 1)


class FamousPeopleRepository:
    """Lookup and listing queries for the famous-person directory."""

    def __init__(self, client: Optional[Client]):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FamousPeopleRepository":
        return cls(get_supabase_client(settings))

    def _table(self):
        if self._client is None:
            raise StoreNotConfigured("Famous-person store is not configured")
        return self._client.table(FAMOUS_TABLE)

    def get_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        """Return one record, or None when the slug is unknown."""
        table = self._table()
        try:
            response = table.select("*").eq("slug", slug).limit(1).execute()
        except Exception as e:
            logger.exception("Error fetching famous person %s", slug)
            raise StoreError(str(e)) from e
        return response.data[0] if response.data else None

    def list_people(
        self,
        search: str = "",
        category: str = "",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Page through records ordered by name.

        ``search`` matches name, bio or category case-insensitively;
        ``category`` must match exactly. Returns ``{data, total, limit, offset}``.
        """
        search = _FILTER_UNSAFE_RE.sub(" ", (search or "").strip()).strip()
        category = (category or "").strip()
        limit = clamp_limit(limit, search)
        offset = max(offset or 0, 0)

        query = self._table().select("*", count="exact")
        if search:
            like = f"%{search}%"
            query = query.or_(f"name.ilike.{like},bio.ilike.{like},category.ilike.{like}")
        if category:
            query = query.eq("category", category)

        try:
            response = query.order("name").range(offset, offset + limit - 1).execute()
        except Exception as e:
            logger.exception("Error listing famous people")
            raise StoreError(str(e)) from e

        return {
            "data": response.data or [],
            "total": response.count or 0,
            "limit": limit,
            "offset": offset,
        }

    def list_categories(self) -> List[str]:
        """Distinct non-empty categories, sorted."""
        table = self._table()
        try:
            response = table.select("category").execute()
        except Exception as e:
            logger.exception("Error listing famous categories")
            raise StoreError(str(e)) from e
        return sorted({row.get("category") for row in response.data or [] if row.get("category")})
