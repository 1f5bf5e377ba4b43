"""
Supabase-backed key-value store for quest sessions.

Table expected in Supabase:
  - quest_sessions: key (text, PK), value (text), updated_at (timestamptz)

Used by SessionStore when SUPABASE_URL and SUPABASE_KEY are set; otherwise
the service keeps sessions in local JSON files.
"""

from __future__ import annotations

import os
import logging
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from errors import PersistenceError

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")  # anon or service-role key

TABLE = "quest_sessions"

_client = None


def is_configured() -> bool:
    return bool(SUPABASE_URL and SUPABASE_KEY)


def get_supabase():
    """Lazy-init Supabase client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client
    if not is_configured():
        logger.warning("Supabase not configured — running in local-only mode")
        return None
    try:
        from supabase import create_client
        _client = create_client(SUPABASE_URL, SUPABASE_KEY)
        logger.info("Supabase client initialised")
        return _client
    except Exception as e:
        logger.error(f"Failed to init Supabase: {e}")
        return None


class SupabaseStore:
    """KeyValueStore over the ``quest_sessions`` table."""

    def __init__(self, client=None, table: str = TABLE):
        self.client = client if client is not None else get_supabase()
        self.table = table

    def _require_client(self):
        if self.client is None:
            raise PersistenceError("Supabase is not configured")
        return self.client

    def get(self, key: str) -> Optional[str]:
        sb = self._require_client()
        try:
            result = sb.table(self.table).select("value").eq("key", key).limit(1).execute()
        except Exception as e:
            logger.error(f"get {key} failed: {e}")
            raise PersistenceError(f"Supabase read failed: {e}") from e
        return result.data[0]["value"] if result.data else None

    def set(self, key: str, value: str) -> None:
        sb = self._require_client()
        payload = {
            "key": key,
            "value": value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            sb.table(self.table).upsert(payload, on_conflict="key").execute()
        except Exception as e:
            logger.error(f"set {key} failed: {e}")
            raise PersistenceError(f"Supabase write failed: {e}") from e
