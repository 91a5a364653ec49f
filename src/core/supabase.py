"""Supabase client for the supabase checkout storage backend."""

import logging
from functools import lru_cache
from typing import Any

from supabase import Client, create_client

from src.core.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_supabase_client() -> Client:
    """Return the cached service-role client used to store checkout snapshots."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_secret_key)


async def check_database_connection() -> dict[str, Any]:
    """Probe the configured checkout storage backend.

    Only the supabase backend has anything to probe; a one-row select on
    the storage table proves both connectivity and that the table exists.

    Returns:
        dict: ``healthy``, ``backend`` and, on failure, ``error``.
    """
    settings = get_settings()
    backend = settings.checkout_storage_backend
    if backend != "supabase":
        return {"healthy": True, "backend": backend}

    try:
        get_supabase_client().table(settings.checkout_storage_table).select("key").limit(1).execute()
    except Exception as e:
        logger.warning("Checkout storage probe failed: %s", e)
        return {"healthy": False, "backend": backend, "error": str(e)}
    return {"healthy": True, "backend": backend}
