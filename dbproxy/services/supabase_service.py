# dbproxy/services/supabase_service.py
"""
Service-role Supabase client used by the gateway executor.

This client bypasses row-level security: authorization for browser traffic is
decided by the policy engine, not by the database. Nothing outside
dbproxy.gateway.executor should import it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from dbproxy.config.settings import get_settings

logger = logging.getLogger("db.store")

# Lazy client: created on first use so imports don't crash without env
_client: Optional[Any] = None
_lock = asyncio.Lock()


async def _create_client():
    """
    Create and cache the async Supabase client on first use.
    Raises at call-time (not import-time) if credentials are missing.
    """
    global _client
    if _client is not None:
        return _client

    async with _lock:
        if _client is not None:
            return _client

        settings = get_settings()
        url, key = settings.SUPABASE_URL, settings.service_key()
        if not url or not key:
            raise RuntimeError(
                "Supabase credentials missing. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE "
                "or SUPABASE_KEY in environment or .env at the repo root."
            )

        # Import here to avoid failing import of this module when keys are absent.
        from supabase import acreate_client

        _client = await acreate_client(url, key)
        logger.info("service-role store client ready for %s", url)
    return _client


async def get_service_client():
    """Return the elevated store client (initializing it if needed)."""
    return await _create_client()


def reset_client() -> None:
    """Drop the cached client, e.g. after rotating the service key."""
    global _client
    _client = None
