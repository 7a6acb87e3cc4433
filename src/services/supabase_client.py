"""Supabase client wrapper for the optional Supabase thread store backend."""

from typing import Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from src.utils.errors import ConfigurationError
import logging

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase_client(url: Optional[str], key: Optional[str]) -> Client:
    """Get or create the Supabase client singleton."""
    global _client

    if _client is None:
        if not url or not key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        # Service-role access only; no user sessions to refresh
        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", extra={"url": url})

    return _client


def close_supabase_client() -> None:
    """Drop the Supabase client reference."""
    global _client
    if _client:
        # Supabase-py has no explicit close
        _client = None
        logger.info("Supabase client closed")
