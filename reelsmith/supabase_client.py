"""
Lazy Supabase client shared by the character, clip and movie stores.

Uses the service role key so worker writes bypass RLS.
"""

from typing import Optional

from supabase import create_client, Client

from . import config

_supabase_client: Optional[Client] = None


def get_supabase() -> Client:
    global _supabase_client
    if _supabase_client is None:
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
    return _supabase_client


class LazySupabase:
    """Proxy that defers create_client until first attribute access."""

    def __getattr__(self, name):
        return getattr(get_supabase(), name)
