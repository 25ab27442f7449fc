import logging
import threading

from supabase import create_client, Client

from app.core.config import settings

logger = logging.getLogger(__name__)

# One client per worker thread; sync dependencies run in FastAPI's threadpool
_thread_local = threading.local()


def get_supabase_client() -> Client:
    """Get a thread-local Supabase client.

    Each thread gets its own client instance so stale pooled HTTP/2
    connections are never shared between threads.

    Raises:
        RuntimeError: If Supabase credentials are not configured
    """
    if not settings.supabase_url or not settings.supabase_secret_key:
        raise RuntimeError(
            "Supabase credentials not configured. "
            "Set SUPABASE_URL and SUPABASE_SECRET_KEY environment variables."
        )

    if not hasattr(_thread_local, "client"):
        logger.debug(f"Creating Supabase client for thread {threading.get_ident()}")
        _thread_local.client = create_client(
            settings.supabase_url,
            settings.supabase_secret_key,
        )
    return _thread_local.client


def reset_supabase_client() -> None:
    """Drop this thread's client so the next call reconnects."""
    if hasattr(_thread_local, "client"):
        delattr(_thread_local, "client")
