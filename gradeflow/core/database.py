from supabase import create_client, Client
from gradeflow.core.config import settings

_supabase_client: Client | None = None


def get_supabase() -> Client:
    """Return the shared Supabase client, creating it on first use."""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_KEY,
        )
    return _supabase_client
