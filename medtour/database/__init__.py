"""
Content database layer

Supabase client and the content store the worker writes results through.
"""

from .client import get_supabase_admin_client, SupabaseClientError
from .content import ContentStore, ContentStoreError, generate_slug

__all__ = [
    "get_supabase_admin_client",
    "SupabaseClientError",
    "ContentStore",
    "ContentStoreError",
    "generate_slug",
]
