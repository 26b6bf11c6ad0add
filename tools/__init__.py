"""
Outblog Sync Tools

These tools pull posts from the Outblog API, keep them in the store,
and publish them to Shopify as articles.
"""

from .errors import (
    OutblogSyncError,
    get_user_message,
)

from .store_tools import (
    BlogPost,
    ShopSettings,
    MemoryStore,
    SupabaseStore,
    get_store,
)

from .sync_tools import (
    validate_and_save_credential,
    sync_posts,
    sync_all_shops,
    publish_one,
    publish_all,
    check_live_status,
    get_dashboard,
    uninstall_shop,
    run_action,
)

__all__ = [
    # Errors
    "OutblogSyncError",
    "get_user_message",
    # Store
    "BlogPost",
    "ShopSettings",
    "MemoryStore",
    "SupabaseStore",
    "get_store",
    # Sync
    "validate_and_save_credential",
    "sync_posts",
    "sync_all_shops",
    "publish_one",
    "publish_all",
    "check_live_status",
    "get_dashboard",
    "uninstall_shop",
    "run_action",
]
