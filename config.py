"""
Configuration for Outblog for Shopify

Environment variables and settings for the sync and publish service.
See .env.example for all available options.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ===========================================
# Outblog API Configuration
# ===========================================
# Use http://localhost:8000 when running the Outblog API locally
OUTBLOG_API_URL = os.getenv("OUTBLOG_API_URL", "https://api.outblogai.com")

# ===========================================
# Shopify App Configuration
# ===========================================
# App credentials from the Partner / Dev Dashboard.
# The secret signs session tokens and webhooks and is used for the
# client credentials token grant.
SHOPIFY_API_KEY = os.getenv("SHOPIFY_API_KEY", "")
SHOPIFY_API_SECRET = os.getenv("SHOPIFY_API_SECRET", "")

# Shopify Admin API version
SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2025-01")

SCOPES = os.getenv("SCOPES", "write_content,read_content")
SHOPIFY_APP_URL = os.getenv("SHOPIFY_APP_URL", "")

# Destination blog that every synced article is published under
OUTBLOG_BLOG_HANDLE = "outblog"
OUTBLOG_BLOG_TITLE = "Outblog"

# Display name for article authors (not a Shopify staff user)
ARTICLE_AUTHOR = os.getenv("ARTICLE_AUTHOR", "Outblog AI")

# How many blogs to scan when looking for the outblog container
BLOG_LIST_LIMIT = 50

# Ids per nodes() query when checking live status (Shopify allows 250)
LIVE_STATUS_BATCH_SIZE = 50

# ===========================================
# Storage Configuration
# ===========================================
# "memory" keeps everything in process (resets on restart),
# "supabase" persists to Postgres through the Supabase REST API
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").lower()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

# ===========================================
# Server Configuration
# ===========================================
PORT = int(os.getenv("PORT", "3000"))

# Shared secret for the /api/cron endpoint
CRON_SECRET = os.getenv("CRON_SECRET", "")

# Timeout for outbound HTTP calls in seconds
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "30"))

# Posts per dashboard page
DASHBOARD_PAGE_SIZE = 10


# ===========================================
# Supabase Headers Helper
# ===========================================
def get_supabase_headers():
    """Get headers for Supabase REST API calls"""
    return {
        "apikey": SUPABASE_SERVICE_KEY,
        "Authorization": f"Bearer {SUPABASE_SERVICE_KEY}",
        "Content-Type": "application/json",
        "Prefer": "return=representation",
    }


# ===========================================
# Validation
# ===========================================
def validate_config():
    """Validate required configuration is present"""
    missing = []

    if not SHOPIFY_API_KEY:
        missing.append("SHOPIFY_API_KEY")
    if not SHOPIFY_API_SECRET:
        missing.append("SHOPIFY_API_SECRET")

    if STORAGE_BACKEND not in ("memory", "supabase"):
        raise ValueError(
            f"Unknown STORAGE_BACKEND '{STORAGE_BACKEND}' (expected 'memory' or 'supabase')"
        )

    # Supabase credentials are only needed for durable storage
    if STORAGE_BACKEND == "supabase":
        if not SUPABASE_URL:
            missing.append("SUPABASE_URL (required when STORAGE_BACKEND=supabase)")
        if not SUPABASE_SERVICE_KEY:
            missing.append("SUPABASE_SERVICE_KEY (required when STORAGE_BACKEND=supabase)")

    if missing:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing)}\n"
            "Please copy .env.example to .env and fill in your values."
        )

    return True
