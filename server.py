#!/usr/bin/env python3
"""
Outblog for Shopify

Pulls blog posts from Outblog and publishes them as Shopify articles.
It can run as the embedded app's web server or as one-off commands:

Usage:
    python server.py                                # Serve on $PORT
    python server.py --serve --port 8080            # Serve on a given port
    python server.py --sync shop.myshopify.com      # Fetch posts for one shop
    python server.py --sync-all                     # Fetch posts for every shop
    python server.py --publish-all shop.myshopify.com
    python server.py --check-live shop.myshopify.com
    python server.py --status shop.myshopify.com    # Show stored posts

Routes:
    GET  /health                      Liveness check
    GET  /app?page=N                  Dashboard data (session token)
    POST /app                         Dashboard actions (_action form field)
    GET  /api/cron?secret=...         Sync every shop
    POST /api/cron                    Same, secret as a form field
    POST /webhooks/app/scopes_update  Log updated scopes
    POST /webhooks/app/uninstalled    Delete the shop's data
"""

import argparse
import asyncio
import hmac
import json
import sys
from datetime import datetime, timezone

from aiohttp import web

from config import (
    validate_config,
    CRON_SECRET,
    PORT,
    SCOPES,
    SHOPIFY_API_KEY,
    SHOPIFY_API_SECRET,
    SHOPIFY_APP_URL,
    STORAGE_BACKEND,
    SUPABASE_URL,
)
from tools.auth_tools import get_bearer_token, shop_from_session_token, verify_webhook_hmac
from tools.errors import OutblogSyncError, Unauthorized, get_user_message
from tools.store_tools import get_store
from tools.sync_tools import (
    check_live_status,
    get_dashboard,
    publish_all,
    run_action,
    sync_all_shops,
    sync_posts,
    uninstall_shop,
)


CRON_UNAVAILABLE_ERROR = "Cron sync not available with memory storage. Please use manual sync in the app."
CRON_FALLBACK_ERROR = "Cron sync failed. Please try again."
DASHBOARD_FALLBACK_ERROR = "Failed to load dashboard. Please refresh the page."

STORE_KEY = web.AppKey("store", object)
CRON_SECRET_KEY = web.AppKey("cron_secret", str)
APP_API_KEY = web.AppKey("api_key", str)
APP_API_SECRET = web.AppKey("api_secret", str)


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def _authenticate_admin(request: web.Request) -> str:
    """Shop domain from the request's session token."""
    token = get_bearer_token(request.headers.get("Authorization"))
    return shop_from_session_token(
        token,
        api_key=request.app[APP_API_KEY],
        api_secret=request.app[APP_API_SECRET],
    )


def _unauthorized_json(error: OutblogSyncError) -> web.Response:
    return web.json_response({"success": False, "error": get_user_message(error)}, status=401)


def _secret_matches(candidate, expected: str) -> bool:
    # An unset CRON_SECRET never matches
    if not expected or not candidate:
        return False
    return hmac.compare_digest(str(candidate).encode(), expected.encode())


# =============================================================================
# HANDLERS
# =============================================================================

async def health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "timestamp": datetime.now(timezone.utc).isoformat()})


async def dashboard(request: web.Request) -> web.Response:
    try:
        shop = _authenticate_admin(request)
    except Unauthorized as e:
        return _unauthorized_json(e)

    try:
        page = int(request.query.get("page", "1"))
    except ValueError:
        page = 1

    try:
        data = await get_dashboard(shop, page, store=request.app[STORE_KEY])
    except OutblogSyncError as e:
        print(f"[DASHBOARD] {shop}: {e}")
        return web.json_response({"success": False, "error": get_user_message(e)}, status=500)
    except Exception as e:
        print(f"[DASHBOARD] {shop}: unexpected error: {e!r}")
        return web.json_response({"success": False, "error": DASHBOARD_FALLBACK_ERROR}, status=500)

    return web.json_response(data)


async def dashboard_action(request: web.Request) -> web.Response:
    try:
        shop = _authenticate_admin(request)
    except Unauthorized as e:
        return _unauthorized_json(e)

    form = dict(await request.post())
    action = str(form.get("_action", ""))

    result = await run_action(shop, action, form, store=request.app[STORE_KEY])
    return web.json_response(result)


async def _run_cron(request: web.Request, secret) -> web.Response:
    if not _secret_matches(secret, request.app[CRON_SECRET_KEY]):
        return web.Response(text="Unauthorized", status=401)

    store = request.app[STORE_KEY]
    if store.is_ephemeral:
        return web.json_response({"success": False, "error": CRON_UNAVAILABLE_ERROR})

    try:
        summary = await sync_all_shops(store=store)
    except OutblogSyncError as e:
        print(f"[CRON] Failed to list shops: {e}")
        return web.json_response({"success": False, "error": get_user_message(e)})
    except Exception as e:
        print(f"[CRON] Sync failed: {e!r}")
        return web.json_response({"success": False, "error": CRON_FALLBACK_ERROR})

    return web.json_response({
        "success": True,
        "message": f"Synced {summary['synced']} of {summary['shops']} shop(s), {summary['posts']} post(s)",
        **summary,
    })


async def cron_get(request: web.Request) -> web.Response:
    return await _run_cron(request, request.query.get("secret"))


async def cron_post(request: web.Request) -> web.Response:
    form = await request.post()
    return await _run_cron(request, form.get("secret"))


async def _read_webhook(request: web.Request):
    """Verify a webhook and return (topic, shop, payload), or None if unsigned."""
    body = await request.read()
    if not verify_webhook_hmac(body, request.headers.get("X-Shopify-Hmac-Sha256"), request.app[APP_API_SECRET]):
        return None

    topic = request.headers.get("X-Shopify-Topic", "")
    shop = request.headers.get("X-Shopify-Shop-Domain", "")
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        payload = {}

    print(f"[WEBHOOK] Received {topic} webhook for {shop}")
    return topic, shop, payload


async def webhook_scopes_update(request: web.Request) -> web.Response:
    webhook = await _read_webhook(request)
    if webhook is None:
        return web.Response(text="Unauthorized", status=401)

    _, shop, payload = webhook
    current = payload.get("current") or []
    print(f"[WEBHOOK] Updated scopes for {shop}: {','.join(current)}")
    return web.Response()


async def webhook_app_uninstalled(request: web.Request) -> web.Response:
    webhook = await _read_webhook(request)
    if webhook is None:
        return web.Response(text="Unauthorized", status=401)

    _, shop, _ = webhook
    if shop:
        await uninstall_shop(shop, store=request.app[STORE_KEY])
    return web.Response()


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(store=None, cron_secret=None, api_key=None, api_secret=None) -> web.Application:
    app = web.Application()
    app[STORE_KEY] = store or get_store()
    app[CRON_SECRET_KEY] = CRON_SECRET if cron_secret is None else cron_secret
    app[APP_API_KEY] = api_key or SHOPIFY_API_KEY
    app[APP_API_SECRET] = api_secret or SHOPIFY_API_SECRET

    app.router.add_get("/health", health)
    app.router.add_get("/app", dashboard)
    app.router.add_post("/app", dashboard_action)
    app.router.add_get("/api/cron", cron_get)
    app.router.add_post("/api/cron", cron_post)
    app.router.add_post("/webhooks/app/scopes_update", webhook_scopes_update)
    app.router.add_post("/webhooks/app/uninstalled", webhook_app_uninstalled)
    return app


def print_env_check() -> None:
    """Print which settings are present without printing their values."""
    def state(value):
        return "SET" if value else "MISSING"

    print("ENV CHECK:")
    print(f"  SHOPIFY_API_KEY: {state(SHOPIFY_API_KEY)}")
    print(f"  SHOPIFY_API_SECRET: {state(SHOPIFY_API_SECRET)}")
    print(f"  SCOPES: {SCOPES}")
    print(f"  SHOPIFY_APP_URL: {SHOPIFY_APP_URL or 'MISSING'}")
    print(f"  STORAGE_BACKEND: {STORAGE_BACKEND}")
    if STORAGE_BACKEND == "supabase":
        print(f"  SUPABASE_URL: {state(SUPABASE_URL)}")
    print(f"  CRON_SECRET: {state(CRON_SECRET)}")


# =============================================================================
# ONE-OFF COMMANDS
# =============================================================================

async def show_status(shop: str) -> None:
    """Print table of stored posts for a shop."""
    store = get_store()
    settings = await store.get_shop_settings(shop)
    if not settings:
        print(f"No settings for {shop}.")
        return

    posts = await store.list_blog_posts(shop)
    last_sync = settings.last_sync_at.strftime("%Y-%m-%d %H:%M") if settings.last_sync_at else "never"
    print(f"\n{shop} | API key: {'SET' if settings.api_key else 'MISSING'} | "
          f"Post as draft: {settings.post_as_draft} | Last sync: {last_sync}\n")

    if not posts:
        print("No posts found.")
        return

    print(f"{'TITLE':<42} {'SLUG':<32} {'STATUS':<10} {'SHOPIFY':<10}")
    print("-" * 96)
    for post in posts:
        shopify = "LINKED" if post.shopify_article_id else "-"
        print(f"{post.title[:40]:<42} {post.slug[:30]:<32} {post.status:<10} {shopify:<10}")

    published = sum(1 for p in posts if p.shopify_article_id)
    print(f"\nTotal: {len(posts)} | On Shopify: {published} | Not published: {len(posts) - published}")


async def _run_command(coro) -> bool:
    try:
        await coro
    except OutblogSyncError as e:
        print(f"FAILED: {get_user_message(e)}")
        return False
    return True


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Sync Outblog posts into Shopify blogs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the app server
  python server.py --serve --port 3000

  # Pull posts for one shop, then publish everything new
  python server.py --sync example.myshopify.com
  python server.py --publish-all example.myshopify.com

  # Demote posts whose articles were deleted in Shopify
  python server.py --check-live example.myshopify.com
        """
    )

    parser.add_argument("--serve", action="store_true", help="Run the web server (default)")
    parser.add_argument("--port", type=int, default=PORT, help=f"Port to listen on (default: {PORT})")
    parser.add_argument("--sync", metavar="SHOP", help="Fetch Outblog posts for a shop")
    parser.add_argument("--sync-all", action="store_true", help="Fetch Outblog posts for every shop with an API key")
    parser.add_argument("--publish-all", metavar="SHOP", help="Publish every unpublished post for a shop")
    parser.add_argument("--check-live", metavar="SHOP", help="Reconcile publish status with Shopify")
    parser.add_argument("--status", metavar="SHOP", help="Show stored posts for a shop")

    args = parser.parse_args()

    # Validate configuration
    try:
        validate_config()
    except ValueError as e:
        print(f"Configuration Error: {e}")
        sys.exit(1)

    one_off = args.sync or args.sync_all or args.publish_all or args.check_live or args.status
    if one_off and STORAGE_BACKEND == "memory":
        print("Warning: STORAGE_BACKEND=memory, nothing persists between runs.")

    if args.sync:
        async def sync_one():
            count = await sync_posts(args.sync)
            print(f"Fetched {count} blogs")
        sys.exit(0 if asyncio.run(_run_command(sync_one())) else 1)

    elif args.sync_all:
        result = asyncio.run(sync_all_shops())
        print(f"\nShops: {result['shops']} | Synced: {result['synced']} | Failed: {result['failed']} | Posts: {result['posts']}")
        sys.exit(0 if result["failed"] == 0 else 1)

    elif args.publish_all:
        async def publish():
            result = await publish_all(args.publish_all)
            print(f"\nPublished: {result.published} | Failed: {len(result.failures)}")
        sys.exit(0 if asyncio.run(_run_command(publish())) else 1)

    elif args.check_live:
        async def check():
            print(await check_live_status(args.check_live))
        sys.exit(0 if asyncio.run(_run_command(check())) else 1)

    elif args.status:
        asyncio.run(show_status(args.status))

    else:
        print_env_check()
        print(f"Server running on port {args.port}")
        web.run_app(create_app(), port=args.port, print=None)


if __name__ == "__main__":
    main()
