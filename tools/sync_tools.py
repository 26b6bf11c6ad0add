"""
Sync Tools - Pull posts from Outblog and publish them to Shopify

This module provides:
1. API key validation and saving
2. Syncing Outblog posts into the store
3. Publishing one post / all unpublished posts as Shopify articles
4. Live status reconciliation against Shopify
5. Cron sync across every shop with an API key
6. The dashboard action boundary (typed errors -> {success, error})
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from config import (
    ARTICLE_AUTHOR,
    DASHBOARD_PAGE_SIZE,
    LIVE_STATUS_BATCH_SIZE,
)
from tools.errors import (
    CredentialMissing,
    InvalidCredential,
    NotFound,
    OutblogSyncError,
    RemoteEmptyResponse,
    RemoteProtocolError,
    RemoteValidationError,
    get_user_message,
)
from tools.markdown_tools import (
    build_article_image,
    derive_article_handle,
    markdown_to_html,
    strip_front_matter,
)
from tools.outblog_tools import fetch_posts, normalize_post, validate_api_key
from tools.shopify_tools import (
    create_article,
    find_existing_article_ids,
    find_or_create_outblog_blog,
)
from tools.store_tools import BlogPost, get_store, utcnow


# Per-post errors that publish_all records and moves past
BULK_SKIPPABLE_ERRORS = (RemoteValidationError, RemoteProtocolError, RemoteEmptyResponse)


@dataclass
class PublishAllResult:
    published: int = 0
    failures: list = field(default_factory=list)  # (post_id, slug, message)


def _status_for_policy(post_as_draft: bool) -> str:
    return "draft" if post_as_draft else "published"


async def _require_settings(shop: str, store):
    settings = await store.get_shop_settings(shop)
    if not settings:
        raise NotFound(f"No settings for {shop}", user_message="Shop settings not found")
    return settings


# =============================================================================
# CREDENTIALS
# =============================================================================

async def validate_and_save_credential(shop: str, api_key: str, post_as_draft: bool, store=None) -> str:
    """
    Validate an Outblog API key and store it with the draft policy.

    Does not trigger a sync.
    """
    store = store or get_store()

    if not api_key or not await validate_api_key(api_key):
        raise InvalidCredential(f"Outblog rejected API key for {shop}", user_message="Invalid API key")

    await store.upsert_shop_settings(shop, api_key=api_key, post_as_draft=post_as_draft)
    print(f"[SYNC] Saved API key for {shop} (post as draft: {post_as_draft})")
    return "API key saved successfully"


# =============================================================================
# SYNC
# =============================================================================

async def sync_posts(shop: str, store=None) -> int:
    """
    Fetch every Outblog post for the shop and upsert it by slug.

    Each upsert commits on its own. last_sync_at is only written after the
    whole loop, so an unset value means the last sync did not finish.

    Returns:
        Number of posts processed
    """
    store = store or get_store()

    settings = await store.get_shop_settings(shop)
    if not settings or not settings.api_key:
        raise CredentialMissing(f"No API key for {shop}")

    posts = await fetch_posts(settings.api_key)
    print(f"[SYNC] {shop}: fetched {len(posts)} post(s) from Outblog")

    for post in posts:
        await store.upsert_blog_post(shop, normalize_post(post))

    await store.upsert_shop_settings(shop, last_sync_at=utcnow())
    return len(posts)


async def sync_all_shops(store=None) -> dict:
    """
    Sync every shop that has an API key (cron entry point).

    Returns:
        dict with keys: shops, synced, failed, posts, errors
    """
    store = store or get_store()
    shops = await store.list_shops_with_api_key()

    summary = {"shops": len(shops), "synced": 0, "failed": 0, "posts": 0, "errors": {}}

    for shop in shops:
        try:
            count = await sync_posts(shop, store=store)
        except OutblogSyncError as e:
            print(f"[CRON] {shop}: FAILED: {e}")
            summary["failed"] += 1
            summary["errors"][shop] = get_user_message(e)
            continue
        except Exception as e:
            print(f"[CRON] {shop}: FAILED: unexpected error: {e!r}")
            summary["failed"] += 1
            summary["errors"][shop] = FALLBACK_ERRORS["fetchBlogs"]
            continue

        print(f"[CRON] {shop}: OK ({count} posts)")
        summary["synced"] += 1
        summary["posts"] += count

    return summary


# =============================================================================
# PUBLISH
# =============================================================================

def build_article_input(post: BlogPost, blog_gid: str, post_as_draft: bool) -> dict:
    """ArticleCreateInput for a single, fully rendered publish."""
    article_input = {
        "blogId": blog_gid,
        "title": post.title,
        "body": markdown_to_html(post.content, post.title),
        "handle": derive_article_handle(post.slug, post.title),
        "isPublished": not post_as_draft,
        "author": {"name": ARTICLE_AUTHOR},
    }

    image = build_article_image(post.featured_image, post.title)
    if image:
        article_input["image"] = image

    return article_input


def build_bulk_article_input(post: BlogPost, blog_gid: str, post_as_draft: bool) -> dict:
    """ArticleCreateInput for publish_all: front-matter is stripped, nothing else."""
    return {
        "blogId": blog_gid,
        "title": post.title,
        "body": strip_front_matter(post.content),
        "handle": post.slug,
        "isPublished": not post_as_draft,
    }


async def publish_one(shop: str, post_id: str, store=None) -> str:
    """
    Publish one stored post to the shop's "outblog" blog.

    Returns:
        The Shopify article GID
    """
    store = store or get_store()

    settings = await _require_settings(shop, store)
    post = await store.find_blog_post(shop, post_id)
    if not post:
        raise NotFound(f"Post {post_id} not found for {shop}", user_message="Blog post not found")

    blog_gid = await find_or_create_outblog_blog(shop)
    article_input = build_article_input(post, blog_gid, settings.post_as_draft)

    print(
        f"[PUBLISH] {shop}: creating article '{post.title[:50]}' "
        f"(handle: {article_input['handle']}, published: {article_input['isPublished']}, "
        f"image: {'yes' if 'image' in article_input else 'no'}, body: {len(article_input['body'])} chars)"
    )

    article_id = await create_article(shop, article_input)

    await store.update_blog_post(
        shop,
        post.id,
        shopify_article_id=article_id,
        status=_status_for_policy(settings.post_as_draft),
    )
    return article_id


async def publish_all(shop: str, store=None) -> PublishAllResult:
    """
    Publish every post that has never been published, one at a time.

    A post rejected by Shopify is recorded in the result and skipped;
    transport failures still stop the run.
    """
    store = store or get_store()

    settings = await _require_settings(shop, store)
    blog_gid = await find_or_create_outblog_blog(shop)

    posts = await store.list_blog_posts(shop)
    unpublished = [p for p in posts if not p.shopify_article_id]
    print(f"[PUBLISH] {shop}: {len(unpublished)} unpublished post(s)")

    result = PublishAllResult()

    for post in unpublished:
        article_input = build_bulk_article_input(post, blog_gid, settings.post_as_draft)
        try:
            article_id = await create_article(shop, article_input)
        except BULK_SKIPPABLE_ERRORS as e:
            print(f"  [FAIL] {post.title[:50]} - {get_user_message(e)}")
            result.failures.append((post.id, post.slug, get_user_message(e)))
            continue

        await store.update_blog_post(
            shop,
            post.id,
            shopify_article_id=article_id,
            status=_status_for_policy(settings.post_as_draft),
        )
        result.published += 1

    return result


# =============================================================================
# LIVE STATUS
# =============================================================================

async def check_live_status(shop: str, store=None) -> str:
    """
    Demote posts whose Shopify article no longer exists.

    Ids are checked in batches of LIVE_STATUS_BATCH_SIZE. A missing article
    clears shopify_article_id and resets status to draft in one update.
    """
    store = store or get_store()

    await _require_settings(shop, store)
    posts = [p for p in await store.list_blog_posts(shop) if p.shopify_article_id]

    if not posts:
        return "No published blogs to check"

    missing_ids = []
    for start in range(0, len(posts), LIVE_STATUS_BATCH_SIZE):
        batch = posts[start:start + LIVE_STATUS_BATCH_SIZE]
        existing = await find_existing_article_ids(shop, [p.shopify_article_id for p in batch])
        missing_ids.extend(p.id for p in batch if p.shopify_article_id not in existing)

    if missing_ids:
        await store.update_many_blog_posts(shop, missing_ids, shopify_article_id=None, status="draft")
        print(f"[LIVE] {shop}: {len(missing_ids)} article(s) missing from Shopify")
        return (
            f"Live status checked: {len(missing_ids)} blog(s) are no longer published in Shopify "
            "and were marked as not published."
        )

    return "Live status checked: all published blogs still exist in Shopify."


# =============================================================================
# DASHBOARD
# =============================================================================

async def get_dashboard(shop: str, page: int = 1, store=None) -> dict:
    """Settings plus one page of posts. Creates settings on first visit."""
    store = store or get_store()
    page = max(page, 1)

    settings = await store.get_shop_settings(shop)
    if not settings:
        settings = await store.create_shop_settings(shop)

    skip = (page - 1) * DASHBOARD_PAGE_SIZE
    posts, total = await store.get_blog_posts(shop, skip, DASHBOARD_PAGE_SIZE)

    return {
        "shop": shop,
        "apiKey": settings.api_key,
        "postAsDraft": settings.post_as_draft,
        "blogs": [p.to_dict() for p in posts],
        "totalBlogs": total,
        "currentPage": page,
        "totalPages": math.ceil(total / DASHBOARD_PAGE_SIZE),
        "lastSyncAt": settings.last_sync_at.isoformat() if settings.last_sync_at else None,
    }


async def uninstall_shop(shop: str, store=None) -> None:
    """Remove settings and every post so a reinstall starts clean."""
    store = store or get_store()
    await store.delete_shop_settings(shop)
    print(f"[WEBHOOK] Removed all data for {shop}")


# =============================================================================
# ACTION BOUNDARY
# =============================================================================

FALLBACK_ERRORS = {
    "saveApiKey": "Failed to validate API key",
    "fetchBlogs": "Failed to fetch blogs from Outblog. Please try again.",
    "checkLiveStatus": "Failed to check live status",
    "publishToShopify": "Blog publish failed. Please try again. If the issue persists, contact support.",
    "publishAllToShopify": "Bulk publish failed. Please try again. If the issue persists, contact support.",
}


async def _dispatch(shop: str, action: str, form: dict, store) -> Optional[str]:
    if action == "saveApiKey":
        post_as_draft = str(form.get("postAsDraft", "")).lower() == "true"
        return await validate_and_save_credential(shop, form.get("apiKey", ""), post_as_draft, store=store)

    if action == "fetchBlogs":
        count = await sync_posts(shop, store=store)
        return f"Fetched {count} blogs"

    if action == "checkLiveStatus":
        return await check_live_status(shop, store=store)

    if action == "publishToShopify":
        await publish_one(shop, form.get("blogId", ""), store=store)
        return "Blog published to Shopify"

    if action == "publishAllToShopify":
        result = await publish_all(shop, store=store)
        return f"Published {result.published} blogs to Shopify"

    return None


async def run_action(shop: str, action: str, form: dict, store=None) -> dict:
    """
    Run a dashboard action and report the outcome.

    Returns:
        {"success": True, "message": ...} or {"success": False, "error": ...}
    """
    store = store or get_store()

    try:
        message = await _dispatch(shop, action, form, store)
    except OutblogSyncError as e:
        print(f"[{action}] {shop}: {type(e).__name__}: {e}")
        return {"success": False, "error": get_user_message(e)}
    except Exception as e:
        print(f"[{action}] {shop}: unexpected error: {e!r}")
        return {"success": False, "error": FALLBACK_ERRORS.get(action, "Something went wrong")}

    if message is None:
        return {"success": False, "error": "Unknown action"}

    return {"success": True, "message": message}
