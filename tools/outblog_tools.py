"""
Outblog Tools - Client for the Outblog content API

This module provides:
1. API key validation
2. Fetching a shop's posts
3. Mapping Outblog posts onto local BlogPost fields
"""

import asyncio
import json
from typing import Optional
import aiohttp

from config import OUTBLOG_API_URL, REQUEST_TIMEOUT
from tools.errors import (
    InvalidCredential,
    NetworkError,
    RemoteForbidden,
    RemoteProtocolError,
    RemoteRateLimited,
    RemoteServerError,
    RemoteTimeout,
)
from tools.markdown_tools import derive_sync_slug


# =============================================================================
# REST API HELPERS
# =============================================================================

def get_outblog_api_url(endpoint: str) -> str:
    """Get the full Outblog API URL for an endpoint."""
    base = OUTBLOG_API_URL.rstrip('/')
    return f"{base}/{endpoint.lstrip('/')}"


def get_outblog_headers(api_key: str) -> dict:
    return {
        "Content-Type": "application/json",
        "x-api-key": api_key,
    }


def raise_for_outblog_status(status: int) -> None:
    """Map a non-OK Outblog response status to a typed error."""
    if status == 401:
        raise InvalidCredential(f"Outblog rejected API key (HTTP {status})")
    if status == 403:
        raise RemoteForbidden(f"Outblog access forbidden (HTTP {status})")
    if status == 429:
        raise RemoteRateLimited(f"Outblog rate limit (HTTP {status})")
    if status >= 500:
        raise RemoteServerError(
            f"Outblog server error (HTTP {status})",
            user_message="Outblog server error. Please try again later.",
        )
    raise RemoteProtocolError(
        f"Outblog returned HTTP {status}",
        user_message=f"Failed to fetch blogs (HTTP {status})",
    )


# =============================================================================
# API CALLS
# =============================================================================

async def validate_api_key(api_key: str) -> bool:
    """
    Ask Outblog whether an API key is valid.

    Returns:
        True only when Outblog answers OK with {"valid": true}.
        Any non-OK status counts as invalid.
    """
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                get_outblog_api_url("/blogs/validate-api-key"),
                headers=get_outblog_headers(api_key),
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
            ) as resp:
                if resp.status != 200:
                    print(f"[OUTBLOG] API key validation returned HTTP {resp.status}")
                    return False
                result = await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise RemoteTimeout(f"Outblog validation timed out: {e}") from e
    except aiohttp.ClientError as e:
        raise NetworkError(f"Network error validating Outblog key: {e}") from e
    except json.JSONDecodeError as e:
        raise RemoteProtocolError(f"Malformed Outblog validation response: {e}") from e

    return bool(result.get("valid")) if isinstance(result, dict) else False


async def fetch_posts(api_key: str) -> list:
    """
    Fetch every post Outblog has for this API key.

    Returns:
        List of raw Outblog post dicts (empty if none)
    """
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                get_outblog_api_url("/blogs/posts/wp"),
                headers={"x-api-key": api_key},
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
            ) as resp:
                if resp.status != 200:
                    raise_for_outblog_status(resp.status)
                result = await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise RemoteTimeout(f"Outblog fetch timed out: {e}") from e
    except aiohttp.ClientError as e:
        raise NetworkError(f"Network error fetching Outblog posts: {e}") from e
    except json.JSONDecodeError as e:
        raise RemoteProtocolError(f"Malformed Outblog posts response: {e}") from e

    if not isinstance(result, dict):
        raise RemoteProtocolError("Outblog posts response is not an object")

    data = result.get("data") or {}
    if not isinstance(data, dict):
        raise RemoteProtocolError("Outblog posts response has no data object")

    posts = data.get("posts") or []
    if not isinstance(posts, list):
        raise RemoteProtocolError("Outblog posts response has no posts list")
    return posts


# =============================================================================
# POST MAPPING
# =============================================================================

def normalize_post(post: dict) -> dict:
    """
    Map an Outblog post onto BlogPost fields.

    Categories and tags are stored as JSON strings.
    """
    if not isinstance(post, dict):
        raise RemoteProtocolError(f"Outblog post is not an object: {post!r:.100}")

    meta: Optional[dict] = post.get("blog_meta_data") or {}
    if not isinstance(meta, dict):
        meta = {}
    title = post.get("title")

    return {
        "external_id": str(post["id"]) if post.get("id") is not None else None,
        "slug": derive_sync_slug(post.get("slug"), title),
        "title": title or "Untitled",
        "content": post.get("content"),
        "meta_description": meta.get("meta_description"),
        "featured_image": post.get("featured_image"),
        "categories": json.dumps(meta.get("categories") or []),
        "tags": json.dumps(meta.get("tags") or []),
    }
