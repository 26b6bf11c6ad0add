"""
Shopify Tools - Shopify Admin GraphQL integration for Outblog articles

This module provides:
1. Per-shop OAuth access tokens (client credentials grant)
2. A GraphQL transport that raises typed errors
3. Find-or-create for the "outblog" destination blog
4. Article creation
5. Existence checks for previously published articles
"""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Optional
import aiohttp

from config import (
    SHOPIFY_API_KEY,
    SHOPIFY_API_SECRET,
    SHOPIFY_API_VERSION,
    OUTBLOG_BLOG_HANDLE,
    OUTBLOG_BLOG_TITLE,
    BLOG_LIST_LIMIT,
    REQUEST_TIMEOUT,
)
from tools.errors import (
    NetworkError,
    RemoteEmptyResponse,
    RemoteForbidden,
    RemoteProtocolError,
    RemoteRateLimited,
    RemoteServerError,
    RemoteTimeout,
    RemoteValidationError,
    Unauthorized,
)


# =============================================================================
# OAUTH TOKEN MANAGEMENT
# =============================================================================

class ShopifyTokenManager:
    """
    Manages the OAuth access token for one shop.

    Tokens are obtained via client credentials grant and cached until expiry.
    Tokens are automatically refreshed when they expire (24 hour lifetime).
    """

    def __init__(self, shop: str):
        self.shop = shop
        self._access_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    def is_token_valid(self) -> bool:
        """Check if current token is valid and not expired."""
        if not self._access_token or not self._expires_at:
            return False
        # Refresh 5 minutes before expiry to avoid edge cases
        return datetime.utcnow() < (self._expires_at - timedelta(minutes=5))

    async def get_access_token(self) -> str:
        """
        Get a valid access token, refreshing if necessary.

        Raises:
            Unauthorized: if Shopify refuses the grant
        """
        if self.is_token_valid():
            return self._access_token

        return await self._fetch_new_token()

    async def _fetch_new_token(self) -> str:
        if not SHOPIFY_API_KEY or not SHOPIFY_API_SECRET:
            raise Unauthorized("Shopify app credentials not configured")

        token_url = f"https://{self.shop}/admin/oauth/access_token"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    token_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": SHOPIFY_API_KEY,
                        "client_secret": SHOPIFY_API_SECRET,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        raise Unauthorized(f"Token grant for {self.shop} failed: {resp.status} - {error_text}")

                    result = await resp.json()
        except asyncio.TimeoutError as e:
            raise RemoteTimeout(f"Token request for {self.shop} timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error fetching Shopify token: {e}") from e

        self._access_token = result.get("access_token")
        if not self._access_token:
            raise Unauthorized(f"Token grant for {self.shop} returned no access token")

        expires_in = result.get("expires_in", 86400)  # Default 24 hours
        self._expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
        return self._access_token


_token_managers: dict[str, ShopifyTokenManager] = {}


def get_token_manager(shop: str) -> ShopifyTokenManager:
    if shop not in _token_managers:
        _token_managers[shop] = ShopifyTokenManager(shop)
    return _token_managers[shop]


# =============================================================================
# SHOPIFY GRAPHQL API HELPERS
# =============================================================================

def get_shopify_graphql_url(shop: str) -> str:
    """Get the Shopify GraphQL Admin API URL for a shop domain."""
    return f"https://{shop}/admin/api/{SHOPIFY_API_VERSION}/graphql.json"


def raise_for_shopify_status(status: int, body: str = "") -> None:
    if status == 401:
        raise Unauthorized(f"Shopify rejected access token (HTTP 401) {body[:200]}")
    if status == 403:
        raise RemoteForbidden(
            f"Shopify access forbidden (HTTP 403) {body[:200]}",
            user_message="Shopify access forbidden. Please check the app's permissions.",
        )
    if status == 429:
        raise RemoteRateLimited("Shopify rate limit (HTTP 429)")
    if status >= 500:
        raise RemoteServerError(
            f"Shopify server error (HTTP {status})",
            user_message="Shopify server error. Please try again later.",
        )
    raise RemoteProtocolError(f"Shopify returned HTTP {status}: {body[:200]}")


async def execute_shopify_graphql(shop: str, query: str, variables: dict = None) -> dict:
    """
    Execute a GraphQL query against a shop's Admin API.

    Args:
        shop: Shop domain (example.myshopify.com)
        query: GraphQL query string
        variables: Query variables dict

    Returns:
        The response "data" object

    Raises:
        OutblogSyncError subclass on transport, HTTP or GraphQL errors
    """
    access_token = await get_token_manager(shop).get_access_token()
    headers = {
        "Content-Type": "application/json",
        "X-Shopify-Access-Token": access_token,
    }

    payload = {"query": query}
    if variables:
        payload["variables"] = variables

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                get_shopify_graphql_url(shop),
                headers=headers,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
            ) as resp:
                if resp.status != 200:
                    raise_for_shopify_status(resp.status, await resp.text())
                result = await resp.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise RemoteTimeout(f"Shopify request for {shop} timed out") from e
    except aiohttp.ClientError as e:
        raise NetworkError(f"Network error calling Shopify: {e}") from e
    except json.JSONDecodeError as e:
        raise RemoteProtocolError(f"Malformed Shopify response: {e}") from e

    if not isinstance(result, dict):
        raise RemoteProtocolError("Shopify response is not an object")

    # Check for top-level errors
    if result.get("errors"):
        errors = result["errors"]
        if isinstance(errors, list):
            messages = [e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors]
        else:
            messages = [str(errors)]
        raise RemoteProtocolError(
            "; ".join(messages),
            user_message=f"GraphQL Error: {messages[0]}",
        )

    return result.get("data") or {}


def raise_for_user_errors(user_errors: list) -> None:
    """Raise the first Shopify userError as a RemoteValidationError."""
    if not user_errors:
        return
    error = user_errors[0]
    field = error.get("field")
    if isinstance(field, list):
        field = ".".join(str(part) for part in field)
    raise RemoteValidationError(error.get("message", "Unknown error"), field=field or None)


# =============================================================================
# OUTBLOG BLOG CONTAINER
# =============================================================================

# Serializes the list-then-create sequence per shop
_blog_locks: dict[str, asyncio.Lock] = {}


def _get_blog_lock(shop: str) -> asyncio.Lock:
    if shop not in _blog_locks:
        _blog_locks[shop] = asyncio.Lock()
    return _blog_locks[shop]


async def find_blog_by_handle(shop: str, handle: str) -> Optional[dict]:
    """
    Find an existing Shopify blog by handle.

    Returns:
        Blog dict (id, title, handle) or None
    """
    query = """
    query FindBlogByHandle($first: Int!, $query: String) {
        blogs(first: $first, query: $query) {
            nodes {
                id
                title
                handle
            }
        }
    }
    """
    result = await execute_shopify_graphql(shop, query, {
        "first": BLOG_LIST_LIMIT,
        "query": f"handle:{handle}",
    })

    blogs = (result.get("blogs") or {}).get("nodes") or []
    for blog in blogs:
        if blog and blog.get("handle") == handle:
            return blog
    return None


async def create_blog(shop: str, title: str, handle: str) -> dict:
    query = """
    mutation CreateBlog($blog: BlogCreateInput!) {
        blogCreate(blog: $blog) {
            blog { id title handle }
            userErrors { code field message }
        }
    }
    """
    result = await execute_shopify_graphql(shop, query, {
        "blog": {"title": title, "handle": handle},
    })

    create_result = result.get("blogCreate") or {}
    raise_for_user_errors(create_result.get("userErrors"))

    blog = create_result.get("blog")
    if not blog or not blog.get("id"):
        raise RemoteEmptyResponse(
            "blogCreate returned no blog",
            user_message="Shopify API returned no blog data. Please try again.",
        )
    return blog


async def find_or_create_outblog_blog(shop: str) -> str:
    """
    Make sure the shop has the "outblog" blog and return its GID.

    Concurrent publishes from the same shop wait on a per-shop lock so only
    one of them can create the blog.
    """
    async with _get_blog_lock(shop):
        blog = await find_blog_by_handle(shop, OUTBLOG_BLOG_HANDLE)
        if blog:
            return blog["id"]

        print(f"[PUBLISH] Creating '{OUTBLOG_BLOG_TITLE}' blog for {shop}")
        blog = await create_blog(shop, OUTBLOG_BLOG_TITLE, OUTBLOG_BLOG_HANDLE)
        return blog["id"]


# =============================================================================
# ARTICLES
# =============================================================================

async def create_article(shop: str, article_input: dict) -> str:
    """
    Create an article under a blog.

    Args:
        shop: Shop domain
        article_input: ArticleCreateInput (blogId, title, body, handle, ...)

    Returns:
        Shopify article GID

    Raises:
        RemoteValidationError: Shopify reported a field error
        RemoteEmptyResponse: no article came back and no error was reported
    """
    query = """
    mutation CreateArticle($article: ArticleCreateInput!) {
        articleCreate(article: $article) {
            article {
                id
                title
                handle
            }
            userErrors { code field message }
        }
    }
    """
    result = await execute_shopify_graphql(shop, query, {"article": article_input})

    create_result = result.get("articleCreate") or {}
    raise_for_user_errors(create_result.get("userErrors"))

    article = create_result.get("article")
    if not article or not article.get("id"):
        raise RemoteEmptyResponse(f"articleCreate returned no article for handle {article_input.get('handle')}")

    return article["id"]


async def find_existing_article_ids(shop: str, article_ids: list[str]) -> set[str]:
    """
    Return which of the given article GIDs still exist in Shopify.

    Any Article node counts, whether it is published or hidden.
    """
    if not article_ids:
        return set()

    query = """
    query CheckArticlesStatus($ids: [ID!]!) {
        nodes(ids: $ids) {
            __typename
            ... on Article {
                id
                publishedAt
            }
        }
    }
    """
    result = await execute_shopify_graphql(shop, query, {"ids": article_ids})

    existing = set()
    for node in result.get("nodes") or []:
        if node and node.get("__typename") == "Article" and node.get("id"):
            existing.add(node["id"])
    return existing
