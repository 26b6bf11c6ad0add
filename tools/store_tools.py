"""
Store Tools - Persistence for shop settings and synced blog posts

Two backends share one interface:
1. SupabaseStore - Postgres via the Supabase REST API (durable)
2. MemoryStore - in-process dicts for development (resets on restart)

Each shop owns its posts; deleting a shop's settings removes its posts.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional
import aiohttp

from config import (
    STORAGE_BACKEND,
    SUPABASE_URL,
    REQUEST_TIMEOUT,
    get_supabase_headers,
)
from tools.errors import NotFound, PersistenceError, RemoteTimeout


# Fields overwritten on every re-sync of the same slug
POST_CONTENT_FIELDS = (
    "external_id",
    "title",
    "content",
    "meta_description",
    "featured_image",
    "categories",
    "tags",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class ShopSettings:
    id: str
    shop: str
    api_key: Optional[str] = None
    post_as_draft: bool = True
    last_sync_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: dict) -> "ShopSettings":
        return cls(
            id=row["id"],
            shop=row["shop"],
            api_key=row.get("api_key"),
            post_as_draft=row.get("post_as_draft", True),
            last_sync_at=_parse_datetime(row.get("last_sync_at")),
            created_at=_parse_datetime(row.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(row.get("updated_at")) or utcnow(),
        )


@dataclass
class BlogPost:
    id: str
    shop_settings_id: str
    slug: str
    title: str = "Untitled"
    external_id: Optional[str] = None
    content: Optional[str] = None
    meta_description: Optional[str] = None
    featured_image: Optional[str] = None
    status: str = "draft"
    categories: Optional[str] = None
    tags: Optional[str] = None
    shopify_article_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: dict) -> "BlogPost":
        known = {k: v for k, v in row.items() if k in cls.__dataclass_fields__}
        known["created_at"] = _parse_datetime(row.get("created_at")) or utcnow()
        known["updated_at"] = _parse_datetime(row.get("updated_at")) or utcnow()
        return cls(**known)

    def to_dict(self) -> dict:
        """Dashboard representation."""
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "content": self.content,
            "metaDescription": self.meta_description,
            "featuredImage": self.featured_image,
            "status": self.status,
            "categories": self.categories,
            "tags": self.tags,
            "shopifyArticleId": self.shopify_article_id,
            "createdAt": _isoformat(self.created_at),
        }


# =============================================================================
# MEMORY BACKEND
# =============================================================================

class MemoryStore:
    """
    Simple in-memory storage for development.

    Everything resets on restart, so there is no durable list of shops
    for the cron endpoint to work through.
    """

    is_ephemeral = True

    def __init__(self):
        self._shops: dict[str, ShopSettings] = {}
        self._posts: dict[str, list[BlogPost]] = {}

    async def get_shop_settings(self, shop: str) -> Optional[ShopSettings]:
        return self._shops.get(shop)

    async def create_shop_settings(self, shop: str) -> ShopSettings:
        settings = ShopSettings(id=str(uuid.uuid4()), shop=shop)
        self._shops[shop] = settings
        self._posts[shop] = []
        return settings

    async def upsert_shop_settings(self, shop: str, **fields) -> ShopSettings:
        settings = await self.get_shop_settings(shop)
        if not settings:
            settings = await self.create_shop_settings(shop)

        for key, value in fields.items():
            setattr(settings, key, value)
        settings.updated_at = utcnow()
        return settings

    async def list_shops_with_api_key(self) -> list[str]:
        return [s.shop for s in self._shops.values() if s.api_key]

    async def delete_shop_settings(self, shop: str) -> None:
        self._shops.pop(shop, None)
        self._posts.pop(shop, None)

    def _require_posts(self, shop: str) -> list[BlogPost]:
        if shop not in self._shops:
            raise NotFound(f"Shop settings not found for {shop}", user_message="Shop settings not found")
        return self._posts.setdefault(shop, [])

    async def get_blog_posts(self, shop: str, skip: int = 0, take: int = 10) -> tuple[list[BlogPost], int]:
        if shop not in self._shops:
            return [], 0
        posts = sorted(self._posts.get(shop, []), key=lambda p: p.created_at, reverse=True)
        return posts[skip:skip + take], len(posts)

    async def list_blog_posts(self, shop: str) -> list[BlogPost]:
        return list(self._posts.get(shop, []))

    async def upsert_blog_post(self, shop: str, post_data: dict) -> BlogPost:
        posts = self._require_posts(shop)
        settings = self._shops[shop]
        now = utcnow()
        content = {k: post_data.get(k) for k in POST_CONTENT_FIELDS}
        content["title"] = content["title"] or "Untitled"

        for index, existing in enumerate(posts):
            if existing.slug == post_data["slug"]:
                posts[index] = replace(existing, **content, updated_at=now)
                return posts[index]

        post = BlogPost(
            id=str(uuid.uuid4()),
            shop_settings_id=settings.id,
            slug=post_data["slug"],
            created_at=now,
            updated_at=now,
            **content,
        )
        posts.append(post)
        return post

    async def find_blog_post(self, shop: str, post_id: str) -> Optional[BlogPost]:
        for post in self._posts.get(shop, []):
            if post.id == post_id:
                return post
        return None

    async def update_blog_post(self, shop: str, post_id: str, **fields) -> BlogPost:
        posts = self._require_posts(shop)
        for index, post in enumerate(posts):
            if post.id == post_id:
                posts[index] = replace(post, **fields, updated_at=utcnow())
                return posts[index]
        raise NotFound(f"Blog post {post_id} not found", user_message="Blog post not found")

    async def update_many_blog_posts(self, shop: str, post_ids: list[str], **fields) -> int:
        posts = self._require_posts(shop)
        wanted = set(post_ids)
        now = utcnow()
        updated = 0
        for index, post in enumerate(posts):
            if post.id in wanted:
                posts[index] = replace(post, **fields, updated_at=now)
                updated += 1
        return updated


# =============================================================================
# SUPABASE BACKEND
# =============================================================================

class SupabaseStore:
    """
    Durable storage in Postgres through the Supabase REST API (PostgREST).

    Tables: shop_settings (unique shop) and outblog_posts
    (unique shop_settings_id + slug, cascade delete). See migrations/.
    """

    is_ephemeral = False

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or SUPABASE_URL or "").rstrip('/')

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        prefer: Optional[str] = None,
    ) -> tuple[list, dict]:
        """
        Make a PostgREST request.

        Returns:
            (rows, response headers)
        """
        headers = get_supabase_headers()
        if prefer:
            headers["Prefer"] = prefer

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    self._url(table),
                    headers=headers,
                    params=params,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
                ) as resp:
                    if resp.status not in [200, 201, 204]:
                        error = await resp.text()
                        raise PersistenceError(f"Supabase {method} {table} failed: {resp.status} - {error}")
                    if resp.status == 204:
                        return [], dict(resp.headers)
                    rows = await resp.json(content_type=None)
                    if rows is None:
                        rows = []
                    elif isinstance(rows, dict):
                        rows = [rows]
                    return rows, dict(resp.headers)
        except asyncio.TimeoutError as e:
            raise RemoteTimeout(f"Supabase {method} {table} timed out") from e
        except aiohttp.ClientError as e:
            raise PersistenceError(f"Supabase {method} {table} network error: {e}") from e
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Malformed Supabase response for {method} {table}: {e}") from e

    # Shop settings

    async def get_shop_settings(self, shop: str) -> Optional[ShopSettings]:
        rows, _ = await self._request(
            "GET", "shop_settings", params={"shop": f"eq.{shop}", "limit": "1"}
        )
        return ShopSettings.from_row(rows[0]) if rows else None

    async def _require_settings(self, shop: str) -> ShopSettings:
        settings = await self.get_shop_settings(shop)
        if not settings:
            raise NotFound(f"Shop settings not found for {shop}", user_message="Shop settings not found")
        return settings

    async def create_shop_settings(self, shop: str) -> ShopSettings:
        rows, _ = await self._request(
            "POST", "shop_settings", payload={"shop": shop}, prefer="return=representation"
        )
        return ShopSettings.from_row(rows[0])

    async def upsert_shop_settings(self, shop: str, **fields) -> ShopSettings:
        row = {"shop": shop, "updated_at": utcnow().isoformat()}
        for key, value in fields.items():
            row[key] = _isoformat(value) if isinstance(value, datetime) else value

        rows, _ = await self._request(
            "POST",
            "shop_settings",
            params={"on_conflict": "shop"},
            payload=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return ShopSettings.from_row(rows[0])

    async def list_shops_with_api_key(self) -> list[str]:
        rows, _ = await self._request(
            "GET",
            "shop_settings",
            params={"select": "shop", "api_key": "not.is.null", "order": "shop"},
        )
        return [row["shop"] for row in rows]

    async def delete_shop_settings(self, shop: str) -> None:
        # outblog_posts rows go with it (ON DELETE CASCADE)
        await self._request(
            "DELETE", "shop_settings", params={"shop": f"eq.{shop}"}, prefer="return=minimal"
        )

    # Blog posts

    async def get_blog_posts(self, shop: str, skip: int = 0, take: int = 10) -> tuple[list[BlogPost], int]:
        settings = await self.get_shop_settings(shop)
        if not settings:
            return [], 0

        rows, headers = await self._request(
            "GET",
            "outblog_posts",
            params={
                "shop_settings_id": f"eq.{settings.id}",
                "order": "created_at.desc",
                "offset": str(skip),
                "limit": str(take),
            },
            prefer="count=exact",
        )

        # Content-Range: 0-9/42
        content_range = headers.get("Content-Range", "")
        total_part = content_range.rsplit('/', 1)[-1] if '/' in content_range else ''
        total = int(total_part) if total_part.isdigit() else len(rows)

        return [BlogPost.from_row(r) for r in rows], total

    async def list_blog_posts(self, shop: str) -> list[BlogPost]:
        settings = await self.get_shop_settings(shop)
        if not settings:
            return []
        rows, _ = await self._request(
            "GET",
            "outblog_posts",
            params={"shop_settings_id": f"eq.{settings.id}", "order": "created_at.desc"},
        )
        return [BlogPost.from_row(r) for r in rows]

    async def upsert_blog_post(self, shop: str, post_data: dict) -> BlogPost:
        settings = await self._require_settings(shop)

        # created_at is left out so an existing row keeps it
        row = {k: post_data.get(k) for k in POST_CONTENT_FIELDS}
        row["title"] = row["title"] or "Untitled"
        row.update({
            "shop_settings_id": settings.id,
            "slug": post_data["slug"],
            "updated_at": utcnow().isoformat(),
        })

        rows, _ = await self._request(
            "POST",
            "outblog_posts",
            params={"on_conflict": "shop_settings_id,slug"},
            payload=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return BlogPost.from_row(rows[0])

    async def find_blog_post(self, shop: str, post_id: str) -> Optional[BlogPost]:
        settings = await self.get_shop_settings(shop)
        if not settings:
            return None
        rows, _ = await self._request(
            "GET",
            "outblog_posts",
            params={
                "id": f"eq.{post_id}",
                "shop_settings_id": f"eq.{settings.id}",
                "limit": "1",
            },
        )
        return BlogPost.from_row(rows[0]) if rows else None

    async def update_blog_post(self, shop: str, post_id: str, **fields) -> BlogPost:
        settings = await self._require_settings(shop)
        rows, _ = await self._request(
            "PATCH",
            "outblog_posts",
            params={"id": f"eq.{post_id}", "shop_settings_id": f"eq.{settings.id}"},
            payload={**fields, "updated_at": utcnow().isoformat()},
            prefer="return=representation",
        )
        if not rows:
            raise NotFound(f"Blog post {post_id} not found", user_message="Blog post not found")
        return BlogPost.from_row(rows[0])

    async def update_many_blog_posts(self, shop: str, post_ids: list[str], **fields) -> int:
        if not post_ids:
            return 0
        settings = await self._require_settings(shop)
        rows, _ = await self._request(
            "PATCH",
            "outblog_posts",
            params={
                "id": f"in.({','.join(post_ids)})",
                "shop_settings_id": f"eq.{settings.id}",
            },
            payload={**fields, "updated_at": utcnow().isoformat()},
            prefer="return=representation",
        )
        return len(rows)


# =============================================================================
# BACKEND SELECTION
# =============================================================================

_store = None


def create_store(backend: Optional[str] = None):
    backend = (backend or STORAGE_BACKEND).lower()
    if backend == "supabase":
        return SupabaseStore()
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown storage backend: {backend}")


def get_store():
    """Get the process-wide store for the configured backend."""
    global _store
    if _store is None:
        _store = create_store()
        print(f"[STORE] Using {type(_store).__name__}")
    return _store
