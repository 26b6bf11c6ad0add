"""Shared fixtures."""

import pytest

from tools import shopify_tools
from tools.store_tools import MemoryStore

SHOP = "test-shop.myshopify.com"


@pytest.fixture(autouse=True)
def reset_shopify_registries():
    """Locks and token managers are per process; start each test clean."""
    shopify_tools._blog_locks.clear()
    shopify_tools._token_managers.clear()
    yield
    shopify_tools._blog_locks.clear()
    shopify_tools._token_managers.clear()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
async def configured_store(store):
    """Store with settings and an API key for SHOP (post as draft)."""
    await store.upsert_shop_settings(SHOP, api_key="ob_test_key", post_as_draft=True)
    return store


def make_outblog_post(post_id, title, slug=None, content="# Heading\n\nBody", featured_image=None):
    return {
        "id": post_id,
        "title": title,
        "slug": slug,
        "content": content,
        "featured_image": featured_image,
        "blog_meta_data": {
            "meta_description": f"About {title}",
            "categories": ["News"],
            "tags": ["outblog"],
        },
    }
