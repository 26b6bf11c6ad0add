"""Tests for the Shopify Admin GraphQL client."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web

from tests.conftest import SHOP
from tools.errors import (
    RemoteEmptyResponse,
    RemoteForbidden,
    RemoteProtocolError,
    RemoteRateLimited,
    RemoteServerError,
    RemoteValidationError,
    Unauthorized,
    get_user_message,
)
from tools.shopify_tools import (
    ShopifyTokenManager,
    create_article,
    execute_shopify_graphql,
    find_existing_article_ids,
    find_or_create_outblog_blog,
    get_token_manager,
    raise_for_shopify_status,
)

BLOG = {"id": "gid://shopify/Blog/1", "title": "Outblog", "handle": "outblog"}


class TestRaiseForShopifyStatus:
    @pytest.mark.parametrize("status,error_class", [
        (401, Unauthorized),
        (403, RemoteForbidden),
        (429, RemoteRateLimited),
        (500, RemoteServerError),
        (400, RemoteProtocolError),
    ])
    def test_status_mapping(self, status, error_class):
        with pytest.raises(error_class):
            raise_for_shopify_status(status, "body")


class TestTokenManager:
    def test_registry_is_per_shop(self):
        assert get_token_manager(SHOP) is get_token_manager(SHOP)
        assert get_token_manager(SHOP) is not get_token_manager("other.myshopify.com")

    def test_new_manager_has_no_valid_token(self):
        assert ShopifyTokenManager(SHOP).is_token_valid() is False


@pytest.fixture
async def graphql_api(aiohttp_server, monkeypatch):
    """Fake Admin GraphQL endpoint. Set `state["status"]` / `state["body"]` per test."""
    state = {"status": 200, "body": {"data": {}}, "tokens": []}

    async def handler(request):
        state["tokens"].append(request.headers.get("X-Shopify-Access-Token"))
        return web.json_response(state["body"], status=state["status"])

    app = web.Application()
    app.router.add_post("/graphql.json", handler)
    server = await aiohttp_server(app)

    monkeypatch.setattr("tools.shopify_tools.get_shopify_graphql_url", lambda shop: str(server.make_url("/graphql.json")))
    monkeypatch.setattr(ShopifyTokenManager, "get_access_token", AsyncMock(return_value="shpat_test"))
    return state


class TestExecuteShopifyGraphql:
    async def test_returns_data(self, graphql_api):
        graphql_api["body"] = {"data": {"shop": {"name": "Test"}}}
        data = await execute_shopify_graphql(SHOP, "{ shop { name } }")
        assert data == {"shop": {"name": "Test"}}
        assert graphql_api["tokens"] == ["shpat_test"]

    async def test_top_level_errors(self, graphql_api):
        graphql_api["body"] = {"errors": [{"message": "Throttled"}]}
        with pytest.raises(RemoteProtocolError) as exc_info:
            await execute_shopify_graphql(SHOP, "{ shop { name } }")
        assert get_user_message(exc_info.value) == "GraphQL Error: Throttled"

    async def test_unauthorized(self, graphql_api):
        graphql_api["status"] = 401
        with pytest.raises(Unauthorized):
            await execute_shopify_graphql(SHOP, "{ shop { name } }")

    async def test_server_error(self, graphql_api):
        graphql_api["status"] = 503
        with pytest.raises(RemoteServerError):
            await execute_shopify_graphql(SHOP, "{ shop { name } }")


class TestFindOrCreateOutblogBlog:
    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_existing_blog(self, mock_graphql):
        mock_graphql.return_value = {"blogs": {"nodes": [BLOG]}}

        assert await find_or_create_outblog_blog(SHOP) == BLOG["id"]
        assert mock_graphql.await_count == 1
        _, _, variables = mock_graphql.await_args.args
        assert variables["query"] == "handle:outblog"

    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_ignores_blogs_with_other_handles(self, mock_graphql):
        other = {"id": "gid://shopify/Blog/9", "title": "News", "handle": "news"}
        mock_graphql.side_effect = [
            {"blogs": {"nodes": [other]}},
            {"blogCreate": {"blog": BLOG, "userErrors": []}},
        ]

        assert await find_or_create_outblog_blog(SHOP) == BLOG["id"]
        _, _, variables = mock_graphql.await_args.args
        assert variables == {"blog": {"title": "Outblog", "handle": "outblog"}}

    async def test_concurrent_calls_create_one_blog(self):
        blogs = []
        creates = []

        async def fake_graphql(shop, query, variables=None):
            await asyncio.sleep(0)
            if "blogCreate" in query:
                creates.append(variables)
                blogs.append(BLOG)
                return {"blogCreate": {"blog": BLOG, "userErrors": []}}
            return {"blogs": {"nodes": list(blogs)}}

        with patch("tools.shopify_tools.execute_shopify_graphql", side_effect=fake_graphql):
            results = await asyncio.gather(*(find_or_create_outblog_blog(SHOP) for _ in range(3)))

        assert results == [BLOG["id"]] * 3
        assert len(creates) == 1

    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_create_user_error(self, mock_graphql):
        mock_graphql.side_effect = [
            {"blogs": {"nodes": []}},
            {"blogCreate": {"blog": None, "userErrors": [{"field": ["blog", "handle"], "message": "is taken"}]}},
        ]
        with pytest.raises(RemoteValidationError) as exc_info:
            await find_or_create_outblog_blog(SHOP)
        assert exc_info.value.field == "blog.handle"

    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_create_returns_nothing(self, mock_graphql):
        mock_graphql.side_effect = [
            {"blogs": {"nodes": []}},
            {"blogCreate": {"blog": None, "userErrors": []}},
        ]
        with pytest.raises(RemoteEmptyResponse):
            await find_or_create_outblog_blog(SHOP)


class TestCreateArticle:
    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_returns_article_id(self, mock_graphql):
        mock_graphql.return_value = {
            "articleCreate": {"article": {"id": "gid://shopify/Article/5", "title": "T", "handle": "t"}, "userErrors": []}
        }
        article_input = {"blogId": BLOG["id"], "title": "T", "body": "<p>x</p>", "handle": "t"}

        assert await create_article(SHOP, article_input) == "gid://shopify/Article/5"
        _, _, variables = mock_graphql.await_args.args
        assert variables == {"article": article_input}

    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_user_error(self, mock_graphql):
        mock_graphql.return_value = {
            "articleCreate": {
                "article": None,
                "userErrors": [{"code": "TAKEN", "field": ["article", "handle"], "message": "Handle has already been taken"}],
            }
        }
        with pytest.raises(RemoteValidationError) as exc_info:
            await create_article(SHOP, {"handle": "t"})
        assert get_user_message(exc_info.value) == "Shopify API Error: article.handle: Handle has already been taken"

    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_no_article(self, mock_graphql):
        mock_graphql.return_value = {"articleCreate": {"article": None, "userErrors": []}}
        with pytest.raises(RemoteEmptyResponse) as exc_info:
            await create_article(SHOP, {"handle": "t"})
        assert get_user_message(exc_info.value) == "Shopify API returned no article data. Please try again."


class TestFindExistingArticleIds:
    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_only_article_nodes_count(self, mock_graphql):
        mock_graphql.return_value = {
            "nodes": [
                {"__typename": "Article", "id": "gid://shopify/Article/1", "publishedAt": None},
                None,
                {"__typename": "Product"},
            ]
        }
        ids = ["gid://shopify/Article/1", "gid://shopify/Article/2", "gid://shopify/Product/3"]

        assert await find_existing_article_ids(SHOP, ids) == {"gid://shopify/Article/1"}

    @patch("tools.shopify_tools.execute_shopify_graphql")
    async def test_empty_ids_skip_request(self, mock_graphql):
        assert await find_existing_article_ids(SHOP, []) == set()
        mock_graphql.assert_not_awaited()
