"""Tests for the Outblog API client."""

import json

import pytest
from aiohttp import web

from tools.errors import (
    InvalidCredential,
    RemoteForbidden,
    RemoteProtocolError,
    RemoteRateLimited,
    RemoteServerError,
    get_user_message,
)
from tools.outblog_tools import (
    fetch_posts,
    normalize_post,
    raise_for_outblog_status,
    validate_api_key,
)


@pytest.fixture
async def outblog_api(aiohttp_server, monkeypatch):
    """Fake Outblog API. Set `state["status"]` / `state["body"]` per test."""
    state = {"status": 200, "body": {}, "requests": []}

    async def handler(request):
        state["requests"].append((request.method, request.path, request.headers.get("x-api-key")))
        return web.json_response(state["body"], status=state["status"])

    app = web.Application()
    app.router.add_post("/blogs/validate-api-key", handler)
    app.router.add_get("/blogs/posts/wp", handler)
    server = await aiohttp_server(app)

    monkeypatch.setattr("tools.outblog_tools.OUTBLOG_API_URL", str(server.make_url("/")))
    return state


class TestRaiseForOutblogStatus:
    @pytest.mark.parametrize("status,error_class", [
        (401, InvalidCredential),
        (403, RemoteForbidden),
        (429, RemoteRateLimited),
        (500, RemoteServerError),
        (503, RemoteServerError),
        (404, RemoteProtocolError),
    ])
    def test_status_mapping(self, status, error_class):
        with pytest.raises(error_class):
            raise_for_outblog_status(status)

    def test_unexpected_status_message(self):
        with pytest.raises(RemoteProtocolError) as exc_info:
            raise_for_outblog_status(418)
        assert get_user_message(exc_info.value) == "Failed to fetch blogs (HTTP 418)"


class TestValidateApiKey:
    async def test_valid_key(self, outblog_api):
        outblog_api["body"] = {"valid": True}
        assert await validate_api_key("ob_key") is True
        assert outblog_api["requests"] == [("POST", "/blogs/validate-api-key", "ob_key")]

    async def test_invalid_key(self, outblog_api):
        outblog_api["body"] = {"valid": False}
        assert await validate_api_key("ob_key") is False

    async def test_non_ok_status_is_invalid(self, outblog_api):
        outblog_api["status"] = 401
        outblog_api["body"] = {"error": "nope"}
        assert await validate_api_key("ob_key") is False


class TestFetchPosts:
    async def test_returns_posts(self, outblog_api):
        outblog_api["body"] = {"data": {"posts": [{"id": 1, "title": "A"}, {"id": 2, "title": "B"}]}}
        posts = await fetch_posts("ob_key")
        assert [p["id"] for p in posts] == [1, 2]
        assert outblog_api["requests"][0] == ("GET", "/blogs/posts/wp", "ob_key")

    async def test_missing_posts_is_empty(self, outblog_api):
        outblog_api["body"] = {"data": {}}
        assert await fetch_posts("ob_key") == []

    async def test_rejected_key(self, outblog_api):
        outblog_api["status"] = 401
        with pytest.raises(InvalidCredential):
            await fetch_posts("ob_key")

    async def test_server_error(self, outblog_api):
        outblog_api["status"] = 502
        with pytest.raises(RemoteServerError) as exc_info:
            await fetch_posts("ob_key")
        assert get_user_message(exc_info.value) == "Outblog server error. Please try again later."

    async def test_data_not_an_object(self, outblog_api):
        outblog_api["body"] = {"data": ["posts"]}
        with pytest.raises(RemoteProtocolError):
            await fetch_posts("ob_key")

    async def test_posts_not_a_list(self, outblog_api):
        outblog_api["body"] = {"data": {"posts": {"id": 1}}}
        with pytest.raises(RemoteProtocolError):
            await fetch_posts("ob_key")

    async def test_non_object_body(self, outblog_api):
        outblog_api["body"] = ["not", "an", "object"]
        with pytest.raises(RemoteProtocolError):
            await fetch_posts("ob_key")


class TestNormalizePost:
    def test_maps_fields(self):
        post = {
            "id": 42,
            "title": "Hello World!",
            "content": "# Hi",
            "featured_image": "https://cdn.example.com/a.png",
            "blog_meta_data": {
                "meta_description": "Greeting",
                "categories": ["News"],
                "tags": ["hello", "world"],
            },
        }
        normalized = normalize_post(post)

        assert normalized["external_id"] == "42"
        assert normalized["slug"] == "hello-world!"
        assert normalized["title"] == "Hello World!"
        assert normalized["meta_description"] == "Greeting"
        assert json.loads(normalized["categories"]) == ["News"]
        assert json.loads(normalized["tags"]) == ["hello", "world"]

    def test_explicit_slug(self):
        assert normalize_post({"id": 1, "slug": "custom", "title": "T"})["slug"] == "custom"

    def test_missing_fields(self):
        normalized = normalize_post({"id": 3})
        assert normalized["title"] == "Untitled"
        assert normalized["slug"] == "untitled"
        assert normalized["meta_description"] is None
        assert normalized["categories"] == "[]"
        assert normalized["tags"] == "[]"

    def test_non_object_post(self):
        with pytest.raises(RemoteProtocolError):
            normalize_post("not-a-dict")

    def test_non_object_metadata_is_ignored(self):
        normalized = normalize_post({"id": 4, "title": "T", "blog_meta_data": ["x"]})
        assert normalized["meta_description"] is None
        assert normalized["tags"] == "[]"
