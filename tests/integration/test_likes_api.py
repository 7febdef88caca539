from __future__ import annotations

from sqlalchemy import select

import likecounter.main as main_module
from likecounter.counters import CounterStoreError
from likecounter.database import AsyncSessionLocal
from likecounter.models import UrlLike


async def like(client, url: str, method: str = "update", **kwargs):
    return await client.post("/api", params={"method": method}, json={"url": url}, **kwargs)


async def test_update_increments_and_read_reports(client) -> None:
    first = await like(client, "http://example.com/foo")
    assert first.status_code == 200
    assert first.json() == {"success": True, "url": "example.com/foo", "likes": 1}

    second = await like(client, "http://example.com/foo")
    assert second.json()["likes"] == 2

    read = await like(client, "http://example.com/foo", method="read")
    assert read.status_code == 200
    assert read.json() == {"success": True, "url": "example.com/foo", "likes": 2}


async def test_read_unseen_url_returns_zero_and_materializes_row(client) -> None:
    response = await like(client, "https://never-seen.example.com/page", method="READ")
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "url": "never-seen.example.com/page",
        "likes": 0,
    }

    async with AsyncSessionLocal() as session:
        likes = await session.scalar(
            select(UrlLike.likes).where(UrlLike.url == "never-seen.example.com/page")
        )
    assert likes == 0

    again = await like(client, "https://never-seen.example.com/page", method="read")
    assert again.json()["likes"] == 0
    updated = await like(client, "https://never-seen.example.com/page")
    assert updated.json()["likes"] == 1


async def test_equivalent_urls_share_one_counter(client) -> None:
    await like(client, "HTTP://Example.COM/foo?utm_source=x#comments")
    await like(client, "https://example.com/foo")

    read = await like(client, "http://example.com/foo", method="read")
    assert read.json()["likes"] == 2

    trailing = await like(client, "http://example.com/foo/", method="read")
    assert trailing.json() == {"success": True, "url": "example.com/foo/", "likes": 0}


async def test_invalid_requests_are_rejected_with_messages(client) -> None:
    wrong_method = await client.get("/api", params={"method": "read"})
    assert wrong_method.status_code == 405
    assert wrong_method.json() == {
        "success": False,
        "message": "Method not allowed. Only POST requests are accepted.",
    }

    missing_method = await client.post("/api", json={"url": "https://example.com"})
    assert missing_method.status_code == 400
    assert missing_method.json()["success"] is False
    assert "method" in missing_method.json()["message"]

    bad_method = await like(client, "https://example.com", method="delete")
    assert bad_method.status_code == 400

    not_json = await client.post(
        "/api",
        params={"method": "update"},
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert not_json.status_code == 400
    assert not_json.json() == {"success": False, "message": "Invalid JSON in request body"}

    empty = await client.post("/api", params={"method": "update"})
    assert empty.status_code == 400
    assert empty.json()["message"] == "Request body cannot be empty"

    missing_url = await client.post("/api", params={"method": "update"}, json={"link": "x"})
    assert missing_url.status_code == 400
    assert "url" in missing_url.json()["message"]


async def test_disallowed_urls_are_rejected_without_writes(client) -> None:
    ftp = await like(client, "ftp://example.com/file")
    assert ftp.status_code == 400
    assert ftp.json()["success"] is False
    assert "protocol" in ftp.json()["message"].lower()

    malformed = await like(client, "http://[::1")
    assert malformed.status_code == 400
    assert malformed.json()["message"] == "Malformed URL"

    async with AsyncSessionLocal() as session:
        rows = (await session.scalars(select(UrlLike.url))).all()
    assert rows == []


async def test_same_domain_protection(client, monkeypatch) -> None:
    monkeypatch.setattr(main_module.settings, "same_domain_protection", True)

    allowed = await like(
        client,
        "https://blog.example.com/post",
        headers={"Host": "likes.example.com"},
    )
    assert allowed.status_code == 200
    assert allowed.json()["likes"] == 1

    foreign = await like(
        client,
        "https://example.org/post",
        headers={"Host": "likes.example.com"},
    )
    assert foreign.status_code == 403
    assert foreign.json() == {"success": False, "message": "Domain not allowed"}

    platform = await like(
        client,
        "https://likes.someone.workers.dev/post",
        headers={"Host": "likes.someone.workers.dev"},
    )
    assert platform.status_code == 403


async def test_store_failures_return_generic_error(client, monkeypatch) -> None:
    async def _fail(*_args, **_kwargs) -> int:
        raise CounterStoreError("connection refused by 10.0.0.5")

    monkeypatch.setattr(main_module, "increment_or_init", _fail)
    response = await like(client, "https://example.com/post")
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Database operation failed"}


async def test_greeting_preflight_and_unknown_paths(client) -> None:
    root = await client.get("/")
    assert root.status_code == 200
    assert root.text == "hello and welcome"

    options = await client.options("/api")
    assert options.status_code == 200
    assert options.content == b""

    preflight = await client.options(
        "/api",
        headers={
            "Origin": "https://blog.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )
    assert preflight.status_code == 200
    assert preflight.content == b""
    assert preflight.headers["access-control-allow-origin"] == "*"
    assert "POST" in preflight.headers["access-control-allow-methods"]

    missing = await client.get("/does-not-exist")
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Endpoint not found"}


async def test_oversized_body_is_rejected(client, monkeypatch) -> None:
    monkeypatch.setattr(main_module.settings, "max_request_body_bytes", 64)
    response = await like(client, "https://example.com/" + "a" * 200)
    assert response.status_code == 413
    assert response.json()["success"] is False


async def test_invalid_hosts_are_rejected_without_writes(client) -> None:
    for url in ("http://exa mple.com/x", "http://a<b>.com/"):
        response = await like(client, url)
        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Malformed URL"}

    async with AsyncSessionLocal() as session:
        rows = (await session.scalars(select(UrlLike.url))).all()
    assert rows == []


async def test_browser_equivalent_urls_share_one_counter(client) -> None:
    await like(client, "http://example.com/a/../b")
    await like(client, "http:example.com/b")
    read = await like(client, "https://example.com/b", method="read")
    assert read.json() == {"success": True, "url": "example.com/b", "likes": 2}

    international = await like(client, "http://bücher.de/x")
    assert international.json()["url"] == "xn--bcher-kva.de/x"
    spaced = await like(client, "http://example.com/a b")
    assert spaced.json()["url"] == "example.com/a%20b"
