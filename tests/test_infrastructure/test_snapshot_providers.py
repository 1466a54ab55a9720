"""Tests for the simulated and RapidAPI snapshot providers."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from billboard_keeper.config import Settings
from billboard_keeper.infrastructure.snapshot import (
    RapidApiSnapshotProvider,
    SimulatedProfile,
    SimulatedSnapshotProvider,
    build_snapshot_provider,
)


class TestSimulatedSnapshotProvider:
    @pytest.mark.asyncio
    async def test_returns_profile_state(self) -> None:
        provider = SimulatedSnapshotProvider(
            {"@Alice": SimulatedProfile(image_url="https://cdn.test/a.png", text="gm")}
        )
        result = await provider.fetch_snapshot("alice")

        assert result.ok
        assert result.snapshot is not None
        assert result.snapshot.handle == "alice"
        assert result.snapshot.image_url == "https://cdn.test/a.png"
        assert result.snapshot.text == "gm"

    @pytest.mark.asyncio
    async def test_unknown_handle_fails(self) -> None:
        result = await SimulatedSnapshotProvider().fetch_snapshot("@nobody")
        assert not result.ok
        assert result.error == "User @nobody not found"

    @pytest.mark.asyncio
    async def test_update_changes_only_given_fields(self) -> None:
        provider = SimulatedSnapshotProvider({"alice": SimulatedProfile(text="old", image_url="u")})
        provider.update("alice", text="new")

        result = await provider.fetch_snapshot("alice")
        assert result.snapshot is not None
        assert result.snapshot.text == "new"
        assert result.snapshot.image_url == "u"

    @pytest.mark.asyncio
    async def test_fail_next_then_recover(self) -> None:
        provider = SimulatedSnapshotProvider({"alice": SimulatedProfile(text="gm")})
        provider.fail_next("alice", count=2)

        results = [await provider.fetch_snapshot("alice") for _ in range(3)]
        assert [r.ok for r in results] == [False, False, True]
        assert provider.fetch_count == 3

    @pytest.mark.asyncio
    async def test_outage(self) -> None:
        provider = SimulatedSnapshotProvider({"alice": SimulatedProfile(text="gm")})
        provider.set_available("alice", False, reason="rate limited")
        result = await provider.fetch_snapshot("alice")
        assert result.error == "rate limited"

    def test_instances_do_not_share_state(self) -> None:
        first = SimulatedSnapshotProvider()
        first.update("alice", text="gm")
        assert SimulatedSnapshotProvider().handles() == []
        assert first.handles() == ["alice"]


def _user_payload(**legacy: Any) -> dict[str, Any]:
    return {
        "result": {
            "data": {
                "user": {
                    "result": {
                        "core": {"name": "Alice"},
                        "avatar": {"image_url": "https://pbs.test/alice_normal.jpg"},
                        "legacy": legacy,
                    }
                }
            }
        }
    }


def _provider(handler: Any) -> tuple[RapidApiSnapshotProvider, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return RapidApiSnapshotProvider(api_key="test-key", http_client=client), seen


class TestRapidApiSnapshotProvider:
    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="RAPIDAPI_KEY"):
            RapidApiSnapshotProvider(api_key="")

    @pytest.mark.asyncio
    async def test_parses_profile(self) -> None:
        provider, seen = _provider(
            lambda _r: httpx.Response(
                200,
                json=_user_payload(
                    profile_banner_url="https://pbs.test/banner/1500x500",
                    description="Sponsored by Acme",
                ),
            )
        )
        result = await provider.fetch_snapshot("@Alice")

        assert result.ok
        snapshot = result.snapshot
        assert snapshot is not None
        assert snapshot.handle == "alice"
        assert snapshot.image_url == "https://pbs.test/banner/1500x500"
        assert snapshot.text == "Sponsored by Acme"
        assert snapshot.display_name == "Alice"
        assert snapshot.avatar_url == "https://pbs.test/alice_400x400.jpg"

        request = seen[0]
        assert request.url.params["username"] == "alice"
        assert request.headers["X-RapidAPI-Key"] == "test-key"
        assert request.headers["X-RapidAPI-Host"] == "twitter241.p.rapidapi.com"

    @pytest.mark.asyncio
    async def test_profile_without_banner(self) -> None:
        provider, _ = _provider(lambda _r: httpx.Response(200, json=_user_payload()))
        result = await provider.fetch_snapshot("alice")
        assert result.snapshot is not None
        assert result.snapshot.image_url is None
        assert result.snapshot.text == ""

    @pytest.mark.asyncio
    async def test_non_200_is_a_failure(self) -> None:
        provider, _ = _provider(lambda _r: httpx.Response(429))
        result = await provider.fetch_snapshot("alice")
        assert not result.ok
        assert result.error is not None
        assert "429" in result.error

    @pytest.mark.asyncio
    async def test_missing_user_is_a_failure(self) -> None:
        provider, _ = _provider(lambda _r: httpx.Response(200, json={"result": {"data": {}}}))
        result = await provider.fetch_snapshot("ghost")
        assert result.error == "User @ghost not found"

    @pytest.mark.asyncio
    async def test_api_error_message_is_a_failure(self) -> None:
        provider, _ = _provider(
            lambda _r: httpx.Response(200, json={"message": "You are not subscribed"})
        )
        result = await provider.fetch_snapshot("alice")
        assert result.error == "You are not subscribed"


class TestBuildSnapshotProvider:
    def test_simulated_by_default(self) -> None:
        provider = build_snapshot_provider(Settings(_env_file=None, snapshot_provider="simulated"))
        assert isinstance(provider, SimulatedSnapshotProvider)

    def test_rapidapi(self) -> None:
        settings = Settings(_env_file=None, snapshot_provider="rapidapi", rapidapi_key="k")
        assert isinstance(build_snapshot_provider(settings), RapidApiSnapshotProvider)
