"""Tests for request-scoped token sinks."""

import pytest

from branchchat.services.token_registry import TokenCallbackRegistry


class TestTokenCallbackRegistry:
    def test_register_and_get(self):
        registry = TokenCallbackRegistry()
        sink = lambda token: None  # noqa: E731

        registry.register("req-1", sink)

        assert registry.get("req-1") is sink
        assert "req-1" in registry
        assert len(registry) == 1

    def test_get_unknown(self):
        registry = TokenCallbackRegistry()

        assert registry.get("missing") is None
        assert registry.get(None) is None

    def test_unregister_is_idempotent(self):
        registry = TokenCallbackRegistry()
        registry.register("req-1", lambda token: None)

        registry.unregister("req-1")
        registry.unregister("req-1")

        assert "req-1" not in registry

    @pytest.mark.asyncio
    async def test_forwarder_delivers_to_current_sink(self):
        registry = TokenCallbackRegistry()
        forward = registry.forwarder("req-1")
        received: list[str] = []

        await forward("dropped")
        registry.register("req-1", received.append)
        await forward("a")
        registry.unregister("req-1")
        await forward("also dropped")

        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_forwarder_awaits_async_sink(self):
        registry = TokenCallbackRegistry()
        received: list[str] = []

        async def sink(token):
            received.append(token)

        registry.register("req-1", sink)
        await registry.forwarder("req-1")("a")

        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_requests_are_isolated(self):
        registry = TokenCallbackRegistry()
        first: list[str] = []
        second: list[str] = []
        registry.register("req-1", first.append)
        registry.register("req-2", second.append)

        await registry.forwarder("req-1")("one")
        await registry.forwarder("req-2")("two")

        assert first == ["one"]
        assert second == ["two"]
