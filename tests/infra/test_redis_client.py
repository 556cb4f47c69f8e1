# tests/infra/test_redis_client.py
"""
Тесты для клиента Redis.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ridetrack.infra.redis_client import RedisClient


class TestRedisClient:
    """Тесты для RedisClient."""

    @pytest.fixture
    def redis_client(self) -> RedisClient:
        """Свежий экземпляр RedisClient."""
        RedisClient._instance = None
        RedisClient._client = None
        return RedisClient()

    @pytest.fixture
    def connected(self, redis_client: RedisClient) -> AsyncMock:
        """Подменяет нижележащий клиент redis.asyncio."""
        mock_redis = AsyncMock()
        redis_client._client = mock_redis
        return mock_redis

    def test_singleton(self) -> None:
        RedisClient._instance = None
        assert RedisClient() is RedisClient()

    def test_client_not_initialized(self, redis_client: RedisClient) -> None:
        with pytest.raises(RuntimeError, match="Redis клиент не инициализирован"):
            _ = redis_client.client

    def test_make_key(self, redis_client: RedisClient) -> None:
        assert redis_client.make_key("rec:live_rides:s1") == "ridetrack:rec:live_rides:s1"

        redis_client._namespace = "custom"
        assert redis_client.make_key("idx:live_rides") == "custom:idx:live_rides"

    @pytest.mark.asyncio
    async def test_connect(self, redis_client: RedisClient) -> None:
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock(return_value=True)

        with patch("redis.asyncio.from_url", return_value=mock_redis) as mock_from_url:
            await redis_client.connect(url="redis://localhost:6379/0", max_connections=10, namespace="rt")

        assert redis_client.client is mock_redis
        assert redis_client.namespace == "rt"
        assert mock_from_url.call_args.kwargs["decode_responses"] is True
        mock_redis.ping.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_already_connected(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        with patch("redis.asyncio.from_url") as mock_from_url:
            await redis_client.connect(url="redis://localhost:6379/0")

        mock_from_url.assert_not_called()

    @pytest.mark.asyncio
    async def test_disconnect(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        await redis_client.disconnect()

        connected.aclose.assert_called_once()
        assert redis_client._client is None

    @pytest.mark.asyncio
    async def test_get_uses_namespace(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.get.return_value = "value"

        assert await redis_client.get("k") == "value"
        connected.get.assert_called_once_with("ridetrack:k")

    @pytest.mark.asyncio
    async def test_mget(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.mget.return_value = ["a", None]

        assert await redis_client.mget(["x", "y"]) == ["a", None]
        connected.mget.assert_called_once_with(["ridetrack:x", "ridetrack:y"])

    @pytest.mark.asyncio
    async def test_mget_empty(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        assert await redis_client.mget([]) == []
        connected.mget.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_json(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.get.return_value = json.dumps({"id": "s1", "_version": 3})

        assert await redis_client.get_json("rec:live_rides:s1") == {"id": "s1", "_version": 3}

    @pytest.mark.asyncio
    async def test_get_json_missing_or_corrupted(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.get.return_value = None
        assert await redis_client.get_json("k") is None

        connected.get.return_value = "{not json"
        assert await redis_client.get_json("k") is None

    @pytest.mark.asyncio
    async def test_smembers(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.smembers.return_value = {"s1", "s2"}

        assert await redis_client.smembers("idx:live_rides") == {"s1", "s2"}
        connected.smembers.assert_called_once_with("ridetrack:idx:live_rides")

    def test_pipeline_and_pubsub(self, redis_client: RedisClient) -> None:
        mock_redis = MagicMock()
        redis_client._client = mock_redis

        redis_client.pipeline()
        redis_client.pubsub()

        mock_redis.pipeline.assert_called_once_with(transaction=True)
        mock_redis.pubsub.assert_called_once()
