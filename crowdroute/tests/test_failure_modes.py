"""
Failure Injection Tests.

Validates resilience against component failures: Redis outages,
transient storage faults, and in-process write serialization.
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from crowdroute.app import main as main_module
from crowdroute.app.core.config import settings
from crowdroute.app.core.keyed_lock import KeyedLock
from crowdroute.app.core.reliability import CircuitBreaker, CircuitOpenError, cache_circuit_breaker
from crowdroute.app.services import geo_index
from crowdroute.app.services.cache import CacheService

IKEJA = {"latitude": 6.6018, "longitude": 3.3515, "radius_km": 5}


class BrokenRedis:
    """Every command fails as if the server were unreachable."""

    def __init__(self):
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise RedisConnectionError("Connection refused")

    get = set = incr = delete = _fail

    async def ping(self):
        raise RedisConnectionError("Connection refused")


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Circuit opens after threshold failures and recovers after the timeout."""
    cb = CircuitBreaker("test", failure_threshold=2, reset_timeout=0.05)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    with pytest.raises(CircuitOpenError):
        await cb.call(ok_func)

    await asyncio.sleep(0.1)
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"


@pytest.mark.asyncio
async def test_nearby_survives_redis_outage(client, make_location):
    import crowdroute.app.core.redis_client as redis_client_module

    await make_location("Allen Junction", 6.6010, 3.3520)
    broken = BrokenRedis()
    redis_client_module.redis_client = broken

    for _ in range(4):
        response = await client.get("/v1/locations/nearby", params=IKEJA)
        assert response.status_code == 200
        assert len(response.json()["locations"]) == 1

    assert cache_circuit_breaker.state == "OPEN"
    # once open, Redis is no longer called
    calls_when_open = broken.calls
    await client.get("/v1/locations/nearby", params=IKEJA)
    assert broken.calls == calls_when_open


@pytest.mark.asyncio
async def test_cache_faults_are_misses(mocker, mock_redis):
    mocker.patch.object(mock_redis, "get", side_effect=RedisConnectionError("down"))

    assert await CacheService.build_key("nearby", latitude=1) is None
    assert await CacheService.get("crowdroute:nearby:0:abc") is None


@pytest.mark.asyncio
async def test_health_reports_degraded_cache(client):
    import crowdroute.app.core.redis_client as redis_client_module
    redis_client_module.redis_client = BrokenRedis()

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_storage_fault_maps_to_retryable_503(client, mocker):
    mocker.patch.object(
        geo_index, "search",
        side_effect=OperationalError("SELECT 1", {}, Exception("database is locked")),
    )

    response = await client.get("/v1/locations/search", params={"q": "ikeja"})

    assert response.status_code == 503
    assert response.json()["error_code"] == "ERR_STORAGE_TRANSIENT"
    assert response.json()["details"]["retryable"] is True


@pytest.mark.asyncio
async def test_keyed_lock_serializes_same_key():
    locks = KeyedLock("test")
    trace = []

    async def writer(key, name):
        async with locks.hold(key):
            trace.append(f"{name}:start")
            await asyncio.sleep(0.01)
            trace.append(f"{name}:end")

    await asyncio.gather(writer(1, "a"), writer(1, "b"))

    assert trace == ["a:start", "a:end", "b:start", "b:end"]
    assert not locks.is_held(1)
    assert locks._locks == {}


@pytest.mark.asyncio
async def test_keyed_lock_allows_different_keys():
    locks = KeyedLock("test")
    trace = []

    async def writer(key, name):
        async with locks.hold(key):
            trace.append(f"{name}:start")
            await asyncio.sleep(0.01)
            trace.append(f"{name}:end")

    await asyncio.gather(writer(1, "a"), writer(2, "b"))

    assert trace[:2] == ["a:start", "b:start"]


@pytest.mark.asyncio
async def test_retention_loop_survives_unexpected_errors(mocker, monkeypatch, session_factory):
    """A crash in one cleanup pass is logged and the loop keeps its schedule."""
    monkeypatch.setattr(settings, "retention_cleanup_interval_hours", 0)
    monkeypatch.setattr(main_module, "AsyncSessionLocal", session_factory)
    cleanup = mocker.patch.object(
        main_module,
        "cleanup_old_reports",
        side_effect=[
            RuntimeError("bad row"),
            OperationalError("UPDATE fare_reports", {}, Exception("database is locked")),
            asyncio.CancelledError(),
        ],
    )

    with pytest.raises(asyncio.CancelledError):
        await main_module.retention_cleanup_loop()

    assert cleanup.call_count == 3
