"""Tests for OAuth CSRF state handling"""
import asyncio
import json
import time

import pytest

from afauth.config import settings
from afauth.errors import EphemeralStoreError
from afauth.services.oauth_state import STATE_KEY_PREFIX, OAuthStateManager


@pytest.fixture
def manager(store):
    return OAuthStateManager(store, max_age_seconds=600)


async def test_generate_state(manager, store):
    """Test state is 64 hex chars and stored under the prefixed key"""
    state = await manager.generate_state(request_id="req-1")

    assert len(state) == 64
    int(state, 16)
    assert store.keys() == [f"{STATE_KEY_PREFIX}{state}"]


async def test_generate_state_unique(manager):
    """Test states are never reused"""
    states = {await manager.generate_state() for _ in range(20)}
    assert len(states) == 20


async def test_validate_state_is_single_use(manager):
    """Test a state validates once and is then gone"""
    state = await manager.generate_state(request_id="req-1")

    data = await manager.validate_state(state)
    assert data is not None
    assert data.request_id == "req-1"

    assert await manager.validate_state(state) is None


async def test_concurrent_validation_succeeds_once(manager):
    """Test two callbacks racing on one state yield exactly one success"""
    state = await manager.generate_state()

    results = await asyncio.gather(manager.validate_state(state), manager.validate_state(state))

    assert sum(result is not None for result in results) == 1


async def test_validate_unknown_state(manager):
    """Test a never-issued state is rejected"""
    assert await manager.validate_state("f" * 64) is None
    assert await manager.validate_state("") is None


async def test_validate_stale_state(manager, store):
    """Test a state older than max age is rejected even if the key still exists"""
    state = "a" * 64
    old = int((time.time() - 601) * 1000)
    await store.set(f"{STATE_KEY_PREFIX}{state}", json.dumps({"timestamp": old}), 3600)

    assert await manager.validate_state(state) is None
    # Consumed regardless
    assert store.keys() == []


async def test_validate_state_after_ttl(store):
    """Test the physical TTL also removes the state"""
    now = [1000.0]
    store._clock = lambda: now[0]
    manager = OAuthStateManager(store, max_age_seconds=600)
    state = await manager.generate_state()

    now[0] += 601
    assert await manager.validate_state(state) is None


async def test_validate_malformed_payload(manager, store):
    """Test a corrupt entry is treated as invalid"""
    state = "b" * 64
    await store.set(f"{STATE_KEY_PREFIX}{state}", "not json", 600)

    assert await manager.validate_state(state) is None


async def test_store_failure_propagates(manager, store, monkeypatch):
    """Test a store outage surfaces as EphemeralStoreError"""

    async def broken(*args, **kwargs):
        raise EphemeralStoreError("Ephemeral store set failed")

    monkeypatch.setattr(store, "set", broken)
    with pytest.raises(EphemeralStoreError):
        await manager.generate_state()


async def test_max_age_zero_is_kept(store):
    """Test an explicit zero max age is not replaced by the configured TTL"""
    assert OAuthStateManager(store, max_age_seconds=0).max_age_seconds == 0
    assert OAuthStateManager(store).max_age_seconds == settings.OAUTH_STATE_TTL_SECONDS
