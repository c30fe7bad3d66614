"""Tests for credential state, token resolution and refresh configuration."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from restweave.auth import (
    AuthRefresh,
    AuthRefreshMode,
    CredentialSnapshot,
    CredentialStore,
    normalize_token,
    resolve_effective_token,
)
from restweave.exceptions import AuthError, AuthRefreshError
from restweave.request import RequestDescriptor
from restweave.types import HTTPMethod


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, None), ("", None), ("   ", None), (" abc ", "abc"), ("abc", "abc")],
)
def test_normalize_token(raw, expected):
    assert normalize_token(raw) == expected


@pytest.mark.asyncio
async def test_resolve_prefers_request_token_then_provider_then_static():
    """Per-request token > provider > static token > none."""
    provider = AsyncMock(return_value="T2")
    both = CredentialSnapshot(access_token="T3", access_token_provider=provider)
    static_only = CredentialSnapshot(access_token="T3")
    descriptor = RequestDescriptor(path="x")

    assert await resolve_effective_token(descriptor.with_auth_token("T1"), both) == "T1"
    assert await resolve_effective_token(descriptor, both) == "T2"
    assert await resolve_effective_token(descriptor, static_only) == "T3"
    assert await resolve_effective_token(descriptor, CredentialSnapshot()) is None


@pytest.mark.asyncio
async def test_resolve_falls_back_when_provider_returns_blank():
    snapshot = CredentialSnapshot(
        access_token="T3", access_token_provider=AsyncMock(return_value=" ")
    )
    assert await resolve_effective_token(RequestDescriptor(), snapshot) == "T3"


@pytest.mark.asyncio
async def test_resolve_with_no_auth_skips_provider():
    provider = AsyncMock(return_value="T2")
    snapshot = CredentialSnapshot(access_token="T3", access_token_provider=provider)

    token = await resolve_effective_token(
        RequestDescriptor().with_auth_token("T1").without_auth(), snapshot
    )

    assert token is None
    provider.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_wraps_provider_errors():
    snapshot = CredentialSnapshot(
        access_token_provider=AsyncMock(side_effect=KeyError("missing"))
    )
    with pytest.raises(AuthError, match="Access token provider failed"):
        await resolve_effective_token(RequestDescriptor(), snapshot)


# --- AuthRefresh configuration ---


def test_auth_refresh_defaults():
    refresh = AuthRefresh.disabled()
    assert refresh.mode is AuthRefreshMode.DISABLED
    assert not refresh.is_enabled
    assert refresh.trigger_status_codes == frozenset({401})
    assert refresh.applies_to_per_request_token is False


def test_endpoint_refresh_defaults():
    refresh = AuthRefresh.for_endpoint(
        "auth/refresh", refresh_token_provider=AsyncMock(return_value="r")
    )
    assert refresh.is_enabled
    assert refresh.endpoint.method is HTTPMethod.POST
    assert refresh.endpoint.refresh_token_field == "refreshToken"
    assert refresh.endpoint.token_field == "accessToken"
    assert refresh.endpoint.refresh_token_response_field is None


@pytest.mark.parametrize(
    ("codes", "expected"),
    [
        ([401, 403], {401, 403}),
        ([0, 99, 600, 403], {403}),
        ([], {401}),
        ([1000], {401}),
    ],
)
def test_trigger_status_codes_are_normalized(codes, expected):
    handler = AsyncMock(return_value="t")
    assert AuthRefresh.custom(handler, trigger_status_codes=codes).trigger_status_codes == expected
    assert (
        AuthRefresh.custom(handler).with_trigger_status_codes(codes).trigger_status_codes
        == expected
    )


# --- CredentialStore ---


@pytest.mark.asyncio
async def test_store_setters_and_snapshot():
    store = CredentialStore(access_token="  initial ")
    assert await store.access_token() == "initial"

    provider = AsyncMock(return_value="p")
    await store.set_access_token("")
    await store.set_access_token_provider(provider)
    await store.set_auth_refresh(AuthRefresh.custom(AsyncMock()))

    snapshot = await store.snapshot()
    assert snapshot.access_token is None
    assert snapshot.access_token_provider is provider
    assert snapshot.auth_refresh.mode is AuthRefreshMode.CUSTOM
    assert snapshot.has_credential_source

    await store.set_auth_refresh(None)
    assert (await store.snapshot()).auth_refresh.mode is AuthRefreshMode.DISABLED


@pytest.mark.asyncio
async def test_store_refresh_is_single_flight():
    store = CredentialStore(access_token="old")
    gate = asyncio.Event()
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        await gate.wait()
        return "new"

    waiters = [asyncio.create_task(store.refresh(operation)) for _ in range(5)]
    await asyncio.sleep(0)
    assert store.refresh_in_flight

    gate.set()
    results = await asyncio.gather(*waiters)

    assert results == ["new"] * 5
    assert calls == 1
    assert await store.access_token() == "new"
    assert not store.refresh_in_flight

    # The next refresh starts a new episode.
    gate.set()
    assert await store.refresh(operation) == "new"
    assert calls == 2


@pytest.mark.asyncio
async def test_store_refresh_failure_is_wrapped_and_token_kept():
    store = CredentialStore(access_token="old")

    async def operation():
        raise ValueError("boom")

    with pytest.raises(AuthRefreshError) as exc_info:
        await store.refresh(operation)

    assert isinstance(exc_info.value.cause, ValueError)
    assert await store.access_token() == "old"
    assert not store.refresh_in_flight


@pytest.mark.asyncio
async def test_store_refresh_rejects_empty_token():
    store = CredentialStore(access_token="old")

    with pytest.raises(AuthRefreshError, match="no access token"):
        await store.refresh(AsyncMock(return_value="  "))
    assert await store.access_token() == "old"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_episode():
    store = CredentialStore()
    gate = asyncio.Event()

    async def operation():
        await gate.wait()
        return "new"

    first = asyncio.create_task(store.refresh(operation))
    second = asyncio.create_task(store.refresh(operation))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    first.cancel()
    gate.set()

    assert await second == "new"
    with pytest.raises(asyncio.CancelledError):
        await first
    assert await store.access_token() == "new"


@pytest.mark.asyncio
async def test_cancelled_episode_fails_waiters_and_is_cleared():
    store = CredentialStore(access_token="old")

    async def operation():
        await asyncio.Event().wait()

    waiter = asyncio.create_task(store.refresh(operation))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    store._refresh_task.cancel()

    with pytest.raises(AuthRefreshError, match="cancelled"):
        await waiter
    assert not store.refresh_in_flight
    assert await store.access_token() == "old"
