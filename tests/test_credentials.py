import pytest, asyncio
from switchboard.core.credentials import CredentialCache
from switchboard.core.errors import AuthError, TransportError

class Clock:
    def __init__(self):
        self.now = 1000.0
    def __call__(self):
        return self.now

def make_refresher(tokens, ttl=3600.0, delay=0.01):
    calls = []
    async def refresh():
        calls.append(1)
        await asyncio.sleep(delay)
        return tokens[len(calls) - 1], ttl
    return refresh, calls

@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    refresh, calls = make_refresher(["t1"])
    cache = CredentialCache(refresh)
    tokens = await asyncio.gather(*[cache.get_token() for _ in range(20)])
    assert tokens == ["t1"] * 20
    assert len(calls) == 1

@pytest.mark.asyncio
async def test_token_reused_until_margin():
    clock = Clock()
    refresh, calls = make_refresher(["t1", "t2"], ttl=120.0)
    cache = CredentialCache(refresh, margin=60.0, clock=clock)
    assert await cache.get_token() == "t1"
    clock.now += 59
    assert await cache.get_token() == "t1"
    clock.now += 1
    assert await cache.get_token() == "t2"
    assert len(calls) == 2

@pytest.mark.asyncio
async def test_invalidate_forces_refresh():
    refresh, calls = make_refresher(["t1", "t2"])
    cache = CredentialCache(refresh)
    assert await cache.get_token() == "t1"
    cache.invalidate()
    assert cache.entry is None
    assert await cache.get_token() == "t2"

@pytest.mark.asyncio
async def test_failed_refresh_reaches_every_waiter_and_is_retried():
    attempts = []
    async def refresh():
        attempts.append(1)
        await asyncio.sleep(0.01)
        if len(attempts) == 1:
            raise TransportError("token endpoint down")
        return "t-ok", 3600.0
    cache = CredentialCache(refresh)
    results = await asyncio.gather(*[cache.get_token() for _ in range(5)], return_exceptions=True)
    assert all(isinstance(r, TransportError) for r in results)
    assert cache.entry is None
    assert await cache.get_token() == "t-ok"
    assert len(attempts) == 2

@pytest.mark.asyncio
async def test_empty_token_is_auth_error():
    async def refresh():
        return "", 3600.0
    cache = CredentialCache(refresh)
    with pytest.raises(AuthError):
        await cache.get_token()

@pytest.mark.asyncio
async def test_unexpected_refresh_error_wrapped():
    async def refresh():
        raise KeyError("access_token")
    cache = CredentialCache(refresh)
    with pytest.raises(AuthError):
        await cache.get_token()
