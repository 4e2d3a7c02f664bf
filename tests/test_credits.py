"""
Credit Ledger Tests
"""

import pytest

from app.models.user import UserAccount
from app.services.quota.credits import CreditLedger


@pytest.fixture
def ledger(hot_cache, session_factory, clock):
    return CreditLedger(hot_cache, session_factory, max_balance=3, regen_seconds=3600, clock=clock)


@pytest.mark.asyncio
async def test_new_identity_has_full_balance(ledger):
    balance = await ledger.get_balance("client-1")

    assert balance.balance == 3
    assert balance.max_balance == 3
    assert balance.next_regen_at is None


@pytest.mark.asyncio
async def test_debits_until_empty(ledger, clock):
    results = [await ledger.debit("client-1") for _ in range(3)]
    assert all(r.success for r in results)
    assert [r.balance for r in results] == [2, 1, 0]
    assert results[-1].next_regen_at == int((clock() + 1200) * 1000)

    refused = await ledger.debit("client-1")
    assert not refused.success
    assert refused.balance == 0
    assert (await ledger.get_balance("client-1")).balance == 0


@pytest.mark.asyncio
async def test_one_diamond_regenerates_per_interval(ledger, clock):
    for _ in range(3):
        await ledger.debit("client-1")

    clock.advance(1200)
    assert (await ledger.get_balance("client-1")).balance == 1

    clock.advance(2400)
    balance = await ledger.get_balance("client-1")
    assert balance.balance == 3
    assert balance.next_regen_at is None


@pytest.mark.asyncio
async def test_partial_interval_reports_next_regen_time(ledger, clock):
    for _ in range(3):
        await ledger.debit("client-1")

    clock.advance(600)
    balance = await ledger.get_balance("client-1")

    assert balance.balance == 0
    assert balance.next_regen_at == int((clock() + 600) * 1000)


def test_recompute_caps_at_max(ledger):
    assert ledger.recompute(None, None, 100.0) == (3, None)
    assert ledger.recompute(1, 0.0, 100_000.0) == (3, None)
    assert ledger.recompute(0, 0.0, 1300.0) == (1, 2400.0)


@pytest.mark.asyncio
async def test_anonymous_state_lives_in_hot_cache(ledger, redis_client):
    await ledger.debit("client-1")

    assert await redis_client.get("diamonds:client-1") is not None
    assert await redis_client.ttl("diamonds:client-1") > 0


@pytest.mark.asyncio
async def test_authenticated_balance_lives_on_account_row(ledger, session_factory, clock):
    await ledger.debit("user-1", authenticated=True)
    await ledger.debit("user-1", authenticated=True)

    async with session_factory() as session:
        account = await session.get(UserAccount, "user-1")
    assert account.diamonds == 1
    assert account.diamonds_updated_at == clock()

    # Anonymous and authenticated balances are separate
    assert (await ledger.get_balance("user-1")).balance == 3
    assert (await ledger.get_balance("user-1", authenticated=True)).balance == 1


@pytest.mark.asyncio
async def test_malformed_state_counts_as_full(ledger, redis_client):
    await redis_client.set("diamonds:client-1", '{"diamonds": "lots"}')

    assert (await ledger.get_balance("client-1")).balance == 3


@pytest.mark.asyncio
async def test_unreachable_cache_fails_open(broken_cache, session_factory, clock):
    ledger = CreditLedger(broken_cache, session_factory, clock=clock)

    assert (await ledger.get_balance("client-1")).balance == 3
    assert (await ledger.debit("client-1")).success
