"""
Tests for referral commission distribution
"""

import pytest
from decimal import Decimal

from models import LedgerEntry, LedgerKind
from settlement_system.services.commission_service import CommissionService
from settlement_system.services.ledger_service import LedgerService


# ============================================================================
# HELPERS
# ============================================================================


@pytest.fixture
def chain(make_user):
    """
    root -> s3 -> s2 -> s1 -> {a, b, c}
    """
    root = make_user("root")
    s3 = make_user("s3", sponsor=root)
    s2 = make_user("s2", sponsor=s3)
    s1 = make_user("s1", sponsor=s2)
    a = make_user("a", sponsor=s1)
    b = make_user("b", sponsor=s1)
    c = make_user("c", sponsor=s1)
    return {"root": root, "s3": s3, "s2": s2, "s1": s1, "a": a, "b": b, "c": c}


async def balances(session, users):
    ledger = LedgerService(session)
    return {name: await ledger.balance(user.userID) for name, user in users.items()}


# ============================================================================
# DISTRIBUTION
# ============================================================================


@pytest.mark.asyncio
async def test_three_levels_and_shared_pool(db_session, chain):
    """Test 8.5% + shared 1.5%, then 3% and 2%, nothing above level 3"""
    result = await CommissionService(db_session).distribute(chain["a"].userID, Decimal("300"))
    db_session.commit()

    result_balances = await balances(db_session, chain)

    assert result_balances["s1"] == Decimal("25.50")
    assert result_balances["a"] == Decimal("1.50")
    assert result_balances["b"] == Decimal("1.50")
    assert result_balances["c"] == Decimal("1.50")
    assert result_balances["s2"] == Decimal("9.00")
    assert result_balances["s3"] == Decimal("6.00")
    assert result_balances["root"] == Decimal("0.00")

    assert result["totalDistributed"] == Decimal("45.00")
    assert all(entry.kind == LedgerKind.REFERRAL_BONUS for entry in db_session.query(LedgerEntry).all())


@pytest.mark.asyncio
async def test_descriptions_encode_level_and_percentage(db_session, chain):
    """Test every payout says which level and rate produced it"""
    await CommissionService(db_session).distribute(chain["a"].userID, Decimal("300"))
    db_session.commit()

    descriptions = {
        entry.userID: entry.description
        for entry in db_session.query(LedgerEntry).all()
    }

    assert descriptions[chain["s1"].userID] == "Bonus sponsor level 1 (8.5% direct)"
    assert descriptions[chain["b"].userID] == "Bonus shared level 1 (1.5% / 3 direct referrals)"
    assert descriptions[chain["s2"].userID] == "Bonus sponsor level 2 (3%)"
    assert descriptions[chain["s3"].userID] == "Bonus sponsor level 3 (2%)"


@pytest.mark.asyncio
async def test_missing_sponsors_end_walk(db_session, make_user):
    """Test a short chain pays what exists and stops silently"""
    sponsor = make_user("sponsor")
    user = make_user("user", sponsor=sponsor)

    result = await CommissionService(db_session).distribute(user.userID, Decimal("150"))
    db_session.commit()

    ledger = LedgerService(db_session)
    assert await ledger.balance(sponsor.userID) == Decimal("12.75")
    assert await ledger.balance(user.userID) == Decimal("2.25")
    assert len(result["commissions"]) == 2


@pytest.mark.asyncio
async def test_root_user_pays_nothing(db_session, make_user):
    """Test no sponsor means no payout"""
    user = make_user()

    result = await CommissionService(db_session).distribute(user.userID, Decimal("300"))

    assert result["commissions"] == []
    assert db_session.query(LedgerEntry).count() == 0


@pytest.mark.asyncio
async def test_reverse_offsets_distribution(db_session, chain):
    """Test the -1 multiplier cancels every payout"""
    service = CommissionService(db_session)
    await service.distribute(chain["a"].userID, Decimal("300"))
    reversal = await service.reverse(chain["a"].userID, Decimal("300"))
    db_session.commit()

    assert reversal["totalDistributed"] == Decimal("-45.00")
    assert all(value == Decimal("0.00") for value in (await balances(db_session, chain)).values())

    reversals = db_session.query(LedgerEntry).filter(LedgerEntry.amount < 0).all()
    assert all(entry.description.startswith("Reversal") for entry in reversals)


@pytest.mark.asyncio
async def test_cycle_in_tree_terminates(db_session, make_user):
    """Test corrupted data with a sponsor cycle cannot loop forever"""
    a = make_user("a")
    b = make_user("b", sponsor=a)
    a.sponsorID = b.userID
    db_session.commit()

    await CommissionService(db_session).distribute(a.userID, Decimal("300"))
    db_session.commit()

    ledger = LedgerService(db_session)
    assert await ledger.balance(b.userID) == Decimal("25.50")
    assert await ledger.balance(a.userID) == Decimal("4.50")


@pytest.mark.asyncio
async def test_return_bonus(db_session, make_user):
    """Test the flat 8.5% return bonus"""
    user = make_user()

    result = await CommissionService(db_session).creditReturnBonus(user.userID, Decimal("300"))
    db_session.commit()

    assert result["amount"] == Decimal("25.50")
    entry = db_session.query(LedgerEntry).one()
    assert entry.kind == LedgerKind.RETURN_BONUS
