"""
Tests for the ledger store: signed entries, derived balances, bonus reset
"""

import pytest
from decimal import Decimal

from models import LedgerEntry, LedgerKind
from settlement_system.services.ledger_service import LedgerService, InsufficientBalance


@pytest.mark.asyncio
async def test_balance_is_sum_of_entries(db_session, make_user):
    """Test credits and debits aggregate into the balance"""
    user = make_user()
    ledger = LedgerService(db_session)

    await ledger.credit(user.userID, LedgerKind.INVESTMENT_CREDIT, Decimal("300"), "Investment")
    await ledger.credit(user.userID, LedgerKind.REFERRAL_BONUS, Decimal("25.50"), "Bonus")
    await ledger.credit(user.userID, LedgerKind.MANUAL_ADJUSTMENT, Decimal("-0.50"), "Fix")
    db_session.commit()

    assert await ledger.balance(user.userID) == Decimal("325.00")


@pytest.mark.asyncio
async def test_balance_of_unknown_user_is_zero(db_session):
    """Test a user without entries has zero balance"""
    assert await LedgerService(db_session).balance(9999) == Decimal("0.00")


@pytest.mark.asyncio
async def test_amounts_rounded_half_up(db_session, make_user):
    """Test monetary amounts are stored with two decimals, half up"""
    user = make_user()
    ledger = LedgerService(db_session)

    entry = await ledger.credit(user.userID, LedgerKind.SIGNAL_PROFIT, Decimal("0.125"), "Profit")
    db_session.commit()

    assert entry.amount == Decimal("0.13")


@pytest.mark.asyncio
async def test_unknown_kind_rejected(db_session, make_user):
    """Test the kind set is closed"""
    user = make_user()

    with pytest.raises(ValueError):
        await LedgerService(db_session).credit(user.userID, "PIONEER_BONUS", Decimal("1"), "x")


@pytest.mark.asyncio
async def test_credit_allows_negative_balance(db_session, make_user):
    """Test the store itself does not enforce non-negative balances"""
    user = make_user()
    ledger = LedgerService(db_session)

    await ledger.credit(user.userID, LedgerKind.MANUAL_ADJUSTMENT, Decimal("-10"), "Correction")
    db_session.commit()

    assert await ledger.balance(user.userID) == Decimal("-10.00")


@pytest.mark.asyncio
async def test_debit_checks_balance(db_session, make_user):
    """Test debit refuses to overdraw"""
    user = make_user()
    ledger = LedgerService(db_session)
    await ledger.credit(user.userID, LedgerKind.INVESTMENT_CREDIT, Decimal("50"), "Investment")

    with pytest.raises(InsufficientBalance) as exc:
        await ledger.debit(user.userID, LedgerKind.WITHDRAW_REQUEST, Decimal("50.01"), "Too much")

    assert exc.value.balance == Decimal("50.00")

    entry = await ledger.debit(user.userID, LedgerKind.WITHDRAW_REQUEST, Decimal("20"), "Withdrawal")
    db_session.commit()

    assert entry.amount == Decimal("-20.00")
    assert await ledger.balance(user.userID) == Decimal("30.00")


@pytest.mark.asyncio
async def test_replay_matches_aggregate(db_session, make_user):
    """Test replaying the log from zero gives the aggregated balance"""
    user = make_user()
    ledger = LedgerService(db_session)

    for amount in ["0.10", "0.20", "12.34", "-3.33", "100", "0.01"]:
        await ledger.credit(user.userID, LedgerKind.MANUAL_ADJUSTMENT, Decimal(amount), "Entry")
    db_session.commit()

    result = await ledger.reconcile(user.userID)

    assert result["consistent"] is True
    assert result["balance"] == Decimal("109.32")
    assert result["replayed"] == Decimal("109.32")


@pytest.mark.asyncio
async def test_wipe_bonuses_writes_offsets(db_session, make_user):
    """Test the bonus reset appends reversals and never deletes entries"""
    user = make_user()
    ledger = LedgerService(db_session)

    await ledger.credit(user.userID, LedgerKind.REFERRAL_BONUS, Decimal("40"), "Bonus")
    await ledger.credit(user.userID, LedgerKind.REFERRAL_BONUS, Decimal("2.25"), "Bonus")
    await ledger.credit(user.userID, LedgerKind.RETURN_BONUS, Decimal("10"), "Return")
    await ledger.credit(user.userID, LedgerKind.SIGNAL_PROFIT, Decimal("4"), "Profit")

    result = await ledger.wipeBonuses(user.userID, "test")
    db_session.commit()

    assert result["totalReversed"] == Decimal("52.25")
    byKind = await ledger.balanceByKind(user.userID)
    assert byKind[LedgerKind.REFERRAL_BONUS] == Decimal("0.00")
    assert byKind[LedgerKind.RETURN_BONUS] == Decimal("0.00")
    assert byKind[LedgerKind.SIGNAL_PROFIT] == Decimal("4.00")

    assert db_session.query(LedgerEntry).filter_by(userID=user.userID).count() == 6


@pytest.mark.asyncio
async def test_wipe_without_bonuses_is_noop(db_session, make_user):
    """Test nothing is written when there is nothing to reset"""
    user = make_user()
    ledger = LedgerService(db_session)

    result = await ledger.wipeBonuses(user.userID, "test")

    assert result["reversed"] == []
    assert db_session.query(LedgerEntry).count() == 0
