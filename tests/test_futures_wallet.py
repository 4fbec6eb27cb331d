"""
Tests for manual futures orders, withdrawals and the wallet summary
"""

import pytest
from decimal import Decimal

from models import LedgerKind
from settlement_system.services.futures_service import FuturesService
from settlement_system.services.wallet_service import WalletService
from settlement_system.services.ledger_service import LedgerService
from settlement_system.services.activation_service import ActivationService
from factories import tx_hash


@pytest.fixture
def funded_user(db_session, make_user):
    """
    Builds users holding a manual credit (100.00 unless told otherwise)
    """

    async def _make(amount="100"):
        user = make_user()
        await LedgerService(db_session).credit(user.userID, LedgerKind.MANUAL_ADJUSTMENT, Decimal(amount), "Seed")
        db_session.commit()
        return user

    return _make


# ============================================================================
# FUTURES
# ============================================================================


@pytest.mark.asyncio
async def test_open_order_requires_balance(db_session, funded_user):
    """Test the stake cannot exceed the balance"""
    user = await funded_user()

    result = await FuturesService(db_session).openOrder(user.userID, "BTCUSDT", "CALL", "150", entryPrice="100")

    assert result["error"] == "insufficient_balance"
    assert result["balance"] == Decimal("100.00")
    assert await LedgerService(db_session).balance(user.userID) == Decimal("100.00")


@pytest.mark.asyncio
async def test_call_win(db_session, funded_user):
    """Test a leveraged CALL pays stake plus profit"""
    user = await funded_user()
    service = FuturesService(db_session)

    opened = await service.openOrder(user.userID, "BTCUSDT", "call", "50", leverage=2, entryPrice="100")
    assert await LedgerService(db_session).balance(user.userID) == Decimal("50.00")

    closed = await service.closeOrder(opened["orderId"], user.userID, "110")

    assert closed["status"] == "WIN"
    assert closed["pnl"] == Decimal("10.00")
    assert closed["payout"] == Decimal("60.00")
    assert await LedgerService(db_session).balance(user.userID) == Decimal("110.00")


@pytest.mark.asyncio
async def test_put_loss(db_session, funded_user):
    """Test a PUT loses when the price rises"""
    user = await funded_user()
    service = FuturesService(db_session)

    opened = await service.openOrder(user.userID, "BTCUSDT", "PUT", "50", leverage=2, entryPrice="100")
    closed = await service.closeOrder(opened["orderId"], user.userID, "110")

    assert closed["status"] == "LOSS"
    assert closed["pnl"] == Decimal("-10.00")
    assert closed["payout"] == Decimal("40.00")
    assert await LedgerService(db_session).balance(user.userID) == Decimal("90.00")


@pytest.mark.asyncio
async def test_liquidation_pays_nothing(db_session, funded_user):
    """Test a loss beyond the stake credits nothing"""
    user = await funded_user()
    service = FuturesService(db_session)

    opened = await service.openOrder(user.userID, "BTCUSDT", "CALL", "50", leverage=2, entryPrice="100")
    closed = await service.closeOrder(opened["orderId"], user.userID, "40")

    assert closed["status"] == "LOSS"
    assert closed["payout"] == Decimal("0")
    assert await LedgerService(db_session).balance(user.userID) == Decimal("50.00")


@pytest.mark.asyncio
async def test_double_close(db_session, funded_user):
    """Test an order pays out once"""
    user = await funded_user()
    service = FuturesService(db_session)

    opened = await service.openOrder(user.userID, "BTCUSDT", "CALL", "50", entryPrice="100")
    await service.closeOrder(opened["orderId"], user.userID, "100")
    again = await service.closeOrder(opened["orderId"], user.userID, "100")

    assert again["error"] == "order_closed"
    payouts = await LedgerService(db_session).entries(user.userID, kinds=[LedgerKind.FUTURES_PAYOUT])
    assert len(payouts) == 1


@pytest.mark.asyncio
async def test_open_order_validation(db_session, funded_user):
    """Test malformed orders never touch the ledger"""
    user = await funded_user()
    service = FuturesService(db_session)

    assert (await service.openOrder(user.userID, "BTCUSDT", "CALL", "-5", entryPrice="100"))["error"] == "invalid_amount"
    assert (await service.openOrder(user.userID, "BTCUSDT", "UP", "5", entryPrice="100"))["error"] == "invalid_direction"
    assert (await service.openOrder(user.userID, "", "CALL", "5", entryPrice="100"))["error"] == "invalid_pair"
    assert (await service.openOrder(user.userID, "BTCUSDT", "CALL", "5"))["error"] == "missing_fields"
    assert await LedgerService(db_session).balance(user.userID) == Decimal("100.00")


# ============================================================================
# WALLET
# ============================================================================


@pytest.mark.asyncio
async def test_withdrawal_requires_active_subscription(db_session, funded_user):
    """Test withdrawals need an active subscription"""
    user = await funded_user()

    result = await WalletService(db_session).requestWithdrawal(user.userID, "10")

    assert result["error"] == "no_active_subscription"


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0.5", "1.005", "abc", "0"])
async def test_withdrawal_invalid_amount(db_session, funded_user, make_active, amount):
    """Test amounts below the minimum or with sub-cent precision"""
    user = await funded_user()
    make_active(user, 3)

    result = await WalletService(db_session).requestWithdrawal(user.userID, amount)

    assert result["error"] == "invalid_amount"


@pytest.mark.asyncio
async def test_withdrawal_needs_doubled_investment(db_session, make_user, tiers, verifier):
    """Test invested users withdraw only once the balance is twice the investment"""
    user = make_user()
    activation = await ActivationService(db_session, verifier).submitDeposit(user.userID, tiers[3].tierID, tx_hash(900))
    assert activation["outcome"] == "ACTIVATED"

    wallet = WalletService(db_session)
    refused = await wallet.requestWithdrawal(user.userID, "10")

    assert refused["error"] == "investment_not_doubled"
    assert refused["balance"] == Decimal("325.50")
    assert refused["target"] == Decimal("600.00")
    assert refused["needed"] == Decimal("274.50")

    await wallet.adjustBalance(user.userID, "274.50", "Promo", adminId=1)
    accepted = await wallet.requestWithdrawal(user.userID, "10")

    assert accepted["success"] is True
    assert accepted["balance"] == Decimal("590.00")


@pytest.mark.asyncio
async def test_withdrawal_over_balance(db_session, funded_user, make_active):
    """Test a request above the balance is refused"""
    user = await funded_user()
    make_active(user, 3)

    result = await WalletService(db_session).requestWithdrawal(user.userID, "100.01")

    assert result["error"] == "insufficient_balance"


@pytest.mark.asyncio
async def test_summary(db_session, funded_user, make_active):
    """Test the summary aggregates the ledger by kind"""
    user = await funded_user()
    make_active(user, 4, running_capital="612.50")
    await WalletService(db_session).requestWithdrawal(user.userID, "25")

    summary = await WalletService(db_session).getSummary(user.userID)

    assert summary["balance"] == Decimal("75.00")
    assert summary["byKind"] == {
        LedgerKind.MANUAL_ADJUSTMENT: Decimal("100.00"),
        LedgerKind.WITHDRAW_REQUEST: Decimal("-25.00"),
    }
    assert summary["totalInvested"] == Decimal("0.00")
    assert summary["runningCapital"] == Decimal("612.50")
