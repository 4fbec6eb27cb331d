# settlement_system/services/wallet_service.py
"""
Wallet operations on top of the ledger: withdrawal requests, admin
adjustments and balance summaries.
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from config import error_result
from models import User, Subscription, SubscriptionStatus, LedgerEntry, LedgerKind
from settlement_system.config.programs import MIN_WITHDRAWAL, INVESTMENT_MULTIPLIER_FOR_WITHDRAWAL
from settlement_system.services.ledger_service import LedgerService, InsufficientBalance
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.utils.money import money, hasAtMostCents

logger = logging.getLogger(__name__)


class WalletService:
    """Service for user-facing wallet operations."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)

    def _totalInvested(self, userId: int) -> Decimal:
        total = self.session.query(
            func.coalesce(func.sum(LedgerEntry.amount), 0)
        ).filter(
            LedgerEntry.userID == userId,
            LedgerEntry.kind == LedgerKind.INVESTMENT_CREDIT
        ).scalar()
        return money(total)

    def _activeSubscription(self, userId: int) -> Optional[Subscription]:
        return self.session.query(Subscription).filter(
            Subscription.userID == userId,
            Subscription.status == SubscriptionStatus.ACTIVE
        ).first()

    async def requestWithdrawal(self, userId: int, amount) -> Dict:
        """
        Debit a withdrawal request. Requires an active subscription and,
        once anything was invested, a balance of twice the total investment.
        """
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            return error_result("invalid_amount")

        if not amount.is_finite() or amount < MIN_WITHDRAWAL or not hasAtMostCents(amount):
            return error_result("invalid_amount")

        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        if not self._activeSubscription(userId):
            return error_result("no_active_subscription")

        try:
            balance = await self.ledger.balance(userId)
            if amount > balance:
                return error_result("insufficient_balance", balance=balance)

            totalInvested = self._totalInvested(userId)
            if totalInvested > 0:
                target = money(totalInvested * INVESTMENT_MULTIPLIER_FOR_WITHDRAWAL)
                if balance < target:
                    logger.warning(f"Withdrawal of user {userId} refused: balance {balance} below {target}")
                    return error_result(
                        "investment_not_doubled",
                        balance=balance,
                        target=target,
                        needed=money(target - balance)
                    )

            entry = await self.ledger.debit(
                userId,
                LedgerKind.WITHDRAW_REQUEST,
                amount,
                f"Withdrawal request {money(amount)}"
            )
            self.session.commit()

        except InsufficientBalance as e:
            self.session.rollback()
            return error_result("insufficient_balance", balance=e.balance)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error requesting withdrawal for user {userId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"Withdrawal of {money(amount)} requested by user {userId}")

        await eventBus.emit(SettlementEvents.WITHDRAWAL_REQUESTED, {
            "userId": userId,
            "amount": money(amount),
            "entryId": entry.entryID
        })

        return {
            "success": True,
            "entryId": entry.entryID,
            "amount": money(amount),
            "balance": await self.ledger.balance(userId)
        }

    async def adjustBalance(self, userId: int, amount, description: str, adminId: Optional[int] = None) -> Dict:
        """Manual signed adjustment by an admin."""
        try:
            amount = money(Decimal(str(amount)))
        except (InvalidOperation, ValueError, TypeError):
            return error_result("invalid_amount")

        if amount == 0:
            return error_result("invalid_amount")

        if not description:
            return error_result("missing_fields")

        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        try:
            entry = await self.ledger.credit(
                userId,
                LedgerKind.MANUAL_ADJUSTMENT,
                amount,
                f"{description} (admin {adminId})"
            )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error adjusting balance of user {userId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"Admin {adminId} adjusted balance of user {userId} by {amount}")
        return {"success": True, "entryId": entry.entryID, "amount": amount}

    async def getSummary(self, userId: int) -> Dict:
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        subscription = self._activeSubscription(userId)
        totalInvested = self._totalInvested(userId)

        return {
            "success": True,
            "userId": userId,
            "rank": user.rank or 0,
            "balance": await self.ledger.balance(userId),
            "byKind": await self.ledger.balanceByKind(userId),
            "totalInvested": totalInvested,
            "withdrawalTarget": money(totalInvested * INVESTMENT_MULTIPLIER_FOR_WITHDRAWAL),
            "runningCapital": money(subscription.runningCapital) if subscription else Decimal("0.00"),
            "activeTierId": subscription.tierID if subscription else None
        }
