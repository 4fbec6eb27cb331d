# settlement_system/services/futures_service.py
"""
Manual futures orders: the stake leaves the wallet on open and returns with
PnL on close.
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from config import error_result
from models import TimedOrder, OrderStatus, LedgerKind
from settlement_system.config.programs import SIGNAL_DIRECTIONS
from settlement_system.services.ledger_service import LedgerService, InsufficientBalance
from settlement_system.utils.money import money
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


def _positive(value) -> Optional[Decimal]:
    try:
        value = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


class FuturesService:
    """Service for manual (non-signal) futures orders."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)

    async def openOrder(
            self,
            userId: int,
            pair: str,
            direction: str,
            amount,
            leverage: int = 1,
            entryPrice=None
    ) -> Dict:
        """Debit the stake and open an ACTIVE order, balance checked in the same transaction."""
        stake = _positive(amount)
        if stake is None:
            return error_result("invalid_amount")
        stake = money(stake)
        if stake <= 0:
            return error_result("invalid_amount")

        direction = (direction or "").strip().upper()
        if direction not in SIGNAL_DIRECTIONS:
            return error_result("invalid_direction")

        if not pair:
            return error_result("invalid_pair")

        price = _positive(entryPrice)
        if price is None:
            return error_result("missing_fields")

        if not isinstance(leverage, int) or leverage < 1:
            return error_result("invalid_amount")

        try:
            await self.ledger.debit(
                userId,
                LedgerKind.FUTURES_ENTRY,
                stake,
                f"Futures entry {pair} {direction} x{leverage}"
            )

            order = TimedOrder(
                userID=userId,
                signalID=None,
                pair=pair,
                direction=direction,
                status=OrderStatus.ACTIVE,
                amount=stake,
                leverage=leverage,
                entryPrice=price,
                pnl=Decimal("0"),
                createdAt=timeMachine.now
            )
            self.session.add(order)
            self.session.commit()

        except InsufficientBalance as e:
            self.session.rollback()
            logger.warning(f"Futures order refused for user {userId}: {e}")
            return error_result("insufficient_balance", balance=e.balance)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error opening futures order for user {userId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"Futures order {order.orderID} opened for user {userId}: {pair} {direction} {stake} x{leverage}")

        return {
            "success": True,
            "orderId": order.orderID,
            "amount": stake,
            "leverage": leverage
        }

    async def closeOrder(self, orderId: int, userId: int, exitPrice, reason: str = "MANUAL") -> Dict:
        """
        Close at exitPrice: pnl = amount x leverage x (exit - entry) / entry,
        sign inverted for PUT. The payout (amount + pnl) is credited when positive.
        """
        price = _positive(exitPrice)
        if price is None:
            return error_result("missing_fields")

        order = self.session.query(TimedOrder).filter_by(orderID=orderId, userID=userId).first()
        if not order:
            return error_result("order_not_found")

        if order.signalID is not None:
            return error_result("invalid_state", detail="signal orders settle through the signal engine")

        if order.status != OrderStatus.ACTIVE:
            return error_result("order_closed")

        entry = Decimal(order.entryPrice)
        amount = Decimal(order.amount)
        move = (price - entry) / entry
        if order.direction == "PUT":
            move = -move

        pnl = money(amount * order.leverage * move)
        payout = money(amount + pnl)

        try:
            closed = self.session.query(TimedOrder).filter(
                TimedOrder.orderID == orderId,
                TimedOrder.status == OrderStatus.ACTIVE
            ).update({
                "status": OrderStatus.WIN if pnl >= 0 else OrderStatus.LOSS,
                "exitPrice": price,
                "pnl": pnl,
                "closeReason": reason,
                "closedAt": timeMachine.now
            }, synchronize_session=False)

            if closed == 0:
                self.session.rollback()
                return error_result("order_closed")

            if payout > 0:
                await self.ledger.credit(
                    userId,
                    LedgerKind.FUTURES_PAYOUT,
                    payout,
                    f"Futures close {order.pair} {order.direction} ({reason})"
                )

            self.session.commit()
            self.session.expire(order)

        except Exception as e:
            self.session.rollback()
            logger.error(f"Error closing futures order {orderId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"Futures order {orderId} closed: pnl {pnl}, payout {max(payout, Decimal('0'))}")

        return {
            "success": True,
            "orderId": orderId,
            "status": order.status,
            "pnl": pnl,
            "payout": max(payout, Decimal("0"))
        }
