# settlement_system/services/signal_service.py
"""
Signal settlement engine.

Joining a signal compounds the participant's running capital at once; the
ledger is only credited when the paired order resolves, either at the
15 minute horizon or by an early manual close.
"""
import re
from decimal import Decimal
from typing import List, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from config import error_result
from models import (
    Signal, SignalParticipation, SignalStatus, TimedOrder, OrderStatus,
    Subscription, SubscriptionStatus, User, LedgerKind
)
from settlement_system.config.programs import (
    SIGNAL_GAIN_PERCENTAGE, SIGNAL_PARTICIPANT_SHARE, SIGNAL_POOL_SHARE,
    SIGNAL_JOIN_WINDOW, SIGNAL_HORIZON, SIGNAL_DIRECTIONS
)
from settlement_system.services.ledger_service import LedgerService
from settlement_system.services.network_service import NetworkService
from settlement_system.services.rank_service import RankService
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.utils.money import money
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

SIGNAL_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,32}$")

CLOSE_REASON_COMPLETE = "SIGNAL_COMPLETE"
CLOSE_REASON_FORCED = "FORCED"
CLOSE_REASON_EARLY = "MANUAL_EARLY"


def _cleanCode(code) -> Optional[str]:
    if not code or not isinstance(code, str):
        return None
    return code.strip().upper()


class SignalService:
    """Service for publishing, joining and settling signals."""

    def __init__(self, session: Session, rankConfig: Optional[Dict] = None):
        self.session = session
        self.ledger = LedgerService(session)
        self.network = NetworkService(session)
        self.ranks = RankService(session, rankConfig)

    # ---------------------------------------------------------------
    # Signals
    # ---------------------------------------------------------------

    def getActiveSignal(self) -> Optional[Signal]:
        return self.session.query(Signal).filter(
            Signal.status == SignalStatus.ACTIVE
        ).order_by(Signal.createdAt.desc()).first()

    async def publishSignal(
            self,
            code: str,
            pair: str,
            direction: str,
            label: Optional[str] = None,
            adminId: Optional[int] = None
    ) -> Dict:
        """Publish a new signal, closing whichever one is active."""
        code = _cleanCode(code)
        if not code or not pair or not direction:
            return error_result("missing_fields")

        if not SIGNAL_CODE_PATTERN.match(code):
            return error_result("invalid_code")

        pair = pair.strip().upper()
        if not pair:
            return error_result("invalid_pair")

        direction = direction.strip().upper()
        if direction not in SIGNAL_DIRECTIONS:
            return error_result("invalid_direction")

        if self.session.query(Signal).filter_by(code=code).first():
            return error_result("signal_code_used")

        now = timeMachine.now

        try:
            closed = self.session.query(Signal).filter(
                Signal.status == SignalStatus.ACTIVE
            ).update({
                "status": SignalStatus.CLOSED,
                "closedAt": now
            }, synchronize_session=False)

            signal = Signal(
                code=code,
                label=label,
                pair=pair,
                direction=direction,
                status=SignalStatus.ACTIVE,
                createdAt=now
            )
            self.session.add(signal)
            self.session.commit()

        except IntegrityError:
            self.session.rollback()
            return error_result("signal_code_used")
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error publishing signal {code}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(
            f"Signal {signal.signalID} ({code}) published by admin {adminId}: "
            f"{pair} {direction}, {closed} previous closed"
        )

        await eventBus.emit(SettlementEvents.SIGNAL_PUBLISHED, {
            "signalId": signal.signalID,
            "code": code,
            "pair": pair,
            "direction": direction
        })

        return {
            "success": True,
            "signalId": signal.signalID,
            "code": code,
            "joinDeadline": signal.createdAt + SIGNAL_JOIN_WINDOW,
            "autoCloseAt": signal.createdAt + SIGNAL_HORIZON
        }

    async def closeSignal(self, signalId: int) -> Dict:
        """Stop accepting joins. Open orders still resolve at their horizon."""
        signal = self.session.query(Signal).filter_by(signalID=signalId).first()
        if not signal:
            return error_result("signal_not_found")

        updated = self.session.query(Signal).filter(
            Signal.signalID == signalId,
            Signal.status == SignalStatus.ACTIVE
        ).update({
            "status": SignalStatus.CLOSED,
            "closedAt": timeMachine.now
        }, synchronize_session=False)
        self.session.commit()

        if updated:
            logger.info(f"Signal {signalId} closed")

        return {"success": True, "signalId": signalId, "closed": bool(updated)}

    async def listParticipations(self, signalId: int) -> List[SignalParticipation]:
        return self.session.query(SignalParticipation).filter(
            SignalParticipation.signalID == signalId
        ).order_by(SignalParticipation.participationID).all()

    # ---------------------------------------------------------------
    # Join
    # ---------------------------------------------------------------

    async def joinSignal(self, userId: int, code: str) -> Dict:
        """
        Join the active signal with the given code.
        gain = 1% of running capital, 40% compounds for the participant,
        60% is pooled for ranked ancestors.
        """
        code = _cleanCode(code)
        if not code:
            return error_result("missing_fields")

        signal = self.session.query(Signal).filter(
            Signal.code == code,
            Signal.status == SignalStatus.ACTIVE
        ).first()
        if not signal:
            return error_result("signal_not_found")

        now = timeMachine.now
        if now >= signal.createdAt + SIGNAL_JOIN_WINDOW:
            return error_result("signal_expired")

        existing = self.session.query(SignalParticipation).filter_by(
            signalID=signal.signalID,
            userID=userId
        ).first()
        if existing:
            return error_result("already_joined")

        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        subscription = self.session.query(Subscription).filter(
            Subscription.userID == userId,
            Subscription.status == SubscriptionStatus.ACTIVE
        ).first()
        if not subscription:
            return error_result("no_active_subscription")

        capital = subscription.runningCapital
        if capital is None:
            capital = subscription.tier.investmentAmount
        capitalBefore = money(capital)
        if capitalBefore <= 0:
            return error_result("no_capital")

        gainTotal = money(capitalBefore * SIGNAL_GAIN_PERCENTAGE)
        capitalAdded = money(gainTotal * SIGNAL_PARTICIPANT_SHARE)
        pooledBonus = money(gainTotal * SIGNAL_POOL_SHARE)
        capitalAfter = money(capitalBefore + capitalAdded)
        autoCloseAt = signal.createdAt + SIGNAL_HORIZON

        try:
            participation = SignalParticipation(
                signalID=signal.signalID,
                userID=userId,
                subscriptionID=subscription.subscriptionID,
                capitalBefore=capitalBefore,
                gainTotal=gainTotal,
                capitalAdded=capitalAdded,
                pooledBonus=pooledBonus,
                userRankAtTime=user.rank or 0,
                createdAt=now
            )
            self.session.add(participation)
            self.session.flush()

            # Compounds immediately, credited to the ledger on resolution
            self.session.query(Subscription).filter(
                Subscription.subscriptionID == subscription.subscriptionID
            ).update({"runningCapital": capitalAfter}, synchronize_session=False)

            order = TimedOrder(
                userID=userId,
                signalID=signal.signalID,
                pair=signal.pair,
                direction=signal.direction,
                status=OrderStatus.ACTIVE,
                amount=gainTotal,
                leverage=1,
                entryPrice=gainTotal,
                pnl=capitalAdded,
                autoCloseAt=autoCloseAt,
                createdAt=now
            )
            self.session.add(order)
            self.session.commit()
            self.session.expire(subscription)

        except IntegrityError:
            self.session.rollback()
            logger.warning(f"User {userId} joined signal {signal.signalID} concurrently")
            return error_result("already_joined")
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error joining signal {code} for user {userId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(
            f"User {userId} joined signal {signal.signalID}: capital {capitalBefore} -> {capitalAfter}, "
            f"pooled {pooledBonus}"
        )

        await eventBus.emit(SettlementEvents.SIGNAL_JOINED, {
            "signalId": signal.signalID,
            "userId": userId,
            "orderId": order.orderID,
            "capitalAdded": capitalAdded
        })

        return {
            "success": True,
            "signalId": signal.signalID,
            "orderId": order.orderID,
            "capitalBefore": capitalBefore,
            "capitalAfter": capitalAfter,
            "gainTotal": gainTotal,
            "capitalAdded": capitalAdded,
            "pooledBonus": pooledBonus,
            "userRank": user.rank or 0,
            "autoCloseAt": autoCloseAt
        }

    # ---------------------------------------------------------------
    # Resolution
    # ---------------------------------------------------------------

    def _participationFor(self, order: TimedOrder) -> Optional[SignalParticipation]:
        return self.session.query(SignalParticipation).filter_by(
            signalID=order.signalID,
            userID=order.userID
        ).first()

    async def resolveOrder(self, orderId: int, force: bool = False) -> Dict:
        """
        Settle a signal-linked order at its horizon (or earlier when forced).
        ACTIVE -> WIN is a conditional update; when another actor already
        resolved the order nothing is paid and the call is a no-op.
        """
        order = self.session.query(TimedOrder).filter_by(orderID=orderId).first()
        if not order:
            return error_result("order_not_found")

        if order.signalID is None:
            return error_result("invalid_state", detail="order is not signal-linked")

        if order.status != OrderStatus.ACTIVE:
            return {"success": True, "noop": True, "orderId": orderId, "status": order.status}

        now = timeMachine.now
        if not force and order.autoCloseAt and now < order.autoCloseAt:
            return error_result("invalid_state", detail="horizon not reached")

        participation = self._participationFor(order)
        if not participation:
            return error_result("participation_not_found")

        reason = CLOSE_REASON_FORCED if force else CLOSE_REASON_COMPLETE
        userId = order.userID
        signal = order.signal

        try:
            won = self.session.query(TimedOrder).filter(
                TimedOrder.orderID == orderId,
                TimedOrder.status == OrderStatus.ACTIVE
            ).update({
                "status": OrderStatus.WIN,
                "exitPrice": money(Decimal(participation.capitalBefore) + Decimal(participation.capitalAdded)),
                "pnl": participation.capitalAdded,
                "closeReason": reason,
                "closedAt": now
            }, synchronize_session=False)

            if won == 0:
                self.session.rollback()
                logger.info(f"Order {orderId} already resolved elsewhere, skipping")
                return {"success": True, "noop": True, "orderId": orderId}

            await self.ledger.credit(
                userId,
                LedgerKind.SIGNAL_PROFIT,
                participation.capitalAdded,
                f"Signal {signal.code} profit"
            )

            globalBonuses = await self._distributeGlobalBonus(
                userId, Decimal(participation.pooledBonus), signal.code
            )

            self.session.commit()
            self.session.expire(order)

        except Exception as e:
            self.session.rollback()
            logger.error(f"Error resolving order {orderId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(
            f"Order {orderId} resolved ({reason}): user {userId} +{money(participation.capitalAdded)}, "
            f"{len(globalBonuses)} ancestor bonuses"
        )

        await eventBus.emit(SettlementEvents.SIGNAL_RESOLVED, {
            "orderId": orderId,
            "signalId": order.signalID,
            "userId": userId,
            "reason": reason,
            "globalBonuses": globalBonuses
        })

        return {
            "success": True,
            "orderId": orderId,
            "reason": reason,
            "profit": money(participation.capitalAdded),
            "globalBonuses": globalBonuses
        }

    async def _distributeGlobalBonus(self, userId: int, pooledBonus: Decimal, signalCode: str) -> List[Dict]:
        """Each ranked ancestor receives pooled x rank percentage, not split."""
        payouts = []

        for level, ancestor in self.network.iterUpline(userId):
            rank = ancestor.rank or 0
            if rank <= 0:
                continue

            amount = money(pooledBonus * self.ranks.globalBonusPct(rank) / 100)
            if amount <= 0:
                continue

            await self.ledger.credit(
                ancestor.userID,
                LedgerKind.GLOBAL_BONUS,
                amount,
                f"Global bonus rank {rank} - team signal {signalCode}"
            )
            payouts.append({
                "userId": ancestor.userID,
                "level": level,
                "rank": rank,
                "amount": amount
            })

        return payouts

    async def closeEarly(self, orderId: int, userId: int) -> Dict:
        """
        Participant closes before the horizon: paid pro rata to elapsed time
        since publication, no ancestor distribution. After the horizon this is
        a regular resolution.
        """
        order = self.session.query(TimedOrder).filter_by(orderID=orderId, userID=userId).first()
        if not order:
            return error_result("order_not_found")

        if order.signalID is None:
            return error_result("invalid_state", detail="order is not signal-linked")

        if order.status != OrderStatus.ACTIVE:
            return error_result("order_closed")

        now = timeMachine.now
        if order.autoCloseAt and now >= order.autoCloseAt:
            return await self.resolveOrder(orderId)

        participation = self._participationFor(order)
        if not participation:
            return error_result("participation_not_found")

        signal = order.signal
        elapsed = Decimal(str(max((now - signal.createdAt).total_seconds(), 0)))
        fraction = min(elapsed / Decimal(str(SIGNAL_HORIZON.total_seconds())), Decimal("1"))
        payout = money(Decimal(participation.capitalAdded) * fraction)

        try:
            closed = self.session.query(TimedOrder).filter(
                TimedOrder.orderID == orderId,
                TimedOrder.status == OrderStatus.ACTIVE
            ).update({
                "status": OrderStatus.WIN,
                "exitPrice": money(Decimal(participation.capitalBefore) + payout),
                "pnl": payout,
                "closeReason": CLOSE_REASON_EARLY,
                "closedAt": now
            }, synchronize_session=False)

            if closed == 0:
                self.session.rollback()
                return error_result("order_closed")

            if payout > 0:
                await self.ledger.credit(
                    userId,
                    LedgerKind.SIGNAL_PROFIT,
                    payout,
                    f"Signal {signal.code} profit (early close {fraction * 100:.0f}%)"
                )

            self.session.commit()
            self.session.expire(order)

        except Exception as e:
            self.session.rollback()
            logger.error(f"Error closing order {orderId} early: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"Order {orderId} closed early by user {userId}: paid {payout}")

        await eventBus.emit(SettlementEvents.SIGNAL_RESOLVED, {
            "orderId": orderId,
            "signalId": order.signalID,
            "userId": userId,
            "reason": CLOSE_REASON_EARLY,
            "globalBonuses": []
        })

        return {
            "success": True,
            "orderId": orderId,
            "reason": CLOSE_REASON_EARLY,
            "profit": payout,
            "globalBonuses": []
        }

    async def _resolveExpired(self, query) -> Dict:
        now = timeMachine.now
        orderIds = [
            row[0] for row in query.filter(
                TimedOrder.status == OrderStatus.ACTIVE,
                TimedOrder.signalID.isnot(None),
                TimedOrder.autoCloseAt <= now
            ).order_by(TimedOrder.autoCloseAt, TimedOrder.orderID).all()
        ]

        results = {"found": len(orderIds), "resolved": 0, "skipped": 0, "errors": 0}

        for orderId in orderIds:
            result = await self.resolveOrder(orderId)
            if not result["success"]:
                results["errors"] += 1
            elif result.get("noop"):
                results["skipped"] += 1
            else:
                results["resolved"] += 1

        return results

    async def autoCloseExpired(self) -> Dict:
        """System-wide sweep of signal orders past their horizon."""
        results = await self._resolveExpired(self.session.query(TimedOrder.orderID))

        if results["found"]:
            logger.info(f"Auto-close sweep: {results}")

        return results

    async def resolveUserExpired(self, userId: int) -> Dict:
        """Same sweep limited to one participant."""
        return await self._resolveExpired(
            self.session.query(TimedOrder.orderID).filter(TimedOrder.userID == userId)
        )
