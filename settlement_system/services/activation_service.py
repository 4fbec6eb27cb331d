# settlement_system/services/activation_service.py
"""
Subscription activation state machine.

PENDING -> PENDING_VERIFICATION -> ACTIVE, PENDING/PENDING_VERIFICATION -> REJECTED,
ACTIVE -> CANCELLED when superseded. Every activation is one transaction:
status transitions, investment credit, bonus reset and referral payouts
commit or roll back together.
"""
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy import inspect
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

import config
from config import error_result
from models import Subscription, SubscriptionStatus, Tier, User, LedgerKind
from txid_checker import (
    PaymentVerifier, BscPaymentVerifier, VerificationCode, validate_txid
)
from settlement_system.services.ledger_service import LedgerService
from settlement_system.services.commission_service import CommissionService
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.utils.money import money
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class ActivationService:
    """Service for submitting, verifying and activating subscriptions."""

    def __init__(self, session: Session, verifier: Optional[PaymentVerifier] = None):
        self.session = session
        self.verifier = verifier or BscPaymentVerifier()
        self.ledger = LedgerService(session)
        self.commissions = CommissionService(session)

    # ---------------------------------------------------------------
    # Lookups
    # ---------------------------------------------------------------

    def getActiveSubscription(self, userId: int) -> Optional[Subscription]:
        return self.session.query(Subscription).filter(
            Subscription.userID == userId,
            Subscription.status == SubscriptionStatus.ACTIVE
        ).first()

    def _getSubscription(self, subscriptionId: int) -> Optional[Subscription]:
        return self.session.query(Subscription).filter_by(
            subscriptionID=subscriptionId
        ).first()

    # ---------------------------------------------------------------
    # Deposit submission
    # ---------------------------------------------------------------

    async def submitDeposit(self, userId: int, tierId: int, txProof: str) -> Dict:
        """
        Register a deposit proof for a tier and try to verify it at once.

        The row is written first so the proof is reserved; a positive verdict
        activates it in the same call, a terminal verdict rejects it, anything
        else leaves it PENDING_VERIFICATION for the sweep.
        """
        if not userId or not tierId or not txProof:
            return error_result("missing_fields")

        if not validate_txid(txProof):
            return error_result("invalid_proof_format")

        # Hex hashes are case-insensitive on chain, one spelling per proof
        txProof = txProof.strip().lower()

        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        tier = self.session.query(Tier).filter_by(tierID=tierId).first()
        if not tier:
            return error_result("tier_not_found")
        if not tier.isEnabled:
            return error_result("tier_unavailable")

        if self.session.query(Subscription).filter_by(txProof=txProof).first():
            logger.warning(f"Duplicate proof {txProof} submitted by user {userId}")
            return error_result("duplicate_proof")

        sameTier = self.session.query(Subscription).filter(
            Subscription.userID == userId,
            Subscription.tierID == tierId,
            Subscription.status.in_([
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.PENDING,
                SubscriptionStatus.PENDING_VERIFICATION
            ])
        ).first()
        if sameTier:
            return error_result("subscription_exists")

        current = self.getActiveSubscription(userId)
        if current and current.tier.level >= tier.level:
            return error_result("tier_not_higher")

        isUpgrade = current is not None
        amount = Decimal(tier.investmentAmount)
        if isUpgrade:
            amount = amount - Decimal(current.tier.investmentAmount)
            if amount <= 0:
                return error_result("tier_not_higher")

        subscription = Subscription(
            userID=userId,
            tierID=tierId,
            amountPaid=money(amount),
            status=SubscriptionStatus.PENDING_VERIFICATION,
            isUpgrade=isUpgrade,
            upgradedFromID=current.subscriptionID if isUpgrade else None,
            txProof=txProof
        )

        try:
            self.session.add(subscription)
            self.session.commit()
        except IntegrityError:
            # Another submission reserved the same proof first
            self.session.rollback()
            logger.warning(f"Proof {txProof} already reserved, rejecting submission of user {userId}")
            return error_result("duplicate_proof")

        logger.info(
            f"Subscription {subscription.subscriptionID} submitted by user {userId}: "
            f"tier {tier.level}, amount {subscription.amountPaid}, upgrade={isUpgrade}"
        )

        await eventBus.emit(SettlementEvents.SUBSCRIPTION_SUBMITTED, {
            "subscriptionId": subscription.subscriptionID,
            "userId": userId,
            "tierId": tierId,
            "amount": subscription.amountPaid
        })

        outcome = await self._verifyAndSettle(subscription)
        outcome["subscriptionId"] = subscription.subscriptionID
        return outcome

    async def _verifyAndSettle(self, subscription: Subscription) -> Dict:
        """Run the verifier once and move the subscription accordingly."""
        subscriptionId = subscription.subscriptionID

        verdict = await self.verifier.verify(
            subscription.txProof,
            Decimal(subscription.amountPaid),
            config.BSC_REQUIRED_CONFIRMATIONS
        )

        if verdict.verified:
            result = await self.activate(subscriptionId, confirmations=verdict.confirmations)
            if not result["success"]:
                return dict(result, outcome="ERROR", code=verdict.code.value)
            return dict(result, outcome="ACTIVATED", code=verdict.code.value)

        if verdict.is_terminal:
            result = await self.reject(subscriptionId, reason=verdict.code.value)
            return dict(result, outcome="REJECTED", code=verdict.code.value)

        if verdict.code == VerificationCode.INSUFFICIENT_CONFIRMATIONS:
            self.session.query(Subscription).filter(
                Subscription.subscriptionID == subscriptionId,
                Subscription.status == SubscriptionStatus.PENDING_VERIFICATION
            ).update({"confirmations": verdict.confirmations}, synchronize_session=False)
            self.session.commit()
            self.session.expire(subscription)

            return {
                "success": True,
                "status": SubscriptionStatus.PENDING_VERIFICATION,
                "outcome": "WAITING",
                "code": verdict.code.value,
                "confirmations": verdict.confirmations
            }

        logger.info(f"Subscription {subscriptionId} verification deferred: {verdict.code.value}")
        return {
            "success": True,
            "status": SubscriptionStatus.PENDING_VERIFICATION,
            "outcome": "RETRY",
            "code": verdict.code.value
        }

    async def reverifyPending(self, batchSize: int = None) -> Dict:
        """
        Sweep PENDING_VERIFICATION subscriptions, oldest first.
        One failing subscription never stops the batch.
        """
        batchSize = batchSize or config.VERIFY_BATCH_SIZE

        pending = self.session.query(Subscription).filter(
            Subscription.status == SubscriptionStatus.PENDING_VERIFICATION,
            Subscription.txProof.isnot(None)
        ).order_by(
            Subscription.createdAt, Subscription.subscriptionID
        ).limit(batchSize).all()

        results = {
            "processed": 0,
            "results": [],
            "counts": {"ACTIVATED": 0, "WAITING": 0, "REJECTED": 0, "RETRY": 0, "ERROR": 0}
        }

        for subscription in pending:
            subscriptionId = subscription.subscriptionID
            try:
                outcome = await self._verifyAndSettle(subscription)
                label = outcome["outcome"]
                code = outcome.get("code")
            except Exception as e:
                self.session.rollback()
                logger.error(f"Error re-verifying subscription {subscriptionId}: {e}", exc_info=True)
                label = "ERROR"
                code = None

            results["processed"] += 1
            results["counts"][label] += 1
            results["results"].append({
                "subscriptionId": subscriptionId,
                "outcome": label,
                "code": code
            })

        if pending:
            logger.info(f"Re-verification sweep: {results['counts']}")

        return results

    # ---------------------------------------------------------------
    # Activation
    # ---------------------------------------------------------------

    async def activate(
            self,
            subscriptionId: int,
            confirmations: Optional[int] = None,
            force: bool = False,
            supersede: bool = False
    ) -> Dict:
        """
        Activate a subscription as one atomic unit.

        force: accept any non-ACTIVE state instead of PENDING/PENDING_VERIFICATION.
        supersede: cancel another ACTIVE subscription of the user instead of
        refusing a non-upgrade activation.
        """
        subscription = self._getSubscription(subscriptionId)
        if not subscription:
            return error_result("subscription_not_found")

        if subscription.status == SubscriptionStatus.ACTIVE:
            return self._noop(subscription)

        if not force and subscription.status not in SubscriptionStatus.ACTIVATABLE:
            logger.warning(
                f"Subscription {subscriptionId} cannot be activated from {subscription.status}"
            )
            return error_result("invalid_state", status=subscription.status)

        try:
            result = await self._activate(subscription, confirmations, force, supersede)
        except IntegrityError:
            # Partial unique index: someone else activated a subscription for this user
            self.session.rollback()
            logger.warning(f"Activation of subscription {subscriptionId} lost a race on the active slot")
            return error_result("active_subscription_exists")
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error activating subscription {subscriptionId}: {e}", exc_info=True)
            return error_result("internal_error")

        if result.get("success") and not result.get("noop"):
            await eventBus.emit(SettlementEvents.SUBSCRIPTION_ACTIVATED, {
                "subscriptionId": subscriptionId,
                "userId": result["userId"],
                "isUpgrade": result["isUpgrade"],
                "amount": result["amountPaid"]
            })
            for commission in result["commissions"]:
                await eventBus.emit(SettlementEvents.COMMISSION_PAID, dict(commission, fromUserId=result["userId"]))
            if result["bonusReset"]["reversed"]:
                await eventBus.emit(SettlementEvents.BONUSES_RESET, result["bonusReset"])

        return result

    async def _activate(
            self,
            subscription: Subscription,
            confirmations: Optional[int],
            force: bool,
            supersede: bool
    ) -> Dict:
        subscriptionId = subscription.subscriptionID
        userId = subscription.userID
        tier = subscription.tier
        now = timeMachine.now

        # 1. Vacate the active slot
        if subscription.isUpgrade:
            previous = self._getSubscription(subscription.upgradedFromID)
            cancelled = self.session.query(Subscription).filter(
                Subscription.subscriptionID == subscription.upgradedFromID,
                Subscription.status == SubscriptionStatus.ACTIVE
            ).update({"status": SubscriptionStatus.CANCELLED}, synchronize_session=False)

            if cancelled == 0:
                logger.warning(
                    f"Upgrade {subscriptionId} refused: source {subscription.upgradedFromID} is no longer active"
                )
                return self._lostRace(subscription)

            runningCapital = money(Decimal(previous.runningCapital or 0) + Decimal(subscription.amountPaid))
        else:
            other = self.session.query(Subscription).filter(
                Subscription.userID == userId,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.subscriptionID != subscriptionId
            ).first()

            if other:
                if not supersede:
                    logger.warning(
                        f"User {userId} already has active subscription {other.subscriptionID}"
                    )
                    return error_result("active_subscription_exists")

                self.session.query(Subscription).filter(
                    Subscription.subscriptionID == other.subscriptionID,
                    Subscription.status == SubscriptionStatus.ACTIVE
                ).update({"status": SubscriptionStatus.CANCELLED}, synchronize_session=False)
                logger.info(f"Subscription {other.subscriptionID} superseded by {subscriptionId}")

            runningCapital = money(tier.investmentAmount)

        # 2. Status-guarded transition to ACTIVE
        query = self.session.query(Subscription).filter(
            Subscription.subscriptionID == subscriptionId
        )
        if force:
            query = query.filter(Subscription.status != SubscriptionStatus.ACTIVE)
        else:
            query = query.filter(Subscription.status.in_(SubscriptionStatus.ACTIVATABLE))

        values = {
            "status": SubscriptionStatus.ACTIVE,
            "activatedAt": now,
            "runningCapital": runningCapital
        }
        if confirmations is not None:
            values["confirmations"] = confirmations

        updated = query.update(values, synchronize_session=False)
        if updated == 0:
            # Another actor won the transition; nothing else may be written
            logger.info(f"Subscription {subscriptionId} transition skipped")
            return self._lostRace(subscription)

        # 3. Entry-level activation resets accumulated bonuses first
        bonusReset = {"userId": userId, "reversed": [], "totalReversed": Decimal("0")}
        if not subscription.isUpgrade and not tier.participatesInReturnBonus:
            bonusReset = await self.ledger.wipeBonuses(
                userId, f"activation of {tier.name}"
            )

        # 4. Investment credit for the amount actually paid
        await self.ledger.credit(
            userId,
            LedgerKind.INVESTMENT_CREDIT,
            subscription.amountPaid,
            f"Investment {tier.name}" + (" (upgrade difference)" if subscription.isUpgrade else "")
        )

        # 5. Bonus programs, never for upgrades
        commissions = []
        returnBonus = None
        if not subscription.isUpgrade:
            if tier.participatesInReferralBonus:
                distribution = await self.commissions.distribute(userId, tier.investmentAmount)
                commissions = distribution["commissions"]
            if tier.participatesInReturnBonus:
                returnBonus = await self.commissions.creditReturnBonus(userId, tier.investmentAmount)

        self.session.commit()
        self.session.refresh(subscription)

        logger.info(
            f"Subscription {subscriptionId} activated for user {userId}: "
            f"tier {tier.level}, paid {subscription.amountPaid}, upgrade={subscription.isUpgrade}, "
            f"{len(commissions)} commissions"
        )

        return {
            "success": True,
            "subscriptionId": subscriptionId,
            "userId": userId,
            "status": subscription.status,
            "isUpgrade": subscription.isUpgrade,
            "amountPaid": money(subscription.amountPaid),
            "runningCapital": money(subscription.runningCapital),
            "commissions": commissions,
            "returnBonus": returnBonus,
            "bonusReset": bonusReset
        }

    def _lostRace(self, subscription: Subscription) -> Dict:
        """Roll back and report the state the subscription really is in."""
        self.session.rollback()

        # Admin paths only flushed the row, the rollback discarded it
        if inspect(subscription).transient:
            return error_result("invalid_state")

        self.session.refresh(subscription)
        if subscription.status == SubscriptionStatus.ACTIVE:
            return self._noop(subscription)
        return error_result("invalid_state", status=subscription.status)

    def _noop(self, subscription: Subscription) -> Dict:
        return {
            "success": True,
            "noop": True,
            "subscriptionId": subscription.subscriptionID,
            "userId": subscription.userID,
            "status": subscription.status
        }

    async def reject(self, subscriptionId: int, reason: str = None) -> Dict:
        """PENDING / PENDING_VERIFICATION -> REJECTED."""
        subscription = self._getSubscription(subscriptionId)
        if not subscription:
            return error_result("subscription_not_found")

        updated = self.session.query(Subscription).filter(
            Subscription.subscriptionID == subscriptionId,
            Subscription.status.in_(SubscriptionStatus.REJECTABLE)
        ).update({
            "status": SubscriptionStatus.REJECTED,
            "notes": reason
        }, synchronize_session=False)
        self.session.commit()
        self.session.refresh(subscription)

        if updated == 0:
            if subscription.status == SubscriptionStatus.REJECTED:
                return self._noop(subscription)
            return error_result("invalid_state", status=subscription.status)

        logger.info(f"Subscription {subscriptionId} rejected: {reason}")

        await eventBus.emit(SettlementEvents.SUBSCRIPTION_REJECTED, {
            "subscriptionId": subscriptionId,
            "userId": subscription.userID,
            "reason": reason
        })

        return {
            "success": True,
            "subscriptionId": subscriptionId,
            "status": subscription.status
        }

    # ---------------------------------------------------------------
    # Admin paths
    # ---------------------------------------------------------------

    async def approve(self, subscriptionId: int, adminId: int = None) -> Dict:
        logger.info(f"Admin {adminId} approving subscription {subscriptionId}")
        return await self.activate(subscriptionId)

    async def forceActivate(self, subscriptionId: int, adminId: int = None) -> Dict:
        logger.info(f"Admin {adminId} force-activating subscription {subscriptionId}")
        return await self.activate(subscriptionId, force=True)

    async def adminActivate(self, userId: int, tierId: int, adminId: int = None) -> Dict:
        """Create and activate a subscription without proof, cancelling any active one."""
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        tier = self.session.query(Tier).filter_by(tierID=tierId).first()
        if not tier:
            return error_result("tier_not_found")

        current = self.getActiveSubscription(userId)
        if current and current.tierID == tierId:
            return error_result("subscription_exists")

        subscription = Subscription(
            userID=userId,
            tierID=tierId,
            amountPaid=money(tier.investmentAmount),
            status=SubscriptionStatus.PENDING,
            notes=f"Activated by admin {adminId}"
        )
        self.session.add(subscription)
        self.session.flush()

        logger.info(f"Admin {adminId} activating tier {tier.level} for user {userId}")
        return await self.activate(subscription.subscriptionID, supersede=True)

    async def adminUpgrade(self, userId: int, tierId: int, adminId: int = None) -> Dict:
        """Upgrade the active subscription, crediting only the price difference."""
        tier = self.session.query(Tier).filter_by(tierID=tierId).first()
        if not tier:
            return error_result("tier_not_found")

        current = self.getActiveSubscription(userId)
        if not current:
            return error_result("no_active_subscription")

        if tier.level <= current.tier.level:
            return error_result("tier_not_higher")

        subscription = Subscription(
            userID=userId,
            tierID=tierId,
            amountPaid=money(Decimal(tier.investmentAmount) - Decimal(current.tier.investmentAmount)),
            status=SubscriptionStatus.PENDING,
            isUpgrade=True,
            upgradedFromID=current.subscriptionID,
            notes=f"Upgraded by admin {adminId}"
        )
        self.session.add(subscription)
        self.session.flush()

        logger.info(f"Admin {adminId} upgrading user {userId} to tier {tier.level}")
        return await self.activate(subscription.subscriptionID)
