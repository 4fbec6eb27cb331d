# settlement_system/services/rank_service.py
"""
Rank management service.
Ranks are derived from the sponsor tree and active subscriptions; automatic
recalculation only ever raises the stored rank.
"""
from decimal import Decimal
from typing import Optional, Dict
from sqlalchemy.orm import Session
from sqlalchemy import func, distinct
import logging

from config import error_result
from models import User, Subscription, SubscriptionStatus, Tier, RankHistory, LedgerKind
from settlement_system.config.ranks import RANK_CONFIG, MAX_RANK, NO_RANK, FRONTAL_MIN_PACKAGE
from settlement_system.services.ledger_service import LedgerService
from settlement_system.services.network_service import NetworkService
from settlement_system.events.event_bus import eventBus, SettlementEvents
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class RankService:
    """Service for managing user ranks and qualifications."""

    def __init__(self, session: Session, rankConfig: Optional[Dict] = None):
        self.session = session
        self.rankConfig = rankConfig or RANK_CONFIG
        self.ledger = LedgerService(session)
        self.network = NetworkService(session)

    def _ownPackage(self, userId: int) -> Decimal:
        """Price of the user's active tier, 0 without an active subscription."""
        amount = self.session.query(Tier.investmentAmount).join(
            Subscription, Subscription.tierID == Tier.tierID
        ).filter(
            Subscription.userID == userId,
            Subscription.status == SubscriptionStatus.ACTIVE
        ).order_by(Tier.investmentAmount.desc()).first()

        return Decimal(amount[0]) if amount else Decimal("0")

    def _countActiveFrontals(self, userId: int, minPackage: Decimal = FRONTAL_MIN_PACKAGE) -> int:
        """Direct referrals holding an ACTIVE subscription of at least minPackage."""
        return self.session.query(
            func.count(distinct(Subscription.userID))
        ).join(
            Tier, Subscription.tierID == Tier.tierID
        ).join(
            User, User.userID == Subscription.userID
        ).filter(
            User.sponsorID == userId,
            Subscription.status == SubscriptionStatus.ACTIVE,
            Tier.investmentAmount >= minPackage
        ).scalar() or 0

    async def getEligibleRank(self, userId: int) -> Dict:
        """Highest rank whose frontal, organisation and own-package thresholds are all met."""
        ownPackage = self._ownPackage(userId)
        totalOrg = self.network.countDownline(userId)

        # Frontal counts per package threshold, ranks may share one
        frontalsByMinimum = {}

        def frontalsFor(requirements: Dict) -> int:
            minimum = requirements.get("frontalMinPackage", FRONTAL_MIN_PACKAGE)
            if minimum not in frontalsByMinimum:
                frontalsByMinimum[minimum] = self._countActiveFrontals(userId, minimum)
            return frontalsByMinimum[minimum]

        eligibleRank = NO_RANK
        for rank in sorted(self.rankConfig, reverse=True):
            requirements = self.rankConfig[rank]
            if (ownPackage >= requirements["minPackage"]
                    and frontalsFor(requirements) >= requirements["frontals"]
                    and totalOrg >= requirements["totalOrg"]):
                eligibleRank = rank
                break

        reported = self.rankConfig.get(eligibleRank, self.rankConfig[min(self.rankConfig)])

        return {
            "eligibleRank": eligibleRank,
            "stats": {
                "frontals": frontalsFor(reported),
                "totalOrg": totalOrg,
                "ownPackage": ownPackage
            }
        }

    def globalBonusPct(self, rank: int) -> Decimal:
        """Share of a pooled signal bonus for the rank, in percent."""
        requirements = self.rankConfig.get(rank)
        if not requirements:
            return Decimal("0")
        return Decimal(requirements["globalBonusPct"])

    def _bonusAlreadyPaid(self, userId: int, rank: int) -> bool:
        return self.session.query(RankHistory).filter(
            RankHistory.userID == userId,
            RankHistory.newRank == rank,
            RankHistory.bonusPaid == True
        ).first() is not None

    async def _recordRank(
            self,
            userId: int,
            previousRank: int,
            newRank: int,
            method: str,
            stats: Optional[Dict] = None,
            assignedBy: Optional[int] = None
    ) -> bool:
        """Write the history row and pay the one-time bonus if this rank never paid it."""
        payBonus = (
            newRank > NO_RANK
            and newRank > previousRank
            and newRank in self.rankConfig
            and not self._bonusAlreadyPaid(userId, newRank)
        )

        history = RankHistory(
            userID=userId,
            previousRank=previousRank,
            newRank=newRank,
            frontals=stats["frontals"] if stats else None,
            totalOrg=stats["totalOrg"] if stats else None,
            qualificationMethod=method,
            assignedBy=assignedBy,
            bonusPaid=payBonus,
            bonusPaidAt=timeMachine.now if payBonus else None,
            createdAt=timeMachine.now
        )
        self.session.add(history)

        if payBonus:
            requirements = self.rankConfig[newRank]
            suffix = " (assigned by admin)" if method == "assigned" else ""
            await self.ledger.credit(
                userId,
                LedgerKind.RANK_BONUS,
                requirements["oneTimeBonus"],
                f"One-time bonus for reaching rank {newRank} - {requirements['title']}{suffix}"
            )

        return payBonus

    async def recalculateUserRank(self, userId: int) -> Dict:
        """
        Raise the stored rank to the eligible rank, never lower it.
        The raise is a conditional update, so two concurrent recalculations
        pay the one-time bonus once.
        """
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        oldRank = user.rank or NO_RANK

        try:
            eligibility = await self.getEligibleRank(userId)
            eligibleRank = eligibility["eligibleRank"]

            if eligibleRank <= oldRank:
                return {
                    "success": True,
                    "userId": userId,
                    "oldRank": oldRank,
                    "newRank": oldRank,
                    "changed": False,
                    "bonusPaid": False
                }

            raised = self.session.query(User).filter(
                User.userID == userId,
                User.rank < eligibleRank
            ).update({"rank": eligibleRank}, synchronize_session=False)

            if raised == 0:
                self.session.rollback()
                self.session.refresh(user)
                logger.info(f"Rank raise for user {userId} already applied, rank is {user.rank}")
                return {
                    "success": True,
                    "userId": userId,
                    "oldRank": oldRank,
                    "newRank": user.rank,
                    "changed": False,
                    "bonusPaid": False
                }

            bonusPaid = await self._recordRank(
                userId, oldRank, eligibleRank, "natural", stats=eligibility["stats"]
            )

            self.session.commit()
            self.session.refresh(user)

        except Exception as e:
            self.session.rollback()
            logger.error(f"Error recalculating rank for user {userId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"User {userId} rank raised: {oldRank} -> {eligibleRank}, bonus paid: {bonusPaid}")

        await eventBus.emit(SettlementEvents.RANK_ACHIEVED, {
            "userId": userId,
            "oldRank": oldRank,
            "newRank": eligibleRank,
            "bonusPaid": bonusPaid
        })

        return {
            "success": True,
            "userId": userId,
            "oldRank": oldRank,
            "newRank": eligibleRank,
            "changed": True,
            "bonusPaid": bonusPaid
        }

    async def setUserRankManual(self, userId: int, newRank: int, adminId: Optional[int] = None) -> Dict:
        """Admin override, up or down. Persists until a recalculation finds a higher rank."""
        if isinstance(newRank, bool) or not isinstance(newRank, int) or not NO_RANK <= newRank <= MAX_RANK:
            return error_result("invalid_rank")

        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        oldRank = user.rank or NO_RANK

        try:
            user.rank = newRank
            bonusPaid = await self._recordRank(
                userId, oldRank, newRank, "assigned", assignedBy=adminId
            )
            self.session.commit()

        except Exception as e:
            self.session.rollback()
            logger.error(f"Error assigning rank {newRank} to user {userId}: {e}", exc_info=True)
            return error_result("internal_error")

        logger.info(f"Rank {newRank} assigned to user {userId} by admin {adminId} (was {oldRank})")

        await eventBus.emit(SettlementEvents.RANK_ASSIGNED, {
            "userId": userId,
            "oldRank": oldRank,
            "newRank": newRank,
            "assignedBy": adminId,
            "bonusPaid": bonusPaid
        })

        return {
            "success": True,
            "userId": userId,
            "oldRank": oldRank,
            "newRank": newRank,
            "bonusPaid": bonusPaid
        }

    def _rankCandidates(self):
        """Users with an active subscription, with referrals, or already ranked."""
        withActive = self.session.query(Subscription.userID).filter(
            Subscription.status == SubscriptionStatus.ACTIVE
        )
        withReferrals = self.session.query(User.sponsorID).filter(
            User.sponsorID.isnot(None)
        )
        ranked = self.session.query(User.userID).filter(User.rank > NO_RANK)

        candidateIds = set()
        for query in (withActive, withReferrals, ranked):
            candidateIds.update(row[0] for row in query.distinct().all())

        return sorted(candidateIds)

    async def checkAllRanks(self) -> Dict[str, int]:
        """Check and update ranks for all candidate users."""
        results = {
            "processed": 0,
            "updated": 0,
            "bonusPaid": 0,
            "errors": 0
        }

        for userId in self._rankCandidates():
            results["processed"] += 1

            result = await self.recalculateUserRank(userId)
            if not result["success"]:
                results["errors"] += 1
                continue

            if result["changed"]:
                results["updated"] += 1
            if result["bonusPaid"]:
                results["bonusPaid"] += 1

        logger.info(
            f"Rank check complete: processed={results['processed']}, "
            f"updated={results['updated']}, bonusPaid={results['bonusPaid']}, "
            f"errors={results['errors']}"
        )

        return results
