# settlement_system/services/commission_service.py
"""
Commission distributor - referral payouts up to three sponsor levels.
Writes ledger entries only; the caller owns the transaction.
"""
from decimal import Decimal
from typing import List, Dict
from sqlalchemy.orm import Session
import logging

from models import LedgerKind
from settlement_system.config.programs import (
    COMMISSION_LEVELS, MAX_COMMISSION_LEVEL, SHARED_POOL_PERCENTAGE, RETURN_BONUS_PERCENTAGE
)
from settlement_system.services.ledger_service import LedgerService
from settlement_system.services.network_service import NetworkService
from settlement_system.utils.money import money, toDecimal

logger = logging.getLogger(__name__)


def _pct(rate: Decimal) -> str:
    return f"{float(rate * 100):g}%"


class CommissionService:
    """Service for calculating referral commissions."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)
        self.network = NetworkService(session)

    async def distribute(self, userId: int, amount: Decimal, multiplier: int = 1) -> Dict:
        """
        Pay referral commissions for an investment of `amount` by userId.

        Level 1: 8.5% to the sponsor plus 1.5% split evenly between all of
        the sponsor's direct referrals (the activator included).
        Level 2: 3%, level 3: 2%. With multiplier=-1 every payout is reversed.
        """
        amount = toDecimal(amount)
        label = "Bonus" if multiplier > 0 else "Reversal"

        results = {
            "userId": userId,
            "commissions": [],
            "totalDistributed": Decimal("0")
        }

        for level, sponsor in self.network.iterUpline(userId, maxDepth=MAX_COMMISSION_LEVEL):
            rate = COMMISSION_LEVELS[level]
            payout = money(amount * rate) * multiplier

            if level == 1:
                description = f"{label} sponsor level 1 ({_pct(rate)} direct)"
            else:
                description = f"{label} sponsor level {level} ({_pct(rate)})"

            await self._pay(results, sponsor.userID, payout, level, description)

            if level == 1:
                for share in await self._sharedPool(sponsor.userID, amount, multiplier, label):
                    await self._pay(results, share["userId"], share["amount"], 1, share["description"])

        results["totalDistributed"] = money(results["totalDistributed"])

        logger.info(
            f"{label} commissions for user {userId} on {amount}: "
            f"{len(results['commissions'])} payouts, total {results['totalDistributed']}"
        )
        return results

    async def reverse(self, userId: int, amount: Decimal) -> Dict:
        """Write offsetting entries for a previous distribute()."""
        return await self.distribute(userId, amount, multiplier=-1)

    async def _sharedPool(
            self,
            sponsorId: int,
            amount: Decimal,
            multiplier: int,
            label: str
    ) -> List[Dict]:
        """Split the shared pool evenly between the sponsor's direct referrals."""
        referrals = self.network.directReferrals(sponsorId)
        if not referrals:
            return []

        count = len(referrals)
        share = money(amount * SHARED_POOL_PERCENTAGE / count) * multiplier
        description = (
            f"{label} shared level 1 ({_pct(SHARED_POOL_PERCENTAGE)} / {count} direct referrals)"
        )

        return [
            {"userId": referral.userID, "amount": share, "description": description}
            for referral in referrals
        ]

    async def _pay(self, results: Dict, userId: int, amount: Decimal, level: int, description: str):
        if amount == 0:
            return

        await self.ledger.credit(userId, LedgerKind.REFERRAL_BONUS, amount, description)

        results["commissions"].append({
            "userId": userId,
            "amount": amount,
            "level": level,
            "description": description
        })
        results["totalDistributed"] += amount

    async def creditReturnBonus(self, userId: int, tierAmount: Decimal) -> Dict:
        """Flat return bonus to the activator of a qualifying tier."""
        amount = money(toDecimal(tierAmount) * RETURN_BONUS_PERCENTAGE)

        await self.ledger.credit(
            userId,
            LedgerKind.RETURN_BONUS,
            amount,
            f"Return bonus ({_pct(RETURN_BONUS_PERCENTAGE)} of {money(tierAmount)})"
        )

        return {"userId": userId, "amount": amount, "type": "return"}
