# settlement_system/services/ledger_service.py
"""
Ledger store - append-only signed monetary movements per user.
Balances are always derived from the entries, never stored.
"""
from decimal import Decimal
from typing import List, Dict, Optional, Iterable
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import LedgerEntry, LedgerKind
from settlement_system.utils.money import money
from settlement_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class InsufficientBalance(Exception):
    """Raised when a debit would exceed the available balance."""

    def __init__(self, userId: int, balance: Decimal, requested: Decimal):
        super().__init__(f"User {userId} has {balance}, requested {requested}")
        self.userId = userId
        self.balance = balance
        self.requested = requested


class LedgerService:
    """Service for writing and aggregating ledger entries."""

    def __init__(self, session: Session):
        self.session = session

    async def credit(
            self,
            userId: int,
            kind: str,
            amount: Decimal,
            description: str
    ) -> LedgerEntry:
        """
        Append a signed entry. Negative amounts are debits; the store does not
        check the resulting balance, callers that debit must use debit().
        """
        if kind not in LedgerKind.ALL:
            raise ValueError(f"Unknown ledger kind: {kind}")

        entry = LedgerEntry(
            userID=userId,
            kind=kind,
            amount=money(amount),
            description=description,
            createdAt=timeMachine.now
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(f"Ledger {kind} {entry.amount} for user {userId}: {description}")
        return entry

    async def debit(
            self,
            userId: int,
            kind: str,
            amount: Decimal,
            description: str
    ) -> LedgerEntry:
        """Append a negative entry after checking the available balance."""
        amount = money(amount)
        available = await self.balance(userId)

        if available < amount:
            raise InsufficientBalance(userId, available, amount)

        return await self.credit(userId, kind, -amount, description)

    async def balance(self, userId: int) -> Decimal:
        """Sum of all entries of the user, as a single aggregate query."""
        total = self.session.query(
            func.coalesce(func.sum(LedgerEntry.amount), 0)
        ).filter(
            LedgerEntry.userID == userId
        ).scalar()

        return money(total)

    async def balanceByKind(self, userId: int) -> Dict[str, Decimal]:
        """Net amount per entry kind, used for reconciliation by program."""
        rows = self.session.query(
            LedgerEntry.kind,
            func.sum(LedgerEntry.amount)
        ).filter(
            LedgerEntry.userID == userId
        ).group_by(LedgerEntry.kind).all()

        return {kind: money(total) for kind, total in rows}

    async def entries(
            self,
            userId: int,
            kinds: Optional[Iterable[str]] = None
    ) -> List[LedgerEntry]:
        query = self.session.query(LedgerEntry).filter(LedgerEntry.userID == userId)
        if kinds:
            query = query.filter(LedgerEntry.kind.in_(list(kinds)))

        return query.order_by(LedgerEntry.entryID).all()

    async def replayBalance(self, userId: int) -> Decimal:
        """Rebuild the balance by replaying the entry log from zero."""
        total = Decimal("0")
        for entry in await self.entries(userId):
            total += money(entry.amount)
        return money(total)

    async def reconcile(self, userId: int) -> Dict:
        """Compare the aggregate balance with a full replay of the log."""
        aggregated = await self.balance(userId)
        replayed = await self.replayBalance(userId)

        if aggregated != replayed:
            logger.error(
                f"Ledger mismatch for user {userId}: "
                f"aggregate={aggregated}, replay={replayed}"
            )

        return {
            "userId": userId,
            "balance": aggregated,
            "replayed": replayed,
            "consistent": aggregated == replayed
        }

    async def wipeBonuses(self, userId: int, reason: str) -> Dict:
        """
        Reset the user's accumulated referral and return bonuses.
        Writes one offsetting entry per kind with a non-zero net, nothing is deleted.
        """
        byKind = await self.balanceByKind(userId)

        reversed_ = []
        total = Decimal("0")

        for kind in LedgerKind.RESETTABLE_BONUSES:
            net = byKind.get(kind, Decimal("0"))
            if net == 0:
                continue

            await self.credit(userId, kind, -net, f"Reversal {kind} ({reason})")
            reversed_.append({"kind": kind, "amount": -net})
            total += net

        if reversed_:
            logger.info(f"Reset {total} of accumulated bonuses for user {userId}: {reason}")

        return {
            "userId": userId,
            "reversed": reversed_,
            "totalReversed": money(total)
        }
