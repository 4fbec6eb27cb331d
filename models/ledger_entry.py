# models/ledger_entry.py
"""
LedgerEntry model - append-only signed monetary movements.
A user's balance is the sum of their entries and is never stored.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, utcnow


class LedgerKind:
    """Closed set of ledger entry kinds."""

    INVESTMENT_CREDIT = "INVESTMENT_CREDIT"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    RETURN_BONUS = "RETURN_BONUS"
    SIGNAL_PROFIT = "SIGNAL_PROFIT"
    GLOBAL_BONUS = "GLOBAL_BONUS"
    RANK_BONUS = "RANK_BONUS"
    WITHDRAW_REQUEST = "WITHDRAW_REQUEST"
    FUTURES_ENTRY = "FUTURES_ENTRY"
    FUTURES_PAYOUT = "FUTURES_PAYOUT"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"

    ALL = (
        INVESTMENT_CREDIT,
        REFERRAL_BONUS,
        RETURN_BONUS,
        SIGNAL_PROFIT,
        GLOBAL_BONUS,
        RANK_BONUS,
        WITHDRAW_REQUEST,
        FUTURES_ENTRY,
        FUTURES_PAYOUT,
        MANUAL_ADJUSTMENT,
    )

    # Reset on activation into an entry-level tier
    RESETTABLE_BONUSES = (REFERRAL_BONUS, RETURN_BONUS)


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=utcnow, nullable=False)

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    kind = Column(String, nullable=False, index=True)
    amount = Column(DECIMAL(14, 2), nullable=False)  # Положительная или отрицательная
    description = Column(String, nullable=True)

    user = relationship('User', backref='ledger_entries')

    def __repr__(self):
        return f"<LedgerEntry(id={self.entryID}, user={self.userID}, kind={self.kind}, amount={self.amount})>"
