# models/subscription.py
"""
Subscription model - a user's purchase of a tier and its lifecycle.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class SubscriptionStatus:
    """Subscription lifecycle states."""

    PENDING = "PENDING"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    ACTIVATABLE = (PENDING, PENDING_VERIFICATION)
    REJECTABLE = (PENDING, PENDING_VERIFICATION)


class Subscription(Base, AuditMixin):
    __tablename__ = 'subscriptions'

    # Primary key
    subscriptionID = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign keys
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    tierID = Column(Integer, ForeignKey('tiers.tierID'), nullable=False)

    # Full tier price, or only the difference for an upgrade
    amountPaid = Column(DECIMAL(14, 2), nullable=False)

    status = Column(String, nullable=False, default=SubscriptionStatus.PENDING, index=True)
    activatedAt = Column(DateTime, nullable=True)

    # Upgrade chain
    isUpgrade = Column(Boolean, default=False, nullable=False)
    upgradedFromID = Column(Integer, ForeignKey('subscriptions.subscriptionID'), nullable=True)

    # Payment proof (tx hash); unique across all subscriptions
    txProof = Column(String, unique=True, nullable=True)
    confirmations = Column(Integer, default=0)

    # Compounding capital for signal participation
    runningCapital = Column(DECIMAL(14, 2), nullable=False, default=0)

    notes = Column(String, nullable=True)

    # Relationships
    user = relationship('User', backref='subscriptions')
    tier = relationship('Tier')
    upgradedFrom = relationship('Subscription', remote_side=[subscriptionID])

    __table_args__ = (
        # At most one ACTIVE subscription per user
        Index(
            'uq_subscriptions_active_user',
            'userID',
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    def __repr__(self):
        return f"<Subscription(id={self.subscriptionID}, user={self.userID}, status={self.status})>"
