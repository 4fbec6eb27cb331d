# models/__init__.py
"""
Database models for the settlement engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin, utcnow

# Core models
from models.user import User
from models.tier import Tier
from models.subscription import Subscription, SubscriptionStatus
from models.ledger_entry import LedgerEntry, LedgerKind
from models.signal import Signal, SignalParticipation, SignalStatus
from models.timed_order import TimedOrder, OrderStatus

# Rank models
from models.mlm.rank_history import RankHistory

__all__ = [
    # Base
    'Base',
    'AuditMixin',
    'utcnow',

    # Core
    'User',
    'Tier',
    'Subscription',
    'SubscriptionStatus',
    'LedgerEntry',
    'LedgerKind',
    'Signal',
    'SignalParticipation',
    'SignalStatus',
    'TimedOrder',
    'OrderStatus',

    # Ranks
    'RankHistory',
]
