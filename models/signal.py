# models/signal.py
"""
Signal and SignalParticipation models - timed market events and their joins.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, utcnow


class SignalStatus:
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Signal(Base):
    __tablename__ = 'signals'

    signalID = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, unique=True, nullable=False)
    label = Column(String, nullable=True)
    pair = Column(String, nullable=False)
    direction = Column(String, nullable=False)  # CALL, PUT

    status = Column(String, default=SignalStatus.ACTIVE, nullable=False, index=True)
    createdAt = Column(DateTime, default=utcnow, nullable=False)  # Момент публикации
    closedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Signal(id={self.signalID}, code={self.code}, status={self.status})>"


class SignalParticipation(Base):
    __tablename__ = 'signal_participations'

    participationID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=utcnow, nullable=False)

    signalID = Column(Integer, ForeignKey('signals.signalID'), nullable=False)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False)
    subscriptionID = Column(Integer, ForeignKey('subscriptions.subscriptionID'), nullable=False)

    # Compounding snapshot
    capitalBefore = Column(DECIMAL(14, 2), nullable=False)
    gainTotal = Column(DECIMAL(14, 2), nullable=False)
    capitalAdded = Column(DECIMAL(14, 2), nullable=False)  # 40% - participant, paid on resolution
    pooledBonus = Column(DECIMAL(14, 2), nullable=False)  # 60% - ranked ancestors
    userRankAtTime = Column(Integer, default=0, nullable=False)

    signal = relationship('Signal', backref='participations')
    user = relationship('User', backref='signal_participations')

    __table_args__ = (
        UniqueConstraint('signalID', 'userID', name='uq_signal_participation_user'),
    )

    def __repr__(self):
        return f"<SignalParticipation(signal={self.signalID}, user={self.userID}, added={self.capitalAdded})>"
