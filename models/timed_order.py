# models/timed_order.py
"""
TimedOrder model - futures position, signal-linked or manual.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class OrderStatus:
    ACTIVE = "ACTIVE"
    WIN = "WIN"
    LOSS = "LOSS"


class TimedOrder(Base, AuditMixin):
    __tablename__ = 'timed_orders'

    orderID = Column(Integer, primary_key=True, autoincrement=True)

    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    signalID = Column(Integer, ForeignKey('signals.signalID'), nullable=True, index=True)  # NULL для ручных ордеров

    pair = Column(String, nullable=False)
    direction = Column(String, nullable=False)  # CALL, PUT
    status = Column(String, default=OrderStatus.ACTIVE, nullable=False, index=True)

    amount = Column(DECIMAL(14, 2), nullable=False)
    leverage = Column(Integer, default=1, nullable=False)
    entryPrice = Column(DECIMAL(18, 8), nullable=True)
    exitPrice = Column(DECIMAL(18, 8), nullable=True)
    pnl = Column(DECIMAL(14, 2), default=0)

    autoCloseAt = Column(DateTime, nullable=True, index=True)
    closeReason = Column(String, nullable=True)  # SIGNAL_COMPLETE, MANUAL_EARLY, FORCED, MANUAL
    closedAt = Column(DateTime, nullable=True)

    user = relationship('User', backref='timed_orders')
    signal = relationship('Signal', backref='orders')

    def __repr__(self):
        return f"<TimedOrder(id={self.orderID}, user={self.userID}, status={self.status})>"
