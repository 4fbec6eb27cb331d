# models/mlm/rank_history.py
"""
RankHistory model - tracks rank achievements, assignments and one-time bonuses.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, utcnow


class RankHistory(Base):
    __tablename__ = 'rank_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=utcnow)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Rank details
    previousRank = Column(Integer, nullable=True)
    newRank = Column(Integer, nullable=False)

    # Qualification metrics at time of achievement
    frontals = Column(Integer, nullable=True)
    totalOrg = Column(Integer, nullable=True)
    qualificationMethod = Column(String, nullable=True)  # natural, assigned

    # If assigned by admin
    assignedBy = Column(Integer, ForeignKey('users.userID'), nullable=True)

    # One-time rank bonus
    bonusPaid = Column(Boolean, default=False, nullable=False)
    bonusPaidAt = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    # Relationships
    user = relationship('User', foreign_keys=[userID], backref='rank_history')
    assigner = relationship('User', foreign_keys=[assignedBy])

    def __repr__(self):
        return f"<RankHistory(user={self.userID}, rank={self.newRank}, date={self.createdAt})>"
