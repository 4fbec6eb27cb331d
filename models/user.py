# models/user.py
"""
User model - node of the sponsor tree.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, utcnow


class User(Base):
    __tablename__ = 'users'

    # Primary identification
    userID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, unique=True, nullable=False)
    email = Column(String, nullable=True)
    createdAt = Column(DateTime, default=utcnow)

    # Sponsor tree: each user points to at most one sponsor, the graph must stay acyclic
    sponsorID = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)

    # Rank 0..5, raised by recalculation or set by an admin
    rank = Column(Integer, default=0, nullable=False, index=True)

    notes = Column(String, nullable=True)  # Только для админских заметок

    sponsor = relationship('User', remote_side=[userID], backref='referrals')

    def __repr__(self):
        return f"<User(userID={self.userID}, username={self.username}, rank={self.rank})>"
