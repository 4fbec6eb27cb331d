# models/tier.py
"""
Tier model - investment package definition, owned by configuration.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, Boolean
from models.base import Base


class Tier(Base):
    __tablename__ = 'tiers'

    tierID = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(Integer, unique=True, nullable=False)  # Порядок пакетов, выше = дороже
    name = Column(String, nullable=False)

    investmentAmount = Column(DECIMAL(14, 2), nullable=False)
    dailyYield = Column(DECIMAL(14, 4), nullable=False, default=0)

    # Bonus programs
    participatesInReferralBonus = Column(Boolean, default=False, nullable=False)
    participatesInReturnBonus = Column(Boolean, default=False, nullable=False)

    isEnabled = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Tier(level={self.level}, name={self.name}, amount={self.investmentAmount})>"
