# settlement_system/config/programs.py
"""
Commission, bonus and signal program constants.
"""
from datetime import timedelta
from decimal import Decimal

# Sponsor bonus by upline level (level 1 is the direct sponsor)
COMMISSION_LEVELS = {
    1: Decimal("0.085"),  # 8.5% directly to the sponsor
    2: Decimal("0.03"),  # 3%
    3: Decimal("0.02"),  # 2%
}
MAX_COMMISSION_LEVEL = 3

# 1.5% shared between every direct referral of the level-1 sponsor
SHARED_POOL_PERCENTAGE = Decimal("0.015")

# 8.5% to the activator for tiers in the return program
RETURN_BONUS_PERCENTAGE = Decimal("0.085")

# Signals
SIGNAL_GAIN_PERCENTAGE = Decimal("0.01")  # 1% of running capital per signal
SIGNAL_PARTICIPANT_SHARE = Decimal("0.40")  # capital_added
SIGNAL_POOL_SHARE = Decimal("0.60")  # pooled_bonus for ranked ancestors
SIGNAL_JOIN_WINDOW = timedelta(minutes=5)
SIGNAL_HORIZON = timedelta(minutes=15)
SIGNAL_DIRECTIONS = ("CALL", "PUT")

# Hard bound for upline walks (the tree is declared acyclic, data may disagree)
UPLINE_TRAVERSAL_CAP = 20

# Wallet
MIN_WITHDRAWAL = Decimal("1")
INVESTMENT_MULTIPLIER_FOR_WITHDRAWAL = Decimal("2")  # Нужно удвоить инвестицию

# Default tier catalogue, 2.5% daily yield
DEFAULT_TIERS = [
    {"level": 1, "name": "Tier 1", "investmentAmount": Decimal("50"), "dailyYield": Decimal("1.25"),
     "participatesInReferralBonus": False, "participatesInReturnBonus": False},
    {"level": 2, "name": "Tier 2", "investmentAmount": Decimal("150"), "dailyYield": Decimal("3.75"),
     "participatesInReferralBonus": True, "participatesInReturnBonus": False},
    {"level": 3, "name": "Tier 3", "investmentAmount": Decimal("300"), "dailyYield": Decimal("7.5"),
     "participatesInReferralBonus": True, "participatesInReturnBonus": True},
    {"level": 4, "name": "Tier 4", "investmentAmount": Decimal("600"), "dailyYield": Decimal("15"),
     "participatesInReferralBonus": True, "participatesInReturnBonus": True},
    {"level": 5, "name": "Tier 5", "investmentAmount": Decimal("1200"), "dailyYield": Decimal("30"),
     "participatesInReferralBonus": True, "participatesInReturnBonus": True},
    {"level": 6, "name": "Tier 6", "investmentAmount": Decimal("2500"), "dailyYield": Decimal("62.5"),
     "participatesInReferralBonus": True, "participatesInReturnBonus": True},
    {"level": 7, "name": "Tier 7", "investmentAmount": Decimal("5000"), "dailyYield": Decimal("125"),
     "participatesInReferralBonus": True, "participatesInReturnBonus": True},
]
