# settlement_system/config/ranks.py
"""
Rank configuration and constants.
"""
from decimal import Decimal

MAX_RANK = 5
NO_RANK = 0

RANK_CONFIG = {
    1: {
        "title": "Brand Ambassador",
        "frontals": 3,
        "totalOrg": 0,
        "frontalMinPackage": Decimal("300"),
        "minPackage": Decimal("300"),
        "oneTimeBonus": Decimal("25"),
        "globalBonusPct": Decimal("1"),
    },
    2: {
        "title": "Team Supervisor",
        "frontals": 5,
        "totalOrg": 20,
        "frontalMinPackage": Decimal("300"),
        "minPackage": Decimal("500"),
        "oneTimeBonus": Decimal("200"),
        "globalBonusPct": Decimal("1"),
    },
    3: {
        "title": "Senior Manager",
        "frontals": 8,
        "totalOrg": 50,
        "frontalMinPackage": Decimal("300"),
        "minPackage": Decimal("500"),
        "oneTimeBonus": Decimal("550"),
        "globalBonusPct": Decimal("2"),
    },
    4: {
        "title": "Regional Director",
        "frontals": 10,
        "totalOrg": 200,
        "frontalMinPackage": Decimal("300"),
        "minPackage": Decimal("1500"),
        "oneTimeBonus": Decimal("1000"),
        "globalBonusPct": Decimal("2"),
    },
    5: {
        "title": "Global Executive Director",
        "frontals": 15,
        "totalOrg": 500,
        "frontalMinPackage": Decimal("300"),
        "minPackage": Decimal("3000"),
        "oneTimeBonus": Decimal("2000"),
        "globalBonusPct": Decimal("2.5"),
    },
}

# Frontal threshold for rank tables without a per-rank frontalMinPackage
FRONTAL_MIN_PACKAGE = Decimal("300")
