# models/mlm/__init__.py
"""
Rank-specific models.
"""

from models.mlm.rank_history import RankHistory

__all__ = [
    'RankHistory',
]
