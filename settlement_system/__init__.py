# settlement_system/__init__.py
"""
Settlement engine - ledger, commissions, activations, ranks and signals.
"""

# Services
from settlement_system.services.ledger_service import LedgerService, InsufficientBalance
from settlement_system.services.network_service import NetworkService
from settlement_system.services.commission_service import CommissionService
from settlement_system.services.activation_service import ActivationService
from settlement_system.services.rank_service import RankService
from settlement_system.services.signal_service import SignalService
from settlement_system.services.futures_service import FuturesService
from settlement_system.services.wallet_service import WalletService

# Configuration
from settlement_system.config.ranks import RANK_CONFIG, MAX_RANK

# Utilities
from settlement_system.utils.time_machine import timeMachine
from settlement_system.utils.money import money

# Events
from settlement_system.events.event_bus import eventBus, SettlementEvents

__all__ = [
    # Services
    'LedgerService',
    'InsufficientBalance',
    'NetworkService',
    'CommissionService',
    'ActivationService',
    'RankService',
    'SignalService',
    'FuturesService',
    'WalletService',

    # Config
    'RANK_CONFIG',
    'MAX_RANK',

    # Utils
    'timeMachine',
    'money',

    # Events
    'eventBus',
    'SettlementEvents',
]
