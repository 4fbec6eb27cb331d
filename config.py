import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///settlement.db")

# BSC / USDT BEP-20
BSC_RPC_URL = os.getenv("BSC_RPC_URL", "https://bsc-dataseed.binance.org/")
PAYMENT_RECEIVER_ADDRESS = os.getenv("PAYMENT_RECEIVER_ADDRESS", "")
USDT_BSC_CONTRACT_ADDRESS = os.getenv(
    "USDT_BSC_CONTRACT_ADDRESS",
    "0x55d398326f99059fF775485246999027B3197955"
)
USDT_DECIMALS = int(os.getenv("USDT_DECIMALS", "18"))  # USDT on BSC uses 18 decimals
BSC_REQUIRED_CONFIRMATIONS = int(os.getenv("BSC_REQUIRED_CONFIRMATIONS", "3"))
PAYMENT_AMOUNT_TOLERANCE = Decimal(os.getenv("PAYMENT_AMOUNT_TOLERANCE", "0.5"))
RPC_TIMEOUT = int(os.getenv("RPC_TIMEOUT", "30"))

# Планировщик
VERIFY_BATCH_SIZE = int(os.getenv("VERIFY_BATCH_SIZE", "20"))
VERIFY_INTERVAL = int(os.getenv("VERIFY_INTERVAL", "60"))
AUTO_CLOSE_INTERVAL = int(os.getenv("AUTO_CLOSE_INTERVAL", "60"))
RANK_CHECK_INTERVAL = int(os.getenv("RANK_CHECK_INTERVAL", "3600"))

# Ошибки
ERROR_CATEGORIES = {
    # Input validation
    'missing_fields': 'validation',
    'invalid_proof_format': 'validation',
    'invalid_rank': 'validation',
    'invalid_amount': 'validation',
    'invalid_direction': 'validation',
    'invalid_code': 'validation',
    'invalid_pair': 'validation',
    'invalid_sponsor': 'validation',
    'tier_unavailable': 'validation',
    'insufficient_balance': 'validation',
    'no_capital': 'validation',
    'no_active_subscription': 'validation',
    'investment_not_doubled': 'validation',
    'signal_expired': 'validation',
    'invalid_state': 'validation',

    # Business-rule conflicts
    'duplicate_proof': 'conflict',
    'subscription_exists': 'conflict',
    'tier_not_higher': 'conflict',
    'active_subscription_exists': 'conflict',
    'already_joined': 'conflict',
    'order_closed': 'conflict',
    'signal_code_used': 'conflict',
    'sponsor_cycle': 'conflict',

    # Lookups
    'user_not_found': 'not_found',
    'tier_not_found': 'not_found',
    'subscription_not_found': 'not_found',
    'signal_not_found': 'not_found',
    'order_not_found': 'not_found',
    'participation_not_found': 'not_found',

    # External verification
    'verification_failed': 'verification',

    # Unexpected
    'internal_error': 'internal',
}


def error_result(code: str, **extra) -> dict:
    """Builds the failure dict returned by service operations."""
    result = {
        "success": False,
        "error": code,
        "errorType": ERROR_CATEGORIES.get(code, "internal"),
    }
    result.update(extra)
    return result
