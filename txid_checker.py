import re
import aiohttp
import logging
from enum import Enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Any, List

import config

TXID_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Transfer(address indexed from, address indexed to, uint256 value)
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class VerificationCode(Enum):
    VERIFIED = "verified"
    NOT_FOUND = "NOT_FOUND"
    TX_FAILED = "TX_FAILED"
    WRONG_CONTRACT = "WRONG_CONTRACT"
    NO_TRANSFER_EVENT = "NO_TRANSFER_EVENT"
    WRONG_RECIPIENT = "WRONG_RECIPIENT"
    INSUFFICIENT_AMOUNT = "INSUFFICIENT_AMOUNT"
    INSUFFICIENT_CONFIRMATIONS = "INSUFFICIENT_CONFIRMATIONS"
    API_ERROR = "API_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"


# Definitive negative verdicts, the subscription is rejected
TERMINAL_CODES = {
    VerificationCode.TX_FAILED,
    VerificationCode.WRONG_CONTRACT,
    VerificationCode.WRONG_RECIPIENT,
    VerificationCode.INSUFFICIENT_AMOUNT,
    VerificationCode.INVALID_FORMAT,
}

# Verdicts that may change on a later attempt
RETRYABLE_CODES = {
    VerificationCode.NOT_FOUND,
    VerificationCode.INSUFFICIENT_CONFIRMATIONS,
    VerificationCode.NO_TRANSFER_EVENT,
    VerificationCode.API_ERROR,
}


@dataclass
class VerificationResult:
    verified: bool
    code: VerificationCode
    confirmations: int = 0
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[Decimal] = None
    block_number: Optional[int] = None
    details: Optional[str] = None

    @property
    def error(self) -> Optional[str]:
        return None if self.verified else self.code.value

    @property
    def is_terminal(self) -> bool:
        return self.code in TERMINAL_CODES


def validate_txid(txid: str) -> bool:
    """Checks the proof is a 0x-prefixed 32-byte hex hash."""
    if not isinstance(txid, str):
        return False
    return bool(TXID_PATTERN.match(txid.lower().strip()))


class PaymentVerifier:
    """Interface of an external payment verifier."""

    async def verify(
            self,
            txid: str,
            expected_amount: Decimal,
            required_confirmations: int
    ) -> VerificationResult:
        raise NotImplementedError


class BscPaymentVerifier(PaymentVerifier):
    """
    Verifies USDT BEP-20 transfers through a BSC JSON-RPC node.
    Any network or node failure is reported as API_ERROR instead of raising.
    """

    def __init__(
            self,
            rpc_url: str = None,
            receiver_address: str = None,
            contract_address: str = None,
            decimals: int = None,
            tolerance: Decimal = None,
            timeout: int = None
    ):
        self.rpc_url = rpc_url or config.BSC_RPC_URL
        self.receiver_address = (receiver_address or config.PAYMENT_RECEIVER_ADDRESS).lower()
        self.contract_address = (contract_address or config.USDT_BSC_CONTRACT_ADDRESS).lower()
        self.decimals = decimals if decimals is not None else config.USDT_DECIMALS
        self.tolerance = tolerance if tolerance is not None else config.PAYMENT_AMOUNT_TOLERANCE
        self.timeout = timeout or config.RPC_TIMEOUT

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.rpc_url, json=payload) as response:
                if response.status != 200:
                    raise RuntimeError(f"RPC {method} returned HTTP {response.status}")

                data = await response.json(content_type=None)
                if data.get("error"):
                    raise RuntimeError(f"RPC {method} error: {data['error']}")

                return data.get("result")

    async def verify(
            self,
            txid: str,
            expected_amount: Decimal,
            required_confirmations: int = None
    ) -> VerificationResult:
        if required_confirmations is None:
            required_confirmations = config.BSC_REQUIRED_CONFIRMATIONS

        if not validate_txid(txid):
            return VerificationResult(False, VerificationCode.INVALID_FORMAT)

        try:
            logging.info(f"Starting verification for txid: {txid}, expected {expected_amount}")
            return await self._verify(txid.lower().strip(), Decimal(str(expected_amount)), required_confirmations)

        except Exception as e:
            logging.error(f"Error verifying transaction {txid}: {e}", exc_info=True)
            return VerificationResult(False, VerificationCode.API_ERROR, details=str(e))

    async def _verify(self, txid: str, expected_amount: Decimal, required_confirmations: int) -> VerificationResult:
        # 1. Receipt
        receipt = await self._rpc("eth_getTransactionReceipt", [txid])
        if not receipt:
            return VerificationResult(False, VerificationCode.NOT_FOUND)

        # 2. Execution status
        if int(receipt.get("status") or "0x0", 16) != 1:
            return VerificationResult(False, VerificationCode.TX_FAILED)

        # 3. Token contract
        if (receipt.get("to") or "").lower() != self.contract_address:
            return VerificationResult(False, VerificationCode.WRONG_CONTRACT)

        # 4. Transfer event emitted by the token contract
        transfer = self._findTransfer(receipt.get("logs") or [])
        if transfer is None:
            return VerificationResult(False, VerificationCode.NO_TRANSFER_EVENT)

        from_address, to_address, amount = transfer
        block_number = int(receipt["blockNumber"], 16)

        # 5. Recipient
        if to_address != self.receiver_address:
            logging.warning(f"Wrong recipient! Expected: {self.receiver_address}, Got: {to_address}")
            return VerificationResult(
                False, VerificationCode.WRONG_RECIPIENT,
                from_address=from_address, to_address=to_address, amount=amount
            )

        # 6. Amount, with tolerance
        if amount < expected_amount - self.tolerance:
            return VerificationResult(
                False, VerificationCode.INSUFFICIENT_AMOUNT,
                from_address=from_address, to_address=to_address, amount=amount
            )

        # 7. Confirmations
        current_block = int(await self._rpc("eth_blockNumber", []), 16)
        confirmations = max(current_block - block_number, 0)

        if confirmations < required_confirmations:
            return VerificationResult(
                False, VerificationCode.INSUFFICIENT_CONFIRMATIONS,
                confirmations=confirmations,
                from_address=from_address, to_address=to_address,
                amount=amount, block_number=block_number
            )

        logging.info(f"Transaction {txid} verified: {amount} with {confirmations} confirmations")
        return VerificationResult(
            True, VerificationCode.VERIFIED,
            confirmations=confirmations,
            from_address=from_address, to_address=to_address,
            amount=amount, block_number=block_number
        )

    def _findTransfer(self, logs: List[dict]):
        """First Transfer log of the token contract as (from, to, amount)."""
        for log in logs:
            if (log.get("address") or "").lower() != self.contract_address:
                continue

            topics = log.get("topics", [])
            if len(topics) >= 3 and topics[0].lower() == TRANSFER_TOPIC:
                # topics[1] / topics[2] are addresses padded to 32 bytes
                from_address = "0x" + topics[1][-40:].lower()
                to_address = "0x" + topics[2][-40:].lower()
                raw_amount = int(log.get("data") or "0x0", 16)
                amount = Decimal(raw_amount) / (Decimal(10) ** self.decimals)
                return from_address, to_address, amount

        return None
