"""
Tests for proof format validation and the BSC payment verifier
"""

import pytest
from decimal import Decimal

from txid_checker import (
    BscPaymentVerifier, VerificationCode, TRANSFER_TOPIC, validate_txid
)
from factories import tx_hash

CONTRACT = "0x55d398326f99059ff775485246999027b3197955"
RECEIVER = "0x1111111111111111111111111111111111111111"
SENDER = "0x2222222222222222222222222222222222222222"
OTHER = "0x3333333333333333333333333333333333333333"


def pad(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


def transfer_log(amount: Decimal, to: str = RECEIVER, contract: str = CONTRACT) -> dict:
    return {
        "address": contract,
        "topics": [TRANSFER_TOPIC, pad(SENDER), pad(to)],
        "data": hex(int(amount * 10 ** 18)),
    }


def receipt(amount: Decimal = Decimal("300"), status: str = "0x1", to: str = CONTRACT, logs=None, block: int = 100) -> dict:
    return {
        "status": status,
        "to": to,
        "blockNumber": hex(block),
        "logs": [transfer_log(amount)] if logs is None else logs,
    }


class CannedVerifier(BscPaymentVerifier):
    """
    Answers JSON-RPC calls from a dict instead of the network
    """

    def __init__(self, answers: dict):
        super().__init__(
            rpc_url="http://node.invalid",
            receiver_address=RECEIVER,
            contract_address=CONTRACT,
            decimals=18,
            tolerance=Decimal("0.5"),
        )
        self.answers = answers
        self.methods = []

    async def _rpc(self, method, params):
        self.methods.append(method)
        answer = self.answers[method]
        if isinstance(answer, Exception):
            raise answer
        return answer


async def verify(answers: dict, expected: str = "300", confirmations: int = 3):
    return await CannedVerifier(answers).verify(tx_hash(1), Decimal(expected), confirmations)


# ============================================================================
# FORMAT
# ============================================================================


def test_validate_txid():
    """Test the 0x + 64 hex pattern"""
    assert validate_txid(tx_hash(1))
    assert validate_txid("0x" + "AbCdEf0123456789" * 4)
    assert not validate_txid("0x" + "a" * 63)
    assert not validate_txid("a" * 66)
    assert not validate_txid("0x" + "z" * 64)
    assert not validate_txid(None)


@pytest.mark.asyncio
async def test_invalid_format_never_calls_node():
    """Test malformed proofs are answered locally"""
    verifier = CannedVerifier({})

    result = await verifier.verify("0x1234", Decimal("300"), 3)

    assert result.code == VerificationCode.INVALID_FORMAT
    assert verifier.methods == []


# ============================================================================
# VERDICTS
# ============================================================================


@pytest.mark.asyncio
async def test_verified_transfer():
    """Test a correct transfer with enough confirmations verifies"""
    result = await verify({"eth_getTransactionReceipt": receipt(), "eth_blockNumber": hex(110)})

    assert result.verified is True
    assert result.code == VerificationCode.VERIFIED
    assert result.confirmations == 10
    assert result.amount == Decimal("300")
    assert result.to_address == RECEIVER
    assert result.from_address == SENDER


@pytest.mark.asyncio
async def test_not_found():
    """Test a missing receipt is retryable"""
    result = await verify({"eth_getTransactionReceipt": None})

    assert result.code == VerificationCode.NOT_FOUND
    assert not result.is_terminal


@pytest.mark.asyncio
async def test_failed_transaction():
    """Test a reverted transaction is terminal"""
    result = await verify({"eth_getTransactionReceipt": receipt(status="0x0")})

    assert result.code == VerificationCode.TX_FAILED
    assert result.is_terminal


@pytest.mark.asyncio
async def test_wrong_contract():
    """Test a transaction to another contract is refused"""
    result = await verify({"eth_getTransactionReceipt": receipt(to=OTHER)})

    assert result.code == VerificationCode.WRONG_CONTRACT


@pytest.mark.asyncio
async def test_no_transfer_event():
    """Test a receipt without a token Transfer log"""
    foreign = transfer_log(Decimal("300"), contract=OTHER)
    result = await verify({"eth_getTransactionReceipt": receipt(logs=[foreign])})

    assert result.code == VerificationCode.NO_TRANSFER_EVENT
    assert not result.is_terminal


@pytest.mark.asyncio
async def test_wrong_recipient():
    """Test a transfer to another address is terminal"""
    logs = [transfer_log(Decimal("300"), to=OTHER)]
    result = await verify({"eth_getTransactionReceipt": receipt(logs=logs)})

    assert result.code == VerificationCode.WRONG_RECIPIENT
    assert result.to_address == OTHER
    assert result.is_terminal


@pytest.mark.asyncio
async def test_amount_tolerance():
    """Test amounts within 0.5 of the expected value are accepted"""
    short = await verify({"eth_getTransactionReceipt": receipt(amount=Decimal("299.4"))})
    close = await verify({
        "eth_getTransactionReceipt": receipt(amount=Decimal("299.6")),
        "eth_blockNumber": hex(110),
    })

    assert short.code == VerificationCode.INSUFFICIENT_AMOUNT
    assert short.amount == Decimal("299.4")
    assert close.verified is True


@pytest.mark.asyncio
async def test_insufficient_confirmations():
    """Test a shallow transaction waits"""
    result = await verify({"eth_getTransactionReceipt": receipt(block=100), "eth_blockNumber": hex(101)})

    assert result.code == VerificationCode.INSUFFICIENT_CONFIRMATIONS
    assert result.confirmations == 1
    assert not result.is_terminal


@pytest.mark.asyncio
async def test_node_failure_is_api_error():
    """Test RPC failures are reported, not raised"""
    result = await verify({"eth_getTransactionReceipt": RuntimeError("connection reset")})

    assert result.code == VerificationCode.API_ERROR
    assert result.error == "API_ERROR"
    assert not result.is_terminal
