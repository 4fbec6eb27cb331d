"""
Pytest configuration and fixtures for settlement engine tests
"""

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from init import seed_tiers
from models import Base, User, Tier, Subscription, SubscriptionStatus
from settlement_system.events.event_bus import eventBus
from settlement_system.utils.time_machine import timeMachine
from factories import StubVerifier

START_TIME = datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def frozen_time():
    """
    Every test runs on virtual time with a clean event bus
    """
    timeMachine.setTime(START_TIME)
    eventBus.clear()
    yield timeMachine
    timeMachine.resetToRealTime()
    eventBus.clear()


@pytest.fixture(scope="function")
def test_db_engine(tmp_path):
    """
    File-based SQLite so several sessions can race on the same data
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'settlement.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_db_engine):
    return sessionmaker(bind=test_db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def tiers(db_session):
    """
    Default tier catalogue keyed by level
    """
    seed_tiers(db_session)
    return {tier.level: tier for tier in db_session.query(Tier).all()}


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(username: str = None, sponsor: User = None, rank: int = 0) -> User:
        counter["n"] += 1
        user = User(
            username=username or f"user{counter['n']}",
            sponsorID=sponsor.userID if sponsor else None,
            rank=rank
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_active(db_session, tiers):
    """
    Inserts an ACTIVE subscription without any ledger effect
    """

    def _make(user: User, level: int, running_capital=None) -> Subscription:
        tier = tiers[level]
        subscription = Subscription(
            userID=user.userID,
            tierID=tier.tierID,
            amountPaid=tier.investmentAmount,
            status=SubscriptionStatus.ACTIVE,
            activatedAt=timeMachine.now,
            runningCapital=Decimal(str(running_capital)) if running_capital is not None else tier.investmentAmount
        )
        db_session.add(subscription)
        db_session.commit()
        return subscription

    return _make


@pytest.fixture
def make_pending(db_session, tiers):
    """
    Inserts a PENDING_VERIFICATION subscription with a proof
    """

    def _make(user: User, level: int, txid: str, created_at: datetime = None) -> Subscription:
        tier = tiers[level]
        subscription = Subscription(
            userID=user.userID,
            tierID=tier.tierID,
            amountPaid=tier.investmentAmount,
            status=SubscriptionStatus.PENDING_VERIFICATION,
            txProof=txid
        )
        if created_at is not None:
            subscription.createdAt = created_at
        db_session.add(subscription)
        db_session.commit()
        return subscription

    return _make
