from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base, Tier
from settlement_system.config.programs import DEFAULT_TIERS
import config


def get_session(database_url: str = None):
    """Создает и возвращает фабрику сессий SQLAlchemy и движок базы данных"""
    database_url = database_url or config.DATABASE_URL
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    session_factory = sessionmaker(bind=engine)
    return session_factory, engine


def init_tables(engine):
    """Инициализирует таблицы базы данных"""
    Base.metadata.create_all(engine)


def seed_tiers(session) -> int:
    """Создает отсутствующие пакеты из DEFAULT_TIERS, возвращает количество новых"""
    existing = {level for (level,) in session.query(Tier.level).all()}
    created = 0

    for tier in DEFAULT_TIERS:
        if tier["level"] in existing:
            continue
        session.add(Tier(**tier))
        created += 1

    session.commit()
    return created


Session, _engine = get_session()
