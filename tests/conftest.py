import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import init_db
from storage import KeyValueStore


@pytest.fixture
def kv_store() -> KeyValueStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return KeyValueStore(sessionmaker(bind=engine, autoflush=False, autocommit=False))
