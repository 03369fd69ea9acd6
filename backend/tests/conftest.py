import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from repairmargin.core.config import get_settings
from repairmargin.models.analysis import Base

# Never reach a real provider or webhook from the test suite.
os.environ["AI_EXTRACTION_PROVIDER"] = "mock"
os.environ["TEXT_EXTRACTION_WEBHOOK_URL"] = ""


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests patch env vars; never leak a cached Settings instance across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    db = sessionmaker(bind=engine)()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def ford_puma_text():
    path = os.path.join(os.path.dirname(__file__), "samples", "ford_puma_audatex.txt")
    with open(path, encoding="utf-8") as fh:
        return fh.read()
