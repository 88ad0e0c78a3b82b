import os

import pytest
from fastapi.testclient import TestClient

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
# Enable insecure dev auth globally for tests so X-User-ID / X-Admin-ID headers are accepted.
# Security tests that need to verify auth rejection will patch settings directly.
os.environ["ALLOW_INSECURE_DEV_AUTH"] = "true"
os.environ["REDIS_URL"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LEDGER_RETRY_BACKOFF_SECONDS"] = "0"

from coinledger import ledger, models, slabs  # noqa: E402
from coinledger.database import Base, SessionLocal, engine  # noqa: E402
from coinledger.main import app  # noqa: E402


DEFAULT_SLABS = [
    {"min_coins": 0, "max_coins": 999, "payout_percentage": 50},
    {"min_coins": 1000, "max_coins": 4999, "payout_percentage": 60},
    {"min_coins": 5000, "max_coins": None, "payout_percentage": 70},
]


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def default_slabs(db_session):
    return slabs.replace_slabs(db_session, admin_id="admin-1", slabs=DEFAULT_SLABS)


@pytest.fixture()
def fund(db_session):
    def _fund(user_id: str, amount: int) -> models.LedgerTransaction:
        return ledger.credit(
            db_session,
            user_id=user_id,
            amount=amount,
            tx_type=models.TX_ADJUSTMENT,
            description="test funding",
        )

    return _fund
