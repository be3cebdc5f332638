from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from mediz.application.services.entitlement import EntitlementResolver
from mediz.application.services.plan_catalog import PlanCatalog
from mediz.application.services.reconciler import Reconciler
from mediz.application.services.subscription_ledger import SubscriptionLedger
from mediz.core.app_factory import create_application
from mediz.core.config import Settings
from mediz.domain.models import PlanAttributes
from mediz.infrastructure.persistence.sqlite import SQLitePersistence

from helpers import ADMIN_EMAIL, ADMIN_PASSWORD, HOTMART_HOTTOK, STRIPE_WEBHOOK_SECRET


_ENV_KEYS = (
    "DATABASE_PATH",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "HOTMART_HOTTOK",
    "HOTMART_PRODUCT_ID",
    "HOTMART_AUTO_PROVISION_USERS",
    "ENFORCE_EVENT_ORDERING",
    "ADMIN_TOKEN_SECRET",
    "ADMIN_TOKEN_EXP_MINUTES",
    "ADMIN_EMAIL",
    "ADMIN_PASSWORD",
    "CORS_ALLOW_ORIGINS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the developer's shell and any local .env file."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def persistence(tmp_path: Path) -> Iterator[SQLitePersistence]:
    gateway = SQLitePersistence(tmp_path / "billing.db")
    yield gateway
    gateway.close()


@pytest.fixture
def catalog(persistence: SQLitePersistence) -> PlanCatalog:
    return PlanCatalog(persistence)


@pytest.fixture
def ledger(persistence: SQLitePersistence) -> SubscriptionLedger:
    return SubscriptionLedger(persistence)


@pytest.fixture
def reconciler(catalog, ledger, persistence) -> Reconciler:
    return Reconciler(catalog, ledger, persistence)


@pytest.fixture
def resolver(ledger, persistence) -> EntitlementResolver:
    return EntitlementResolver(ledger, persistence)


@pytest.fixture
def user(persistence):
    return persistence.create_user(email="paciente@mediz.com.br", name="Paciente", stripe_customer_id="cus_123")


@pytest.fixture
def other_user(persistence):
    return persistence.create_user(email="outro@mediz.com.br", stripe_customer_id="cus_456")


@pytest.fixture
def monthly_plan(catalog):
    return catalog.upsert_plan(
        "price_monthly",
        PlanAttributes(name="Mensal", currency="brl", interval="month", amount=2990),
    )


@pytest.fixture
def yearly_plan(catalog):
    return catalog.upsert_plan(
        "price_yearly",
        PlanAttributes(name="Anual", currency="BRL", interval="YEAR", amount=29900),
    )


@pytest.fixture
def hotmart_plan(catalog):
    return catalog.upsert_plan(
        "offer_month",
        PlanAttributes(name="Mensal Hotmart", currency="BRL", interval="MONTH", amount=2990),
        id_kind="hotmart_offer_key",
    )


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    db_path = tmp_path / "app" / "billing.db"
    monkeypatch.setenv("DATABASE_PATH", str(db_path))
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", STRIPE_WEBHOOK_SECRET)
    monkeypatch.setenv("HOTMART_HOTTOK", HOTMART_HOTTOK)
    monkeypatch.setenv("ADMIN_TOKEN_SECRET", "test-token-secret")
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    return db_path


@pytest.fixture
def client(app_env) -> Iterator[TestClient]:
    app = create_application(Settings())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def container(client):
    return client.app.state.container


@pytest.fixture
def admin_headers(client) -> dict:
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
