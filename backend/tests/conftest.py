"""
Pytest fixtures for forecourt backend tests.

Provides test database setup, a small station per tenant, caller contexts,
and a test client.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from forecourt import create_app
from forecourt.config import TestConfig
from forecourt.context import CallerContext
from forecourt.extensions import db
from forecourt.models import Attendant, BankAccount, Nozzle, Product, Tank


TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def build_station(session, tenant_id: str, rate: str = "95.50") -> SimpleNamespace:
    product = Product(tenant_id=tenant_id, name="Petrol", sales_rate=Decimal(rate))
    session.add(product)
    session.flush()

    tank = Tank(tenant_id=tenant_id, product_id=product.id, name="Tank 1")
    session.add(tank)
    session.flush()

    nozzle_1 = Nozzle(tenant_id=tenant_id, tank_id=tank.id, name="N1")
    nozzle_2 = Nozzle(tenant_id=tenant_id, tank_id=tank.id, name="N2")
    asha = Attendant(tenant_id=tenant_id, name="Asha")
    ravi = Attendant(tenant_id=tenant_id, name="Ravi")
    main_account = BankAccount(
        tenant_id=tenant_id,
        account_holder_name="Station",
        account_number=f"{tenant_id}-001",
        bank="First Bank",
    )
    savings_account = BankAccount(
        tenant_id=tenant_id,
        account_holder_name="Station",
        account_number=f"{tenant_id}-002",
        bank="Second Bank",
    )
    session.add_all([nozzle_1, nozzle_2, asha, ravi, main_account, savings_account])
    session.commit()

    return SimpleNamespace(
        tenant_id=tenant_id,
        product_id=product.id,
        tank_id=tank.id,
        nozzle_id=nozzle_1.id,
        nozzle_2_id=nozzle_2.id,
        asha_id=asha.id,
        ravi_id=ravi.id,
        bank_account_id=main_account.id,
        bank_account_2_id=savings_account.id,
    )


@pytest.fixture(scope='function')
def station(db_session):
    """Station in tenant A: one product, one tank, two nozzles, two attendants, two bank accounts."""
    return build_station(db_session, TENANT_A)


@pytest.fixture(scope='function')
def other_station(db_session):
    """Same layout in tenant B."""
    return build_station(db_session, TENANT_B)


@pytest.fixture(scope='function')
def admin_ctx():
    return CallerContext(tenant_id=TENANT_A, role="admin", user_id=900)


@pytest.fixture(scope='function')
def manager_ctx():
    return CallerContext(tenant_id=TENANT_A, role="manager", user_id=901)


@pytest.fixture(scope='function')
def attendant_ctx(station):
    """Asha acting on their own shifts."""
    return CallerContext(tenant_id=TENANT_A, role="attendant", user_id=station.asha_id)


@pytest.fixture(scope='function')
def tenant_b_admin_ctx():
    return CallerContext(tenant_id=TENANT_B, role="admin", user_id=950)


@pytest.fixture(scope='function')
def headers_for():
    """Gateway headers carrying a caller context."""
    def _headers(ctx: CallerContext) -> dict:
        headers = {"X-Tenant-Id": ctx.tenant_id, "X-Caller-Role": ctx.role}
        if ctx.user_id is not None:
            headers["X-Caller-Id"] = str(ctx.user_id)
        return headers
    return _headers
