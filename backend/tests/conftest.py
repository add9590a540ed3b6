"""
Pytest fixtures for back office tests.

Provides test database setup (in-memory SQLite, foreign keys enforced),
branch/user/product/inventory fixtures, request contexts, and identity
headers for the test client.
"""

import pytest
from sqlalchemy import select

from backoffice import create_app
from backoffice.context import ROLE_EMPLOYEE, ROLE_OWNER, Identity, RequestContext
from backoffice.extensions import db
from backoffice.models import Branch, Inventory, Product, User


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ADMIN_TOOLS_ENABLED': True,
        'TRUST_IDENTITY_HEADERS': True,
        'DEPENDENT_SAMPLE_LIMIT': 5,
        'CRITICAL_TABLES': ('users', 'branches'),
    })

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


@pytest.fixture(scope='function')
def main_branch(db_session):
    branch = Branch(name="Main Branch", address="1 High St")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def north_branch(db_session):
    branch = Branch(name="North Branch")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def owner(db_session):
    user = User(email="owner@test.local", full_name="Olive Owner", role=ROLE_OWNER, password_hash="x")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def employee(db_session, main_branch):
    user = User(
        email="clerk@test.local",
        full_name="Main Clerk",
        role=ROLE_EMPLOYEE,
        branch_id=main_branch.id,
        password_hash="x",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def north_employee(db_session, north_branch):
    user = User(
        email="north@test.local",
        full_name="North Clerk",
        role=ROLE_EMPLOYEE,
        branch_id=north_branch.id,
        password_hash="x",
    )
    db_session.add(user)
    db_session.commit()
    return user


def make_context(user, ip_address="127.0.0.1") -> RequestContext:
    return RequestContext(identity=Identity.from_user(user), ip_address=ip_address)


@pytest.fixture(scope='function')
def owner_ctx(owner):
    return make_context(owner)


@pytest.fixture(scope='function')
def employee_ctx(employee):
    return make_context(employee)


@pytest.fixture(scope='function')
def north_ctx(north_employee):
    return make_context(north_employee)


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(sku="SKU-001", name="Blue Mug", price_cents=1500, cost_cents=600)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session):
    product = Product(sku="SKU-002", name="Red Plate", price_cents=900)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stocked(db_session, product, main_branch):
    """10 Blue Mugs on hand at the main branch."""
    row = Inventory(product_id=product.id, branch_id=main_branch.id, quantity=10)
    db_session.add(row)
    db_session.commit()
    return row


def quantity_of(product_id: int, branch_id: int) -> int:
    """Read straight from the store, bypassing the identity map."""
    qty = db.session.execute(
        select(Inventory.quantity).where(Inventory.product_id == product_id, Inventory.branch_id == branch_id)
    ).scalar_one_or_none()
    return qty or 0


def identity_headers(user) -> dict:
    """Helper to create gateway identity headers for a user."""
    headers = {
        'X-User-Id': str(user.id),
        'X-User-Role': user.role,
        'X-User-Email': user.email,
    }
    if user.branch_id is not None:
        headers['X-Branch-Id'] = str(user.branch_id)
    return headers


@pytest.fixture(scope='function')
def owner_headers(owner):
    return identity_headers(owner)


@pytest.fixture(scope='function')
def employee_headers(employee):
    return identity_headers(employee)
