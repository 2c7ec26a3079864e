"""
Pytest fixtures for branch ledger backend tests.

Provides an in-memory database, seeded branches/users/products, and an
authenticated test client.
"""

import pytest
from branch_ledger import create_app
from branch_ledger.extensions import db
from branch_ledger.models import Branch, User, Product
from branch_ledger.services import session_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def branch(db_session):
    """Branch B: the selling branch."""
    b = Branch(name="Branch B", opening_balance_cents=0, cash_balance_cents=0)
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def other_branch(db_session):
    """Branch C: transfer destination / second cash drawer."""
    b = Branch(name="Branch C", opening_balance_cents=0, cash_balance_cents=0)
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def cashier(db_session, branch):
    user = User(username="cashier_b", full_name="Cashier B", branch_id=branch.id, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products: make_product(branch, quantity=10, price_cents=1000, name=..., model=...)."""
    counter = {"n": 0}

    def _make(branch, *, quantity=10, price_cents=1000, name=None, model=""):
        counter["n"] += 1
        product = Product(
            branch_id=branch.id,
            name=name or f"Product {counter['n']}",
            model=model,
            price_cents=price_cents,
            quantity=quantity,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product, branch):
    """Product P: quantity 10, price 1000 at branch B."""
    return make_product(branch, quantity=10, price_cents=1000, name="Phone", model="X1")


@pytest.fixture(scope='function')
def auth_headers(cashier):
    _, token = session_service.create_session(cashier.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def reload(db_session):
    """Re-read a row after another session (a request) changed it."""
    def _reload(obj):
        db_session.expire_all()
        return db_session.get(type(obj), obj.id)
    return _reload
