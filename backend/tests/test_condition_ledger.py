# Overview: Pytest coverage for the condition state machine.

"""
Condition Ledger Tests

Covers DEFECTIVE/FIXED/RETURN/EXCHANGE bucket moves, cash postings and
overrides, replacement products, sale links, statistics and condition
listings.
"""

from datetime import datetime

import pytest
from branch_ledger.errors import (
    AuthorizationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from branch_ledger.models import Branch, ConditionLog, Product
from branch_ledger.services import condition_service
from branch_ledger.services.condition_service import CashOverride
from branch_ledger.services.stock_ledger_service import LineItem, create_transaction
from branch_ledger.validation import parse_date_filters


@pytest.fixture
def q_product(make_product, branch):
    """Product Q: price 2000, 5 in store."""
    return make_product(branch, quantity=5, price_cents=2000, name="Headphones", model="Q")


def _apply(product, action, quantity, cashier, **kwargs):
    return condition_service.apply_condition_action(
        product_id=product.id,
        action_type=action,
        quantity=quantity,
        actor_user_id=cashier.id,
        **kwargs,
    )


def _cash(db_session, branch):
    return db_session.get(Branch, branch.id, populate_existing=True).cash_balance_cents


class TestDefectiveAndFixed:
    """Units move between in-store and defective with a matching cash write-off."""

    def test_defective_then_fixed_round_trip(self, db_session, branch, cashier, q_product):
        """DEFECTIVE 2 writes off 4000; FIXED 2 restores it and the shelf."""
        result = _apply(q_product, "DEFECTIVE", 2, cashier)

        assert result["log"].cash_amount_cents == -4000
        assert result["branch"].cash_balance_cents == -4000
        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.defective_quantity, q.status) == (3, 2, "IN_STORE")

        result = _apply(q_product, "FIXED", 2, cashier)

        assert result["log"].cash_amount_cents == 4000
        assert _cash(db_session, branch) == 0
        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.defective_quantity, q.status) == (5, 0, "IN_STORE")

    def test_defective_emptying_the_shelf(self, db_session, cashier, q_product):
        _apply(q_product, "DEFECTIVE", 5, cashier)
        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.defective_quantity, q.status) == (0, 5, "DEFECTIVE")

    def test_defective_more_than_in_store_changes_nothing(self, db_session, branch, cashier, q_product):
        with pytest.raises(InsufficientStockError):
            _apply(q_product, "DEFECTIVE", 6, cashier)

        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.defective_quantity) == (5, 0)
        assert _cash(db_session, branch) == 0
        assert db_session.query(ConditionLog).count() == 0

    def test_defective_from_sale_leaves_shelf_alone(self, db_session, cashier, q_product):
        _apply(q_product, "DEFECTIVE", 2, cashier, is_from_sale=True)
        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.defective_quantity) == (5, 2)
        assert db_session.query(ConditionLog).one().is_from_sale is True

    def test_fixed_floors_defective_counter(self, db_session, cashier, q_product):
        _apply(q_product, "DEFECTIVE", 1, cashier)
        _apply(q_product, "FIXED", 3, cashier)
        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.defective_quantity) == (7, 0)

    def test_mark_as_fixed(self, db_session, branch, cashier, q_product):
        _apply(q_product, "DEFECTIVE", 2, cashier)
        result = condition_service.mark_as_fixed(q_product.id, 1, actor_user_id=cashier.id)

        assert result["log"].action_type == "FIXED"
        assert result["log"].description == "Marked as fixed"
        assert _cash(db_session, branch) == -2000

    def test_cash_override_not_allowed_for_defective(self, db_session, cashier, q_product):
        with pytest.raises(ValidationError):
            _apply(q_product, "DEFECTIVE", 1, cashier, cash_override=CashOverride(100, "PLUS"))
        assert db_session.get(Product, q_product.id, populate_existing=True).quantity == 5


class TestReturnsAndExchanges:
    """Restocking actions with default and overridden cash."""

    def test_return_refunds_by_default(self, db_session, branch, cashier, q_product):
        result = _apply(q_product, "RETURN", 1, cashier)

        assert result["log"].cash_amount_cents == -2000
        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.returned_quantity, q.status) == (6, 1, "RETURNED")
        assert _cash(db_session, branch) == -2000

    def test_return_with_override(self, db_session, branch, cashier, q_product):
        result = _apply(q_product, "RETURN", 1, cashier, cash_override=CashOverride(500, "minus"))
        assert result["log"].cash_amount_cents == -500
        assert _cash(db_session, branch) == -500

    def test_invalid_override_direction(self, db_session, cashier, q_product):
        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 1, cashier, cash_override=CashOverride(500, "SIDEWAYS"))

    def test_exchange_with_replacement(self, db_session, branch, cashier, q_product, make_product):
        """EXCHANGE 1 with replacement R: Q exchanged +1 and in-store +1, R in-store -1."""
        r_product = make_product(branch, quantity=2, price_cents=2500)

        result = _apply(
            q_product,
            "EXCHANGE",
            1,
            cashier,
            replacement_product_id=r_product.id,
            replacement_quantity=1,
            cash_override=CashOverride(500, "PLUS"),
        )

        q = db_session.get(Product, q_product.id, populate_existing=True)
        r = db_session.get(Product, r_product.id, populate_existing=True)
        assert (q.quantity, q.exchanged_quantity, q.status) == (6, 1, "EXCHANGED")
        assert r.quantity == 1
        assert result["replacement_product"].id == r_product.id
        assert result["log"].replacement_product_id == r_product.id
        assert result["log"].replacement_quantity == 1
        assert _cash(db_session, branch) == 500

    def test_exchange_without_replacement_stock_changes_nothing(self, db_session, branch, cashier, q_product, make_product):
        r_product = make_product(branch, quantity=0, price_cents=2500)

        with pytest.raises(InsufficientStockError):
            _apply(q_product, "EXCHANGE", 1, cashier, replacement_product_id=r_product.id, replacement_quantity=1)

        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.exchanged_quantity, q.status) == (5, 0, "IN_STORE")
        assert db_session.get(Product, r_product.id, populate_existing=True).quantity == 0
        assert _cash(db_session, branch) == 0
        assert db_session.query(ConditionLog).count() == 0

    def test_exchange_replacement_quantity_defaults_to_quantity(self, db_session, branch, cashier, q_product, make_product):
        r_product = make_product(branch, quantity=4)
        result = _apply(q_product, "EXCHANGE", 2, cashier, replacement_product_id=r_product.id)
        assert result["log"].replacement_quantity == 2
        assert db_session.get(Product, r_product.id, populate_existing=True).quantity == 2

    def test_replacement_only_for_exchange(self, db_session, branch, cashier, q_product, make_product):
        r_product = make_product(branch, quantity=4)
        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 1, cashier, replacement_product_id=r_product.id)

    def test_unknown_replacement(self, db_session, cashier, q_product):
        with pytest.raises(NotFoundError):
            _apply(q_product, "EXCHANGE", 1, cashier, replacement_product_id=99999)
        assert db_session.get(Product, q_product.id, populate_existing=True).quantity == 5

    def test_replacement_from_another_branch_is_not_found(self, db_session, branch, other_branch, cashier, q_product, make_product):
        """The replacement must come off the shelf of the branch the exchange is booked to."""
        foreign = make_product(other_branch, quantity=3)

        with pytest.raises(NotFoundError):
            _apply(q_product, "EXCHANGE", 1, cashier, replacement_product_id=foreign.id)

        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.exchanged_quantity) == (5, 0)
        assert db_session.get(Product, foreign.id, populate_existing=True).quantity == 3
        assert _cash(db_session, branch) == 0
        assert db_session.query(ConditionLog).count() == 0


    def test_explicit_branch_receives_cash(self, db_session, branch, other_branch, cashier, q_product):
        _apply(q_product, "RETURN", 1, cashier, branch_id=other_branch.id)
        assert _cash(db_session, other_branch) == -2000
        assert _cash(db_session, branch) == 0


class TestReferences:
    """Unknown actions and missing references."""

    def test_unknown_action(self, db_session, cashier, q_product):
        with pytest.raises(ValidationError):
            _apply(q_product, "LOST", 1, cashier)

    def test_missing_product(self, db_session, cashier):
        with pytest.raises(NotFoundError):
            condition_service.apply_condition_action(
                product_id=99999, action_type="RETURN", quantity=1, actor_user_id=cashier.id
            )

    def test_missing_branch(self, db_session, cashier, q_product):
        with pytest.raises(NotFoundError):
            _apply(q_product, "RETURN", 1, cashier, branch_id=99999)
        assert db_session.get(Product, q_product.id, populate_existing=True).quantity == 5

    def test_missing_actor(self, db_session, q_product):
        with pytest.raises(AuthorizationError):
            condition_service.apply_condition_action(
                product_id=q_product.id, action_type="RETURN", quantity=1, actor_user_id=None
            )

    def test_non_positive_quantity(self, db_session, cashier, q_product):
        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 0, cashier)


class TestSaleLink:
    """Condition actions tied to the sale the units came from."""

    def test_return_against_sale(self, db_session, branch, cashier, q_product):
        sale = create_transaction(
            type="SALE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=q_product.id, quantity=2)],
            actor_user_id=cashier.id,
        )

        result = _apply(q_product, "RETURN", 2, cashier, is_from_sale=True, transaction_id=sale.id)

        assert result["log"].transaction_id == sale.id
        assert db_session.get(Product, q_product.id, populate_existing=True).quantity == 5

    def test_return_more_than_sold(self, db_session, branch, cashier, q_product):
        sale = create_transaction(
            type="SALE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=q_product.id, quantity=1)],
            actor_user_id=cashier.id,
        )
        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 2, cashier, is_from_sale=True, transaction_id=sale.id)

    def test_product_not_in_sale(self, db_session, branch, cashier, q_product, make_product):
        other = make_product(branch, quantity=3)
        sale = create_transaction(
            type="SALE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=other.id, quantity=1)],
            actor_user_id=cashier.id,
        )
        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 1, cashier, transaction_id=sale.id)

    def test_unknown_sale(self, db_session, cashier, q_product):
        with pytest.raises(NotFoundError):
            _apply(q_product, "RETURN", 1, cashier, transaction_id=99999)

    def test_linked_actions_share_the_sold_quantity(self, db_session, branch, cashier, q_product):
        """Sold 2: a RETURN of 1 and a DEFECTIVE of 1 use it up; a further RETURN is refused."""
        sale = create_transaction(
            type="SALE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=q_product.id, quantity=2)],
            actor_user_id=cashier.id,
        )
        _apply(q_product, "RETURN", 1, cashier, is_from_sale=True, transaction_id=sale.id)
        _apply(q_product, "DEFECTIVE", 1, cashier, is_from_sale=True, transaction_id=sale.id)
        cash_before = _cash(db_session, branch)

        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 1, cashier, is_from_sale=True, transaction_id=sale.id)

        q = db_session.get(Product, q_product.id, populate_existing=True)
        assert (q.quantity, q.returned_quantity, q.defective_quantity) == (4, 1, 1)
        assert _cash(db_session, branch) == cash_before
        assert db_session.query(ConditionLog).filter_by(transaction_id=sale.id).count() == 2

    def test_repeated_full_return_is_refused(self, db_session, branch, cashier, q_product):
        sale = create_transaction(
            type="SALE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=q_product.id, quantity=2)],
            actor_user_id=cashier.id,
        )
        _apply(q_product, "RETURN", 2, cashier, is_from_sale=True, transaction_id=sale.id)

        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 2, cashier, is_from_sale=True, transaction_id=sale.id)

        assert db_session.get(Product, q_product.id, populate_existing=True).quantity == 5
        assert _cash(db_session, branch) == -4000

    def test_fixed_does_not_use_up_the_sale(self, db_session, branch, cashier, q_product):
        sale = create_transaction(
            type="SALE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=q_product.id, quantity=1)],
            actor_user_id=cashier.id,
        )
        _apply(q_product, "DEFECTIVE", 1, cashier, is_from_sale=True, transaction_id=sale.id)
        result = _apply(q_product, "FIXED", 1, cashier, transaction_id=sale.id)
        assert result["log"].transaction_id == sale.id

    def test_link_to_purchase_is_rejected(self, db_session, branch, cashier, q_product):
        purchase = create_transaction(
            type="PURCHASE",
            from_branch_id=branch.id,
            items=[LineItem(product_id=q_product.id, quantity=2)],
            actor_user_id=cashier.id,
        )

        with pytest.raises(ValidationError):
            _apply(q_product, "RETURN", 1, cashier, is_from_sale=True, transaction_id=purchase.id)

        assert db_session.get(Product, q_product.id, populate_existing=True).quantity == 7
        assert db_session.query(ConditionLog).count() == 0



class TestReporting:
    """Statistics, log listings and products by condition."""

    def _backdate(self, db_session, log, when):
        row = db_session.get(ConditionLog, log.id)
        row.created_at = when
        db_session.commit()

    def test_statistics_include_every_action(self, db_session, cashier, q_product):
        _apply(q_product, "DEFECTIVE", 2, cashier)
        _apply(q_product, "RETURN", 1, cashier)
        _apply(q_product, "RETURN", 1, cashier)

        stats = condition_service.condition_statistics()

        assert stats["DEFECTIVE"] == {"quantity": 2, "cash_amount_cents": -4000, "count": 1}
        assert stats["RETURN"] == {"quantity": 2, "cash_amount_cents": -4000, "count": 2}
        assert stats["FIXED"] == {"quantity": 0, "cash_amount_cents": 0, "count": 0}
        assert stats["EXCHANGE"] == {"quantity": 0, "cash_amount_cents": 0, "count": 0}
        assert stats["total_cash_flow_cents"] == -8000

    def test_statistics_filtered_by_branch_and_dates(self, db_session, branch, other_branch, cashier, q_product):
        old = _apply(q_product, "RETURN", 1, cashier)["log"]
        _apply(q_product, "RETURN", 1, cashier)
        _apply(q_product, "RETURN", 1, cashier, branch_id=other_branch.id)
        self._backdate(db_session, old, datetime(2025, 1, 10, 12, 0))

        start, end = parse_date_filters("2025-01-01", "2025-01-31")
        window = condition_service.condition_statistics(start=start, end=end)
        assert window["RETURN"]["count"] == 1

        at_branch = condition_service.condition_statistics(branch_id=other_branch.id)
        assert at_branch["RETURN"]["count"] == 1
        assert at_branch["total_cash_flow_cents"] == -2000

    def test_list_logs_filters(self, db_session, cashier, q_product):
        _apply(q_product, "DEFECTIVE", 1, cashier)
        _apply(q_product, "RETURN", 1, cashier)

        assert [log.action_type for log in condition_service.list_condition_logs(action_type="DEFECTIVE")] == ["DEFECTIVE"]
        assert len(condition_service.list_condition_logs_for_product(q_product.id)) == 2

        with pytest.raises(ValidationError):
            condition_service.list_condition_logs(action_type="LOST")

    def test_products_by_condition(self, db_session, branch, cashier, q_product, make_product):
        broken = make_product(branch, quantity=1)
        _apply(broken, "DEFECTIVE", 1, cashier)
        _apply(q_product, "RETURN", 1, cashier)

        assert [p.id for p in condition_service.list_products_by_condition("DEFECTIVE")] == [broken.id]
        assert [p.id for p in condition_service.list_products_by_condition("RETURNED", branch_id=branch.id)] == [q_product.id]

        with pytest.raises(ValidationError):
            condition_service.list_products_by_condition("IN_STORE")

    def test_get_missing_log(self, db_session):
        with pytest.raises(NotFoundError):
            condition_service.get_condition_log(99999)
