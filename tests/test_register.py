from datetime import datetime

import pytest

from inventory import InventorySystem
from models import Product


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 10, 30))


@pytest.fixture
def shop(db, clock):
    system = InventorySystem(db, clock=clock)
    system.add_product(Product(id="p1", code="A001", name="Widget", has_discount=True,
                               discount_price=10.0, stock=50))
    return system


def sell(system, quantity, method):
    system.select_customer_type("1")
    system.add_to_cart("A001", quantity)
    return system.complete_sale(method)


def test_open_register(shop):
    result = shop.open_register(100)
    assert result
    assert shop.is_register_open
    assert shop.cash_register.initial_amount == 100
    assert shop.cash_register.opened_at == "2024-03-15T10:30:00"


def test_second_open_is_rejected_and_session_unchanged(shop):
    shop.open_register(100)
    session = shop.cash_register

    result = shop.open_register(50)

    assert not result
    assert result.message == "The cash register is already open"
    assert shop.cash_register is session


def test_negative_opening_float_is_rejected(shop):
    assert not shop.open_register(-1)
    assert not shop.is_register_open


def test_close_register_appends_history(shop, clock):
    shop.open_register(100)
    clock.now = datetime(2024, 3, 15, 20, 0)

    result = shop.close_register(180)

    assert result
    assert not shop.is_register_open
    history = shop.register_history()
    assert len(history) == 1
    assert history[0].final_amount == 180
    assert history[0].closed_at == "2024-03-15T20:00:00"


def test_close_when_closed_is_rejected(shop):
    result = shop.close_register(0)
    assert not result
    assert result.message == "The cash register is not open"
    assert shop.register_history() == []


def test_reopen_after_close_starts_new_session(shop):
    shop.open_register(10)
    first = shop.cash_register.id
    shop.close_register(10)
    assert shop.open_register(20)
    assert shop.cash_register.id != first
    assert len(shop.register_history()) == 1


def test_expected_cash_counts_only_cash_sales(shop):
    shop.open_register(100)
    sell(shop, 3, "cash")
    sell(shop, 2, "card")
    sell(shop, 1, "bizum")

    assert shop.today_sales_total() == 60.0
    assert shop.sales_by_payment_method() == {"cash": 30.0, "card": 20.0, "bizum": 10.0}
    assert shop.expected_cash() == 130.0
    assert shop.cash_variance(125.0) == -5.0
    assert shop.cash_variance(130.0) == 0.0


def test_expected_cash_ignores_other_days_and_sessions(shop, clock):
    shop.open_register(0)
    sell(shop, 1, "cash")
    shop.close_register(10)

    shop.open_register(50)
    sell(shop, 2, "cash")
    clock.now = datetime(2024, 3, 16, 9, 0)
    assert shop.expected_cash() == 50.0

    clock.now = datetime(2024, 3, 15, 21, 0)
    assert shop.expected_cash() == 70.0


def test_expected_cash_when_closed_is_zero(shop):
    assert shop.expected_cash() == 0.0
    assert shop.register_sales() == []


def test_sale_requires_open_register(shop):
    result = sell(shop, 1, "cash")
    assert not result
    assert shop.get_product("p1").stock == 50
