"""
Pytest fixtures for the inventory tests.

Every test gets its own SQLite key-value store under tmp_path.
"""

import pytest

from database import Database
from inventory import InventorySystem
from models import Product, Supplier


@pytest.fixture
def db(tmp_path):
    """Fresh key-value store for each test."""
    database = Database(str(tmp_path / "inventory.db"))
    yield database
    database.close()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def system(db, notifications):
    """Inventory system with default customer types and nothing else."""
    return InventorySystem(db, notify=lambda level, message: notifications.append((level, message)))


@pytest.fixture
def supplier(system):
    s = Supplier(id="s1", name="Acme Wholesale", contact_name="Ana", phone="600000000")
    system.add_supplier(s)
    return s


@pytest.fixture
def stocked(system, supplier):
    """
    Two discounted products (unit prices 10 and 5) and one priced by margin,
    with the Habitual tier selected.
    """
    system.add_product(Product(id="p1", code="A001", name="Widget", purchase_price=6.0,
                               has_discount=True, discount_price=10.0, stock=10,
                               supplier_id=supplier.id, category="Tools"))
    system.add_product(Product(id="p2", code="A002", name="Gadget", purchase_price=3.0,
                               has_discount=True, discount_price=5.0, stock=4,
                               has_vat=False, supplier_id=supplier.id, category="Tools"))
    system.add_product(Product(id="p3", code="B001", name="Cable", purchase_price=2.0,
                               stock=20, supplier_id=supplier.id, category="Electrical"))
    system.select_customer_type("1")
    return system
