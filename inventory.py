# inventory.py
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Optional

from database import Database
from logger import get_logger
from models import (
    DEFAULT_LOW_STOCK_THRESHOLD, DEFAULT_PRODUCT_MARGINS, MARGIN_KEYS,
    Cart, CartItem, CashRegister, CompanyInfo, Customer, CustomerType,
    PaymentMethod, Product, Purchase, Sale, Supplier,
    default_company_info, default_customer_types, new_id,
)
from utils import EXPORT_VERSION, calculate_vat

logger = get_logger("inventory")


class ValidationError(ValueError):
    """A precondition of an operation does not hold."""


@dataclass
class OperationResult:
    """Outcome of a mutation: success flag, user-facing message, optional value."""
    success: bool
    message: str
    value: Any = None

    def __bool__(self):
        return self.success


def operation(func):
    """Turn a ValidationError raised before any mutation into a rejected result."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except ValidationError as e:
            return self._reject(str(e))
    return wrapper


def _index_of(records, record_id):
    for i, record in enumerate(records):
        if record.id == record_id:
            return i
    return -1


def _load_stored(db: Database, key: str, decode, default):
    """Decode the value under key; a missing or corrupt value yields default()."""
    raw = db.load_data(key, None)
    if raw is None:
        return default()
    try:
        return decode(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Stored {key} could not be decoded, using defaults: {e}")
        return default()


def _many(cls):
    return lambda raw: [cls.model_validate(item) for item in raw]


def _threshold(raw) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValueError(f"invalid threshold {raw!r}")
    return raw


class InventorySystem:
    """
    Owns every business collection in memory, persists each collection to the
    key-value store after it changes, and derives cart totals, low-stock sets
    and register reconciliation on demand.

    Mutations never raise for rule violations; they return an OperationResult
    and, when a notify(level, message) callback is given, report through it.
    """
    def __init__(self, db: Database, config=None,
                 notify: Optional[Callable[[str, str], None]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.config = config or {}
        self.notify = notify
        self.clock = clock or datetime.now
        self.cart = Cart()
        self.selected_customer_type: Optional[CustomerType] = None
        self.selected_customer: Optional[Customer] = None
        self._load()

    # ------------------------------------------------------------------
    # Persistence plumbing
    # ------------------------------------------------------------------
    def _load(self):
        """Initialise every collection from the last saved snapshot."""
        inv_config = self.config.get("inventory", {})
        self.products = _load_stored(self.db, "products", _many(Product), list)
        self.suppliers = _load_stored(self.db, "suppliers", _many(Supplier), list)
        self.customers = _load_stored(self.db, "customers", _many(Customer), list)
        self.customer_types = _load_stored(self.db, "customerTypes", _many(CustomerType),
                                           default_customer_types)
        self.sales = _load_stored(self.db, "sales", _many(Sale), list)
        self.purchases = _load_stored(self.db, "purchases", _many(Purchase), list)
        self.cash_register = _load_stored(self.db, "currentRegister",
                                          CashRegister.model_validate, lambda: None)
        self.low_stock_threshold = _load_stored(
            self.db, "lowStockThreshold", _threshold,
            lambda: inv_config.get("low_stock_threshold", DEFAULT_LOW_STOCK_THRESHOLD))
        self.company_info = _load_stored(self.db, "companyInfo",
                                         CompanyInfo.model_validate, default_company_info)
        logger.debug(f"Loaded {len(self.products)} products, {len(self.sales)} sales")

    def _serialize(self, key: str):
        if key == "currentRegister":
            return self.cash_register.dump() if self.cash_register else None
        if key == "lowStockThreshold":
            return self.low_stock_threshold
        if key == "companyInfo":
            return self.company_info.dump()
        attr_name = {
            "products": "products",
            "suppliers": "suppliers",
            "customers": "customers",
            "customerTypes": "customer_types",
            "sales": "sales",
            "purchases": "purchases",
        }[key]
        return [record.dump() for record in getattr(self, attr_name)]

    def _persist(self, *keys):
        # write failures are logged by the store; memory stays authoritative
        for key in keys:
            self.db.save_data(key, self._serialize(key))

    def _now(self) -> str:
        return self.clock().isoformat(timespec='seconds')

    def _ok(self, message: str, value=None) -> OperationResult:
        logger.info(message)
        if self.notify:
            self.notify("success", message)
        return OperationResult(True, message, value)

    def _reject(self, message: str) -> OperationResult:
        logger.warning(message)
        if self.notify:
            self.notify("error", message)
        return OperationResult(False, message)

    def _require_product(self, product_id: str) -> int:
        i = _index_of(self.products, product_id)
        if i < 0:
            raise ValidationError("Product not found")
        return i

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------
    def get_product(self, product_id: str) -> Optional[Product]:
        i = _index_of(self.products, product_id)
        return self.products[i] if i >= 0 else None

    def find_product_by_code(self, code: str) -> Optional[Product]:
        return next((p for p in self.products if p.code == code), None)

    @operation
    def add_product(self, product: Product) -> OperationResult:
        if self.find_product_by_code(product.code) is not None:
            raise ValidationError("A product with that code already exists")
        if product.profit_margins is None:
            product = product.model_copy(update={"profit_margins": dict(DEFAULT_PRODUCT_MARGINS)})
        self.products = self.products + [product]
        self._persist("products")
        return self._ok("Product added", product)

    @operation
    def update_product(self, product: Product) -> OperationResult:
        i = self._require_product(product.id)
        if any(p.id != product.id and p.code == product.code for p in self.products):
            raise ValidationError("Another product already uses that code")
        product = product.model_copy(update={"updated_at": self._now()})
        products = list(self.products)
        products[i] = product
        self.products = products
        self._persist("products")
        return self._ok("Product updated", product)

    @operation
    def delete_product(self, product_id: str) -> OperationResult:
        # no check against sales or cart lines referencing the product
        self._require_product(product_id)
        self.products = [p for p in self.products if p.id != product_id]
        self._persist("products")
        return self._ok("Product deleted")

    @operation
    def update_product_prices(self, product_id: str, supplier_id: str, price: float) -> OperationResult:
        i = self._require_product(product_id)
        product = self.products[i]
        products = list(self.products)
        products[i] = product.model_copy(update={"prices": {**product.prices, supplier_id: price}})
        self.products = products
        self._persist("products")
        return self._ok("Supplier price updated", products[i])

    @operation
    def update_product_profit_margins(self, product_id: str, margins: dict) -> OperationResult:
        i = self._require_product(product_id)
        unknown = set(margins) - set(MARGIN_KEYS)
        if unknown:
            raise ValidationError(f"Unknown margin keys: {', '.join(sorted(unknown))}")
        products = list(self.products)
        products[i] = products[i].model_copy(update={"profit_margins": dict(margins)})
        self.products = products
        self._persist("products")
        return self._ok("Profit margins updated", products[i])

    @operation
    def set_product_tier_margin(self, product_id: str, tier_id: str,
                                margin: Optional[float]) -> OperationResult:
        """Set (or clear, with margin=None) a tier-id keyed margin override."""
        i = self._require_product(product_id)
        if _index_of(self.customer_types, tier_id) < 0:
            raise ValidationError("Customer type not found")
        tier_margins = dict(self.products[i].tier_margins)
        if margin is None:
            tier_margins.pop(tier_id, None)
        else:
            tier_margins[tier_id] = margin
        products = list(self.products)
        products[i] = products[i].model_copy(update={"tier_margins": tier_margins})
        self.products = products
        self._persist("products")
        return self._ok("Customer type margin updated", products[i])

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------
    @operation
    def add_supplier(self, supplier: Supplier) -> OperationResult:
        self.suppliers = self.suppliers + [supplier]
        self._persist("suppliers")
        return self._ok("Supplier added", supplier)

    @operation
    def update_supplier(self, supplier: Supplier) -> OperationResult:
        i = _index_of(self.suppliers, supplier.id)
        if i < 0:
            raise ValidationError("Supplier not found")
        suppliers = list(self.suppliers)
        suppliers[i] = supplier
        self.suppliers = suppliers
        self._persist("suppliers")
        return self._ok("Supplier updated", supplier)

    @operation
    def delete_supplier(self, supplier_id: str) -> OperationResult:
        # products may keep pointing at a deleted supplier
        if _index_of(self.suppliers, supplier_id) < 0:
            raise ValidationError("Supplier not found")
        self.suppliers = [s for s in self.suppliers if s.id != supplier_id]
        self._persist("suppliers")
        return self._ok("Supplier deleted")

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    @operation
    def add_customer(self, customer: Customer) -> OperationResult:
        self.customers = self.customers + [customer]
        self._persist("customers")
        return self._ok("Customer added", customer)

    @operation
    def update_customer(self, customer: Customer) -> OperationResult:
        """Replace a customer, recomputing purchase statistics from sales history."""
        i = _index_of(self.customers, customer.id)
        if i < 0:
            raise ValidationError("Customer not found")
        customer_sales = [s for s in self.sales if s.customer_id == customer.id]
        last_purchase = max((s.date for s in customer_sales), default=None)
        customer = customer.model_copy(update={
            "total_purchases": sum(s.total for s in customer_sales),
            "last_purchase_date": last_purchase,
            "updated_at": self._now(),
        })
        customers = list(self.customers)
        customers[i] = customer
        self.customers = customers
        self._persist("customers")
        return self._ok("Customer updated", customer)

    @operation
    def delete_customer(self, customer_id: str) -> OperationResult:
        if _index_of(self.customers, customer_id) < 0:
            raise ValidationError("Customer not found")
        self.customers = [c for c in self.customers if c.id != customer_id]
        self._persist("customers")
        return self._ok("Customer deleted")

    # ------------------------------------------------------------------
    # Customer types
    # ------------------------------------------------------------------
    def get_customer_type(self, type_id: str) -> Optional[CustomerType]:
        i = _index_of(self.customer_types, type_id)
        return self.customer_types[i] if i >= 0 else None

    @operation
    def add_customer_type(self, customer_type: CustomerType) -> OperationResult:
        self.customer_types = self.customer_types + [customer_type]
        self._persist("customerTypes")
        return self._ok("Customer type added", customer_type)

    @operation
    def update_customer_type(self, customer_type: CustomerType) -> OperationResult:
        i = _index_of(self.customer_types, customer_type.id)
        if i < 0:
            raise ValidationError("Customer type not found")
        types = list(self.customer_types)
        types[i] = customer_type
        self.customer_types = types
        self._persist("customerTypes")
        return self._ok("Customer type updated", customer_type)

    @operation
    def delete_customer_type(self, type_id: str) -> OperationResult:
        if _index_of(self.customer_types, type_id) < 0:
            raise ValidationError("Customer type not found")
        in_use = (any(c.customer_type_id == type_id for c in self.customers)
                  or any(s.customer_type and s.customer_type.id == type_id for s in self.sales))
        if in_use:
            raise ValidationError("Cannot delete a customer type that is in use")
        self.customer_types = [t for t in self.customer_types if t.id != type_id]
        self._persist("customerTypes")
        return self._ok("Customer type deleted")

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------
    @operation
    def select_customer_type(self, customer_type=None) -> OperationResult:
        """Select the pricing tier by record or id; None deselects."""
        if customer_type is not None:
            type_id = customer_type.id if isinstance(customer_type, CustomerType) else customer_type
            customer_type = self.get_customer_type(type_id)
            if customer_type is None:
                raise ValidationError("Customer type not found")
        self.selected_customer_type = customer_type
        return OperationResult(True, "Customer type selected", customer_type)

    @operation
    def select_customer(self, customer=None) -> OperationResult:
        """Select the customer by record or id; None deselects."""
        if customer is not None:
            customer_id = customer.id if isinstance(customer, Customer) else customer
            i = _index_of(self.customers, customer_id)
            if i < 0:
                raise ValidationError("Customer not found")
            customer = self.customers[i]
        self.selected_customer = customer
        return OperationResult(True, "Customer selected", customer)

    @operation
    def add_to_cart(self, product_code: str, quantity: int = 1) -> OperationResult:
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        product = self.find_product_by_code(product_code)
        if product is None:
            raise ValidationError("Product not found")

        existing = self.cart.index_of(product.id)
        in_cart = self.cart[existing].quantity if existing >= 0 else 0
        if product.stock < in_cart + quantity:
            raise ValidationError("Insufficient stock")

        tier = self.selected_customer_type
        if tier is None:
            raise ValidationError("Select a customer type")

        item = CartItem(
            product_id=product.id,
            code=product.code,
            name=product.name,
            price=product.unit_price_for(tier),
            quantity=quantity,
            has_vat=product.has_vat,
        )
        # an existing line keeps its price and only grows in quantity
        self.cart.add_item(item)
        return self._ok("Product added to cart", self.cart[self.cart.index_of(product.id)])

    @operation
    def update_cart_item(self, index: int, quantity: int) -> OperationResult:
        if index < 0 or index >= len(self.cart):
            raise ValidationError("Cart line not found")
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        item = self.cart[index]
        product = self.get_product(item.product_id)
        if product is None:
            raise ValidationError("Product not found")
        if product.stock < quantity:
            raise ValidationError("Insufficient stock")
        item.quantity = quantity
        return OperationResult(True, "Cart updated", item)

    @operation
    def remove_from_cart(self, index: int) -> OperationResult:
        if index < 0 or index >= len(self.cart):
            raise ValidationError("Cart line not found")
        self.cart.remove_item(index)
        return self._ok("Product removed from cart")

    def clear_cart(self) -> OperationResult:
        self.cart.clear()
        self.selected_customer_type = None
        self.selected_customer = None
        return OperationResult(True, "Cart cleared")

    @property
    def cart_total(self) -> float:
        return self.cart.total

    @property
    def cart_vat(self) -> float:
        return calculate_vat(self.cart.taxable_total)

    @property
    def cart_total_with_vat(self) -> float:
        return self.cart_total + self.cart_vat

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------
    @operation
    def complete_sale(self, payment_method, notes: str = "") -> OperationResult:
        """
        Turn the cart into a Sale. Every resulting collection (sales, product
        stock, customer statistics) is computed first and committed together;
        a failed precondition leaves all state untouched.
        """
        try:
            payment_method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {payment_method}") from None
        if not self.is_register_open:
            raise ValidationError("The cash register is closed")
        if len(self.cart) == 0:
            raise ValidationError("The cart is empty")
        if self.selected_customer_type is None:
            raise ValidationError("Select a customer type")

        total = self.cart_total
        sale = Sale(
            items=[item.model_copy() for item in self.cart],
            total=total,
            customer_type=self.selected_customer_type.model_copy(),
            customer_id=self.selected_customer.id if self.selected_customer else None,
            payment_method=payment_method,
            cash_register_id=self.cash_register.id,
            notes=notes or "",
            date=self._now(),
        )

        sold = {}
        for item in sale.items:
            sold[item.product_id] = sold.get(item.product_id, 0) + item.quantity
        # no floor at zero: stock was validated when the lines were added
        products = [p.model_copy(update={"stock": p.stock - sold[p.id]}) if p.id in sold else p
                    for p in self.products]

        customers = self.customers
        if sale.customer_id is not None:
            customers = [
                c.model_copy(update={"total_purchases": c.total_purchases + total,
                                     "last_purchase_date": sale.date})
                if c.id == sale.customer_id else c
                for c in self.customers
            ]

        # commit
        self.sales = self.sales + [sale]
        self.products = products
        changed = ["sales", "products"]
        if customers is not self.customers:
            self.customers = customers
            changed.append("customers")
        self._persist(*changed)
        self.clear_cart()
        return self._ok("Sale completed", sale)

    # ------------------------------------------------------------------
    # Cash register
    # ------------------------------------------------------------------
    @property
    def is_register_open(self) -> bool:
        return self.cash_register is not None and self.cash_register.is_open

    @operation
    def open_register(self, initial_amount: float) -> OperationResult:
        if self.is_register_open:
            raise ValidationError("The cash register is already open")
        if initial_amount < 0:
            raise ValidationError("Initial amount cannot be negative")
        self.cash_register = CashRegister(initial_amount=initial_amount, opened_at=self._now())
        self._persist("currentRegister")
        return self._ok("Cash register opened", self.cash_register)

    @operation
    def close_register(self, final_amount: float) -> OperationResult:
        if not self.is_register_open:
            raise ValidationError("The cash register is not open")
        closed = self.cash_register.model_copy(
            update={"closed_at": self._now(), "final_amount": final_amount})
        self.cash_register = closed
        self._persist("currentRegister")
        history = [r.dump() for r in self.register_history()]
        self.db.save_data("registerHistory", history + [closed.dump()])
        return self._ok("Cash register closed", closed)

    def register_history(self):
        """Closed sessions, oldest first."""
        return _load_stored(self.db, "registerHistory", _many(CashRegister), list)

    def register_sales(self):
        """Today's sales attributed to the open session."""
        if not self.is_register_open:
            return []
        today = self.clock().date().isoformat()
        return [s for s in self.sales
                if s.cash_register_id == self.cash_register.id and s.date.startswith(today)]

    def today_sales_total(self) -> float:
        return sum(s.total for s in self.register_sales())

    def sales_by_payment_method(self) -> dict:
        totals = {}
        for sale in self.register_sales():
            method = PaymentMethod(sale.payment_method).value
            totals[method] = totals.get(method, 0) + sale.total
        return totals

    def expected_cash(self) -> float:
        """Opening float plus today's cash sales for the open session."""
        if not self.is_register_open:
            return 0.0
        cash = self.sales_by_payment_method().get(PaymentMethod.CASH.value, 0)
        return float(self.cash_register.initial_amount) + cash

    def cash_variance(self, counted: float) -> float:
        """Counted minus expected cash; positive means over, negative short."""
        return counted - self.expected_cash()

    # ------------------------------------------------------------------
    # Low stock
    # ------------------------------------------------------------------
    @operation
    def set_low_stock_threshold(self, threshold: int) -> OperationResult:
        if threshold < 0:
            raise ValidationError("Threshold cannot be negative")
        self.low_stock_threshold = threshold
        self._persist("lowStockThreshold")
        return self._ok("Low stock threshold updated", threshold)

    def get_low_stock_products(self):
        return [p for p in self.products if p.is_low_stock(self.low_stock_threshold)]

    # ------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------
    @operation
    def add_purchase(self, purchase: Purchase) -> OperationResult:
        """
        Record a purchase and receive it into stock: quantity is added, the
        supplier price map and the general purchase price take the line price.
        Deleting or cancelling the purchase later does not reverse this.
        """
        now = self._now()
        products = list(self.products)
        for item in purchase.items:
            i = _index_of(products, item.product_id)
            if i < 0:
                logger.warning(f"Purchase {purchase.id} references unknown product {item.product_id}")
                continue
            product = products[i]
            suppliers = list(product.suppliers)
            if purchase.supplier_id not in suppliers:
                suppliers.append(purchase.supplier_id)
            products[i] = product.model_copy(update={
                "stock": product.stock + item.quantity,
                "prices": {**product.prices, purchase.supplier_id: item.price},
                "suppliers": suppliers,
                "purchase_price": item.price,
                "updated_at": now,
            })

        self.purchases = self.purchases + [purchase]
        self.products = products
        self._persist("purchases", "products")
        return self._ok("Purchase recorded", purchase)

    @operation
    def update_purchase(self, purchase: Purchase) -> OperationResult:
        i = _index_of(self.purchases, purchase.id)
        if i < 0:
            raise ValidationError("Purchase not found")
        purchases = list(self.purchases)
        purchases[i] = purchase
        self.purchases = purchases
        self._persist("purchases")
        return self._ok("Purchase updated", purchase)

    @operation
    def delete_purchase(self, purchase_id: str) -> OperationResult:
        if _index_of(self.purchases, purchase_id) < 0:
            raise ValidationError("Purchase not found")
        self.purchases = [p for p in self.purchases if p.id != purchase_id]
        self._persist("purchases")
        return self._ok("Purchase deleted")

    # ------------------------------------------------------------------
    # Company info, backup, reset
    # ------------------------------------------------------------------
    @operation
    def update_company_info(self, info: CompanyInfo) -> OperationResult:
        self.company_info = info
        self._persist("companyInfo")
        return self._ok("Company information updated", info)

    def snapshot(self) -> dict:
        """Everything needed for a complete backup."""
        return {
            "companyInfo": self.company_info.dump(),
            "settings": {"lowStockThreshold": self.low_stock_threshold},
            "products": self._serialize("products"),
            "suppliers": self._serialize("suppliers"),
            "customers": self._serialize("customers"),
            "customerTypes": self._serialize("customerTypes"),
            "sales": self._serialize("sales"),
            "purchases": self._serialize("purchases"),
            "registerHistory": [r.dump() for r in self.register_history()],
            "exportDate": self._now(),
            "version": EXPORT_VERSION,
        }

    def import_records(self, products=(), suppliers=()) -> OperationResult:
        """
        Append imported suppliers and products to the live collections.
        Products whose code is already taken are rejected one by one; records
        whose id collides with an existing one get a fresh id.
        """
        added_suppliers = added_products = rejected = 0
        for supplier in suppliers:
            if _index_of(self.suppliers, supplier.id) >= 0:
                supplier = supplier.model_copy(update={"id": new_id()})
            if self.add_supplier(supplier):
                added_suppliers += 1
        for product in products:
            if _index_of(self.products, product.id) >= 0:
                product = product.model_copy(update={"id": new_id()})
            if self.add_product(product):
                added_products += 1
            else:
                rejected += 1
        counts = {"products": added_products, "suppliers": added_suppliers, "rejected": rejected}
        return self._ok(
            f"Imported {added_products} products and {added_suppliers} suppliers"
            + (f" ({rejected} rejected)" if rejected else ""),
            counts)

    def reset_all(self) -> OperationResult:
        """Drop every persisted collection and start over from defaults."""
        removed = self.db.clear_all_data()
        self.cart.clear()
        self.selected_customer_type = None
        self.selected_customer = None
        self._load()
        return self._ok(f"All data cleared ({removed} keys)")
