# models.py
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Named margin keys a product may carry, one per default customer tier
MARGIN_KEYS = ("habitual", "vip", "premium", "wholesale")

DEFAULT_PRODUCT_MARGINS = {
    "habitual": 0.25,
    "vip": 0.20,
    "premium": 0.30,
    "wholesale": 0.15,
}

DEFAULT_LOW_STOCK_THRESHOLD = 5


def new_id() -> str:
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now().isoformat(timespec='seconds')


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BIZUM = "bizum"
    INSTALLMENTS = "installments"
    MONTHLY = "monthly"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class Record(BaseModel):
    """
    Base for records stored as camelCase JSON objects. Values are validated
    and coerced on construction; unknown keys are ignored.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _null_takes_default(cls, data):
        # an explicit null for a collection or id field means "use the default"
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for name, info in cls.model_fields.items():
            if info.default_factory is None:
                continue
            for key in {name, info.alias or to_camel(name)}:
                if key in data and data[key] is None:
                    del data[key]
        return data

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class CustomerType(Record):
    """Pricing tier: a named default margin applied over purchase price."""
    name: str
    profit_margin: float
    description: Optional[str] = None
    min_purchase_amount: Optional[float] = None
    benefits: List[str] = Field(default_factory=list)
    color: Optional[str] = None
    id: str = Field(default_factory=new_id)


DEFAULT_CUSTOMER_TYPES = (
    ("1", "Habitual", 0.30),
    ("2", "VIP", 0.25),
    ("3", "Premium", 0.20),
    ("4", "Mayorista", 0.15),
)


def default_customer_types():
    return [CustomerType(id=tid, name=name, profit_margin=margin)
            for tid, name, margin in DEFAULT_CUSTOMER_TYPES]


class Product(Record):
    code: str
    name: str
    purchase_price: float = 0.0
    sale_price: float = 0.0
    description: str = ""
    has_discount: bool = False
    discount_price: float = 0.0
    has_vat: bool = Field(True, alias="hasVAT")
    stock: int = 0
    supplier_id: str = ""
    category: str = ""
    profit_margins: Optional[Dict[str, float]] = None
    # Explicit tier id -> margin overrides, checked before the named margins
    tier_margins: Dict[str, float] = Field(default_factory=dict)
    prices: Dict[str, float] = Field(default_factory=dict)
    suppliers: List[str] = Field(default_factory=list)
    low_stock_threshold: Optional[int] = None
    id: str = Field(default_factory=new_id)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    def effective_threshold(self, global_threshold: int) -> int:
        if self.low_stock_threshold is not None:
            return self.low_stock_threshold
        return global_threshold

    def is_low_stock(self, global_threshold: int) -> bool:
        return self.effective_threshold(global_threshold) >= self.stock

    def margin_for(self, tier: CustomerType) -> float:
        """
        Margin applied for a tier: an explicit override keyed by tier id, else
        the named margin matching the lower-cased tier name, else the tier's
        default margin.
        """
        if tier.id in self.tier_margins:
            return self.tier_margins[tier.id]
        named = (self.profit_margins or {}).get(tier.name.lower())
        if named is not None:
            return named
        return tier.profit_margin

    def unit_price_for(self, tier: CustomerType) -> float:
        if self.has_discount:
            return self.discount_price
        return self.purchase_price * (1 + self.margin_for(tier))


class Supplier(Record):
    name: str
    contact_name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    notes: str = ""
    id: str = Field(default_factory=new_id)
    created_at: str = Field(default_factory=now_iso)


class Customer(Record):
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    tax_id: Optional[str] = None
    customer_type: str = "individual"  # individual | business
    customer_type_id: Optional[str] = None
    preferred_payment_method: Optional[PaymentMethod] = None
    credit_limit: Optional[float] = None
    notes: str = ""
    total_purchases: float = 0.0
    last_purchase_date: Optional[str] = None
    is_active: bool = True
    id: str = Field(default_factory=new_id)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class CartItem(Record):
    product_id: str
    code: str
    name: str
    price: float
    quantity: int
    has_vat: bool = Field(True, alias="hasVAT")

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class Cart:
    """Holds the lines of the sale being built."""
    def __init__(self, items=None):
        self.items: List[CartItem] = list(items or [])

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __getitem__(self, index):
        return self.items[index]

    def index_of(self, product_id: str) -> int:
        for i, ci in enumerate(self.items):
            if ci.product_id == product_id:
                return i
        return -1

    def add_item(self, item: CartItem):
        # merge if same product
        i = self.index_of(item.product_id)
        if i >= 0:
            self.items[i].quantity += item.quantity
        else:
            self.items.append(item)

    def remove_item(self, index: int):
        del self.items[index]

    def clear(self):
        self.items = []

    @property
    def total(self) -> float:
        return sum(ci.line_total for ci in self.items)

    @property
    def taxable_total(self) -> float:
        return sum(ci.line_total for ci in self.items if ci.has_vat)


class Sale(Record):
    """Snapshot of a completed sale. Never mutated after creation."""
    model_config = ConfigDict(frozen=True)

    items: List[CartItem] = Field(default_factory=list)
    total: float = 0.0
    customer_type: Optional[CustomerType] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    cash_register_id: str = ""
    customer_id: Optional[str] = None
    notes: str = ""
    id: str = Field(default_factory=new_id)
    date: str = Field(default_factory=now_iso)


class PurchaseItem(Record):
    product_id: str
    quantity: int
    price: float
    code: str = ""
    name: str = ""
    total: Optional[float] = None

    @model_validator(mode="after")
    def _line_total(self):
        if self.total is None:
            self.total = self.quantity * self.price
        return self


class Purchase(Record):
    supplier_id: str
    items: List[PurchaseItem] = Field(default_factory=list)
    total: Optional[float] = None
    notes: str = ""
    status: PurchaseStatus = PurchaseStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    invoice_number: Optional[str] = None
    id: str = Field(default_factory=new_id)
    date: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _purchase_total(self):
        if self.total is None:
            self.total = sum(item.total for item in self.items)
        return self


class CashRegister(Record):
    initial_amount: float
    id: str = Field(default_factory=new_id)
    opened_at: str = Field(default_factory=now_iso)
    closed_at: Optional[str] = None
    final_amount: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return not self.closed_at


class CompanyInfo(Record):
    name: str
    address: str = ""
    phone: str = ""
    email: str = ""
    tax_id: str = ""
    website: Optional[str] = None
    description: Optional[str] = None
    logo: Optional[str] = None


def default_company_info():
    return CompanyInfo(
        name="Mi Empresa",
        address="Calle Principal, 123, 28001 Madrid",
        phone="+34 123 456 789",
        email="info@miempresa.com",
        tax_id="B12345678",
        website="www.miempresa.com",
        description="Empresa dedicada a la venta de productos de calidad con el mejor servicio al cliente.",
    )
