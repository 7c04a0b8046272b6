# utils.py
import os
import json
import datetime
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List
from xml.sax.saxutils import escape, quoteattr

import pandas as pd
from pydantic import ValidationError

from logger import get_logger
from models import MARGIN_KEYS, Product, Supplier

logger = get_logger("utils")

EXPORT_VERSION = "1.0"

SS_NS = "urn:schemas-microsoft-com:office:spreadsheet"

VAT_RATE = 0.21

# Spreadsheet columns: (header, attribute, cell type, style)
SUPPLIER_COLUMNS = [
    ("ID", "id", "String", None),
    ("Name", "name", "String", None),
    ("Contact", "contact_name", "String", None),
    ("Phone", "phone", "String", None),
    ("Email", "email", "String", None),
    ("Address", "address", "String", None),
    ("Notes", "notes", "String", None),
    ("Created", "created_at", "DateTime", None),
]

PRODUCT_COLUMNS = [
    ("ID", "id", "String", None),
    ("Code", "code", "String", None),
    ("Name", "name", "String", None),
    ("Description", "description", "String", None),
    ("Purchase Price", "purchase_price", "Number", "Currency"),
    ("Sale Price", "sale_price", "Number", "Currency"),
    ("Has Discount", "has_discount", "Boolean", None),
    ("Discount Price", "discount_price", "Number", "Currency"),
    ("Has VAT", "has_vat", "Boolean", None),
    ("Stock", "stock", "Number", "Number"),
    ("Supplier ID", "supplier_id", "String", None),
    ("Category", "category", "String", None),
] + [
    (f"Margin {key.title()}", f"margin:{key}", "Number", "Percentage") for key in MARGIN_KEYS
] + [
    ("Low Stock Threshold", "low_stock_threshold", "Number", "Number"),
    ("Created", "created_at", "DateTime", None),
    ("Updated", "updated_at", "DateTime", None),
]

PRICE_COLUMNS = ["Product ID", "Product Code", "Product Name", "Supplier ID", "Price"]


@dataclass
class ImportResult:
    success: bool
    message: str
    products: List[Product] = field(default_factory=list)
    suppliers: List[Supplier] = field(default_factory=list)


# ----------------------------------------------------------------------
# VAT and formatting
# ----------------------------------------------------------------------
def calculate_vat(amount: float, rate: float = VAT_RATE) -> float:
    return amount * rate


def calculate_total_with_vat(amount: float, rate: float = VAT_RATE) -> float:
    return amount * (1 + rate)


def calculate_net_amount(amount_with_vat: float, rate: float = VAT_RATE) -> float:
    return amount_with_vat / (1 + rate)


def _es_separators(text: str) -> str:
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_currency(amount: float, currency: str = "€") -> str:
    """Format as 1.234,56 €"""
    return f"{_es_separators(f'{amount:,.2f}')} {currency}"


def format_number(number) -> str:
    if isinstance(number, int):
        return _es_separators(f"{number:,}")
    return _es_separators(f"{number:,.2f}")


def format_date(value: str, include_time: bool = False) -> str:
    try:
        dt = datetime.datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return value or ""
    if include_time:
        return dt.strftime("%d/%m/%Y, %H:%M")
    return dt.strftime("%d/%m/%Y")


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------
def export_as_json(products, suppliers) -> str:
    """JSON snapshot of the catalog: products, suppliers, export date, version."""
    data = {
        "products": [p.dump() for p in products],
        "suppliers": [s.dump() for s in suppliers],
        "exportDate": datetime.datetime.now().isoformat(timespec='seconds'),
        "version": EXPORT_VERSION,
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def _xml_datetime(value) -> str:
    try:
        return datetime.datetime.fromisoformat(value).strftime("%Y-%m-%dT%H:%M:%S")
    except (TypeError, ValueError):
        return value or ""


def _column_value(record, attr):
    if attr.startswith("margin:"):
        return (record.profit_margins or {}).get(attr.split(":", 1)[1])
    return getattr(record, attr)


def _cell(value, kind="String", style=None) -> str:
    style_attr = f' ss:StyleID="{style}"' if style else ""
    if value is None or value == "":
        return f'<Cell{style_attr}><Data ss:Type="String"></Data></Cell>'
    if kind == "Boolean":
        return f'<Cell><Data ss:Type="String">{"Yes" if value else "No"}</Data></Cell>'
    if kind == "DateTime":
        return f'<Cell><Data ss:Type="DateTime">{escape(_xml_datetime(value))}</Data></Cell>'
    return f'<Cell{style_attr}><Data ss:Type="{kind}">{escape(str(value))}</Data></Cell>'


def _worksheet(name, headers, rows):
    lines = [f'  <Worksheet ss:Name={quoteattr(name)}>', '    <Table>', '      <Row>']
    lines += [f'        <Cell ss:StyleID="Header"><Data ss:Type="String">{escape(h)}</Data></Cell>'
              for h in headers]
    lines.append('      </Row>')
    for row in rows:
        lines.append('      <Row>')
        lines += [f'        {cell}' for cell in row]
        lines.append('      </Row>')
    lines += ['    </Table>', '  </Worksheet>']
    return lines


def export_as_xml(products, suppliers) -> str:
    """Catalog as a SpreadsheetML workbook, one worksheet per entity type."""
    created = datetime.datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<Workbook xmlns="{SS_NS}"',
        '          xmlns:o="urn:schemas-microsoft-com:office:office"',
        '          xmlns:x="urn:schemas-microsoft-com:office:excel"',
        f'          xmlns:ss="{SS_NS}"',
        '          xmlns:html="http://www.w3.org/TR/REC-html40">',
        '  <DocumentProperties xmlns="urn:schemas-microsoft-com:office:office">',
        '    <Title>Inventory Data</Title>',
        '    <Subject>Products and suppliers export</Subject>',
        '    <Author>Store Control</Author>',
        f'    <Created>{created}</Created>',
        '  </DocumentProperties>',
        '  <Styles>',
        '    <Style ss:ID="Header">',
        '      <Font ss:Bold="1"/>',
        '      <Interior ss:Color="#E0E0E0" ss:Pattern="Solid"/>',
        '    </Style>',
        '    <Style ss:ID="Currency"><NumberFormat ss:Format="Currency"/></Style>',
        '    <Style ss:ID="Number"><NumberFormat ss:Format="0"/></Style>',
        '    <Style ss:ID="Percentage"><NumberFormat ss:Format="Percent"/></Style>',
        '  </Styles>',
    ]

    lines += _worksheet(
        "Suppliers",
        [c[0] for c in SUPPLIER_COLUMNS],
        [[_cell(getattr(s, attr), kind, style) for _, attr, kind, style in SUPPLIER_COLUMNS]
         for s in suppliers])

    lines += _worksheet(
        "Products",
        [c[0] for c in PRODUCT_COLUMNS],
        [[_cell(_column_value(p, attr), kind, style) for _, attr, kind, style in PRODUCT_COLUMNS]
         for p in products])

    price_rows = [
        [_cell(p.id), _cell(p.code), _cell(p.name), _cell(supplier_id),
         _cell(price, "Number", "Currency")]
        for p in products for supplier_id, price in (p.prices or {}).items()
    ]
    if price_rows:
        lines += _worksheet("Supplier Prices", PRICE_COLUMNS, price_rows)

    lines.append('</Workbook>')
    return "\n".join(lines)


def _append_value(parent, key, value):
    if value is None:
        return
    el = ET.SubElement(parent, key)
    if key == "prices" and isinstance(value, dict):
        for supplier_id, price in value.items():
            ET.SubElement(el, "price", supplierId=str(supplier_id)).text = str(price)
    elif key == "tierMargins" and isinstance(value, dict):
        for tier_id, margin in value.items():
            ET.SubElement(el, "margin", tierId=str(tier_id)).text = str(margin)
    elif key == "suppliers" and isinstance(value, list):
        for supplier_id in value:
            ET.SubElement(el, "supplierId").text = str(supplier_id)
    elif isinstance(value, dict):
        for k, v in value.items():
            _append_value(el, k, v)
    elif isinstance(value, list):
        for item in value:
            _append_value(el, "item", item)
    elif isinstance(value, bool):
        el.text = "true" if value else "false"
    else:
        el.text = str(value)


# collection key -> element name of one record
BACKUP_COLLECTIONS = [
    ("products", "product"),
    ("suppliers", "supplier"),
    ("customers", "customer"),
    ("customerTypes", "customerType"),
    ("sales", "sale"),
    ("purchases", "purchase"),
    ("registerHistory", "register"),
]


def _complete_data_as_xml(data: dict) -> str:
    root = ET.Element("StoreControlBackup")
    metadata = ET.SubElement(root, "metadata")
    ET.SubElement(metadata, "exportDate").text = str(data.get("exportDate", ""))
    ET.SubElement(metadata, "version").text = str(data.get("version", EXPORT_VERSION))

    for section in ("companyInfo", "settings"):
        if data.get(section):
            _append_value(root, section, data[section])

    for key, tag in BACKUP_COLLECTIONS:
        records = data.get(key) or []
        if not records:
            continue
        container = ET.SubElement(root, key)
        for record in records:
            _append_value(container, tag, record)

    ET.indent(root, space="  ")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def export_complete_data(data: dict, fmt: str = "json") -> str:
    """Complete backup (every collection, settings, company info) as JSON or XML."""
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False)
    if fmt == "xml":
        return _complete_data_as_xml(data)
    raise ValueError(f"Unsupported backup format: {fmt}")


def export_inventory_csv(products, file_path: str):
    """Dump the flat product columns to CSV."""
    columns = ["id", "code", "name", "category", "purchasePrice", "salePrice",
               "hasDiscount", "discountPrice", "hasVAT", "stock", "supplierId",
               "lowStockThreshold"]
    df = pd.DataFrame([p.dump() for p in products], columns=columns)
    df.to_csv(file_path, index=False)
    return file_path


# ----------------------------------------------------------------------
# Import
# ----------------------------------------------------------------------
def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_product_structure(data: dict) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("id"), str)
        and isinstance(data.get("code"), str)
        and isinstance(data.get("name"), str)
        and _is_number(data.get("purchasePrice"))
        and _is_number(data.get("salePrice"))
        and _is_number(data.get("stock"))
    )


def validate_supplier_structure(data: dict) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("id"), str)
        and isinstance(data.get("name"), str)
        and data["name"].strip() != ""
    )


def import_from_json(content: str) -> ImportResult:
    """Parse a JSON export (or complete backup) into products and suppliers."""
    try:
        data = json.loads(content)
    except ValueError:
        return ImportResult(False, "Could not parse the JSON file. Check that the format is valid.")

    if not isinstance(data, dict) or "products" not in data or "suppliers" not in data:
        return ImportResult(False, 'Invalid JSON format. The file must contain "products" and "suppliers".')
    if not isinstance(data["products"], list):
        return ImportResult(False, 'The "products" field must be a list.')
    if not isinstance(data["suppliers"], list):
        return ImportResult(False, 'The "suppliers" field must be a list.')

    for product in data["products"]:
        if not validate_product_structure(product):
            name = product.get("name") if isinstance(product, dict) else None
            return ImportResult(False, f"Invalid product: {name or 'unnamed'}. Check that all required fields are present.")
    for supplier in data["suppliers"]:
        if not validate_supplier_structure(supplier):
            name = supplier.get("name") if isinstance(supplier, dict) else None
            return ImportResult(False, f"Invalid supplier: {name or 'unnamed'}. Check that all required fields are present.")

    try:
        products = [Product.model_validate(p) for p in data["products"]]
        suppliers = [Supplier.model_validate(s) for s in data["suppliers"]]
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        logger.warning(f"JSON import rejected a {e.title} record: {e}")
        return ImportResult(False, f"Invalid {e.title.lower()} data: field '{field}': {error['msg']}.")

    return ImportResult(True, "Data imported from JSON.", products, suppliers)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(el, name):
    return [child for child in el if _local(child.tag) == name]


def _text(el, name, default=None):
    for child in el:
        if _local(child.tag) == name:
            return child.text if child.text is not None else default
    return default


def _to_float(value, default=0.0):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value, default=0):
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _to_bool(value) -> bool:
    return str(value).strip().lower() in ("true", "yes", "sí", "si", "1")


def _now_iso():
    return datetime.datetime.now().isoformat(timespec='seconds')


def import_from_xml(content: str) -> ImportResult:
    """Parse either the spreadsheet workbook or the custom tag format."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError:
        return ImportResult(False, "Could not parse the XML file. Check that the format is valid.")

    tag = _local(root.tag)
    try:
        if tag == "Workbook":
            return _import_from_spreadsheet(root)
        if tag in ("inventoryData", "StoreControlBackup"):
            return _import_from_custom(root)
    except ValidationError as e:
        logger.warning(f"XML import rejected a {e.title} record: {e}")
        return ImportResult(False, f"Invalid {e.title.lower()} data in the XML file.")
    return ImportResult(False, "Unrecognised XML format. Expected a spreadsheet workbook or a Store Control backup.")


def _sheet_rows(worksheet):
    """Rows of a worksheet as dicts keyed by the header row."""
    rows = []
    for table in _children(worksheet, "Table"):
        rows += _children(table, "Row")
    if not rows:
        return []

    def cells(row):
        values = []
        for cell in _children(row, "Cell"):
            data = _children(cell, "Data")
            values.append((data[0].text or "") if data else "")
        return values

    headers = cells(rows[0])
    return [dict(zip(headers, cells(row))) for row in rows[1:]]


def _import_from_spreadsheet(root) -> ImportResult:
    suppliers, products, prices = [], [], []
    for worksheet in _children(root, "Worksheet"):
        name = worksheet.get(f"{{{SS_NS}}}Name", "")
        rows = _sheet_rows(worksheet)
        if name == "Suppliers":
            for row in rows:
                data = {"id": row.get("ID") or None, "name": row.get("Name", "")}
                if not data["id"]:
                    continue
                if validate_supplier_structure(data):
                    suppliers.append(Supplier(
                        id=data["id"],
                        name=data["name"],
                        contact_name=row.get("Contact", ""),
                        phone=row.get("Phone", ""),
                        email=row.get("Email", ""),
                        address=row.get("Address", ""),
                        notes=row.get("Notes", ""),
                        created_at=row.get("Created") or _now_iso(),
                    ))
        elif name == "Products":
            for row in rows:
                if not row.get("Code") or not row.get("Name"):
                    continue
                margins = {key: _to_float(row.get(f"Margin {key.title()}"), None)
                           for key in MARGIN_KEYS}
                product = Product(
                    code=row["Code"],
                    name=row["Name"],
                    description=row.get("Description", ""),
                    purchase_price=_to_float(row.get("Purchase Price")),
                    sale_price=_to_float(row.get("Sale Price")),
                    has_discount=_to_bool(row.get("Has Discount")),
                    discount_price=_to_float(row.get("Discount Price")),
                    has_vat=_to_bool(row.get("Has VAT")),
                    stock=_to_int(row.get("Stock")),
                    supplier_id=row.get("Supplier ID", ""),
                    category=row.get("Category", ""),
                    profit_margins={k: v for k, v in margins.items() if v is not None} or None,
                    low_stock_threshold=_to_int(row.get("Low Stock Threshold"), None),
                    created_at=row.get("Created") or _now_iso(),
                    updated_at=row.get("Updated") or _now_iso(),
                )
                if row.get("ID"):
                    product.id = row["ID"]
                products.append(product)
        elif name == "Supplier Prices":
            prices = rows

    by_id = {p.id: p for p in products}
    for row in prices:
        product = by_id.get(row.get("Product ID"))
        if product is not None and row.get("Supplier ID"):
            product.prices[row["Supplier ID"]] = _to_float(row.get("Price"))

    return ImportResult(True, "Data imported from spreadsheet XML.", products, suppliers)


def _supplier_from_element(el):
    supplier = Supplier(
        id=_text(el, "id") or "",
        name=_text(el, "name", ""),
        contact_name=_text(el, "contactName", ""),
        phone=_text(el, "phone", ""),
        email=_text(el, "email", ""),
        address=_text(el, "address", ""),
        notes=_text(el, "notes", ""),
        created_at=_text(el, "createdAt") or _now_iso(),
    )
    if not supplier.id:
        return None
    return supplier if validate_supplier_structure({"id": supplier.id, "name": supplier.name}) else None


def _product_from_element(el):
    code, name = _text(el, "code"), _text(el, "name")
    if not code or not name:
        return None
    product = Product(
        code=code,
        name=name,
        description=_text(el, "description", ""),
        purchase_price=_to_float(_text(el, "purchasePrice")),
        sale_price=_to_float(_text(el, "salePrice")),
        has_discount=_to_bool(_text(el, "hasDiscount")),
        discount_price=_to_float(_text(el, "discountPrice")),
        has_vat=_to_bool(_text(el, "hasVAT")),
        stock=_to_int(_text(el, "stock")),
        supplier_id=_text(el, "supplierId", ""),
        category=_text(el, "category", ""),
        low_stock_threshold=_to_int(_text(el, "lowStockThreshold"), None),
        created_at=_text(el, "createdAt") or _now_iso(),
        updated_at=_text(el, "updatedAt") or _now_iso(),
    )
    if _text(el, "id"):
        product.id = _text(el, "id")

    for margins_el in _children(el, "profitMargins"):
        product.profit_margins = {
            _local(child.tag): _to_float(child.text) for child in margins_el
        }
    for tiers_el in _children(el, "tierMargins"):
        product.tier_margins = {
            child.get("tierId"): _to_float(child.text)
            for child in _children(tiers_el, "margin") if child.get("tierId")
        }
    for prices_el in _children(el, "prices"):
        product.prices = {
            child.get("supplierId"): _to_float(child.text)
            for child in _children(prices_el, "price") if child.get("supplierId")
        }
    for suppliers_el in _children(el, "suppliers"):
        product.suppliers = [child.text for child in _children(suppliers_el, "supplierId") if child.text]
    return product


def _import_from_custom(root) -> ImportResult:
    suppliers = []
    for container in _children(root, "suppliers"):
        for el in _children(container, "supplier"):
            supplier = _supplier_from_element(el)
            if supplier is not None:
                suppliers.append(supplier)

    products = []
    for container in _children(root, "products"):
        for el in _children(container, "product"):
            product = _product_from_element(el)
            if product is not None:
                products.append(product)

    return ImportResult(True, "Data imported from custom XML.", products, suppliers)


def import_file(file_path: str) -> ImportResult:
    """Read an export file, choosing the reader by extension or content."""
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            content = f.read()
    except UnicodeDecodeError as e:
        logger.error(f"Import file {file_path} is not UTF-8: {e}")
        return ImportResult(False, f"{file_path} is not a UTF-8 text file.")
    except OSError as e:
        logger.error(f"Could not read import file {file_path}: {e}")
        return ImportResult(False, f"Could not read {file_path}.")

    ext = os.path.splitext(file_path)[1].lower()
    if ext == ".json":
        return import_from_json(content)
    if ext == ".xml":
        return import_from_xml(content)
    if content.lstrip().startswith("<"):
        return import_from_xml(content)
    return import_from_json(content)
