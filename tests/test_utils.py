import json

import pandas as pd
import pytest

from models import Product, Supplier
from utils import (
    calculate_net_amount, calculate_total_with_vat, calculate_vat,
    export_as_json, export_as_xml, export_complete_data, export_inventory_csv,
    format_currency, format_date, import_file, import_from_json, import_from_xml,
)


@pytest.fixture
def catalog():
    supplier = Supplier(id="s1", name="Acme & Sons", phone="600 000 000",
                        created_at="2024-01-02T09:00:00")
    product = Product(id="p1", code="A001", name="Widget <small>", purchase_price=6.0,
                      sale_price=9.5, stock=10, supplier_id="s1", category="Tools",
                      has_vat=False,
                      profit_margins={"habitual": 0.25, "vip": 0.2, "premium": 0.3, "wholesale": 0.15},
                      prices={"s1": 5.8}, low_stock_threshold=3,
                      created_at="2024-01-02T09:00:00", updated_at="2024-01-03T10:00:00")
    plain = Product(id="p2", code="B001", name="Cable", stock=1)
    return [product, plain], [supplier]


def test_vat_helpers():
    assert calculate_vat(100) == pytest.approx(21)
    assert calculate_total_with_vat(100) == pytest.approx(121)
    assert calculate_net_amount(121) == pytest.approx(100)


def test_format_currency_uses_spanish_separators():
    assert format_currency(1234.5) == "1.234,50 €"
    assert format_currency(0) == "0,00 €"


def test_format_date():
    assert format_date("2024-03-15T10:30:00") == "15/03/2024"
    assert format_date("2024-03-15T10:30:00", include_time=True) == "15/03/2024, 10:30"
    assert format_date("not a date") == "not a date"


# ----------------------------------------------------------------------
# JSON
# ----------------------------------------------------------------------
def test_json_export_then_import(catalog):
    products, suppliers = catalog
    content = export_as_json(products, suppliers)
    data = json.loads(content)
    assert data["version"] == "1.0"
    assert data["products"][0]["hasVAT"] is False

    result = import_from_json(content)

    assert result.success
    assert result.products == products
    assert result.suppliers == suppliers


@pytest.mark.parametrize("content, fragment", [
    ("{not json", "Could not parse"),
    ('{"products": []}', '"products" and "suppliers"'),
    ('{"products": {}, "suppliers": []}', '"products" field must be a list'),
    ('{"products": [], "suppliers": [{"id": "s1", "name": "  "}]}', "Invalid supplier"),
    ('{"products": [{"id": "p1", "code": "A", "name": "Widget", "purchasePrice": "1",'
     ' "salePrice": 2, "stock": 1}], "suppliers": []}', "Invalid product: Widget"),
])
def test_json_import_rejects_invalid_content(content, fragment):
    result = import_from_json(content)
    assert not result.success
    assert fragment in result.message
    assert result.products == []


def test_complete_backup_json_is_importable(stocked):
    content = export_complete_data(stocked.snapshot(), "json")
    result = import_from_json(content)
    assert result.success
    assert [p.code for p in result.products] == ["A001", "A002", "B001"]


def test_unknown_backup_format():
    with pytest.raises(ValueError):
        export_complete_data({}, "yaml")


# ----------------------------------------------------------------------
# XML
# ----------------------------------------------------------------------
def test_spreadsheet_export_then_import(catalog):
    products, suppliers = catalog
    content = export_as_xml(products, suppliers)
    assert '<Worksheet ss:Name="Supplier Prices">' in content
    assert "Widget &lt;small&gt;" in content

    result = import_from_xml(content)

    assert result.success
    widget, cable = result.products
    assert widget.id == "p1"
    assert widget.name == "Widget <small>"
    assert widget.purchase_price == 6.0
    assert widget.stock == 10
    assert widget.has_vat is False
    assert widget.profit_margins["premium"] == 0.3
    assert widget.prices == {"s1": 5.8}
    assert widget.low_stock_threshold == 3
    assert cable.low_stock_threshold is None
    assert cable.profit_margins is None
    assert result.suppliers[0].name == "Acme & Sons"
    assert result.suppliers[0].phone == "600 000 000"


def test_spreadsheet_without_prices_has_no_price_sheet():
    content = export_as_xml([Product(code="A", name="a")], [])
    assert "Supplier Prices" not in content


def test_backup_xml_is_importable(stocked):
    stocked.update_product_prices("p1", "s1", 5.5)
    stocked.set_product_tier_margin("p3", "2", 0.12)
    content = export_complete_data(stocked.snapshot(), "xml")
    assert content.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "<StoreControlBackup>" in content

    result = import_from_xml(content)

    assert result.success
    by_code = {p.code: p for p in result.products}
    assert by_code["A001"].prices == {"s1": 5.5}
    assert by_code["A001"].has_discount is True
    assert by_code["A002"].has_vat is False
    assert by_code["B001"].tier_margins == {"2": 0.12}
    assert by_code["B001"].profit_margins["habitual"] == 0.25
    assert [s.id for s in result.suppliers] == ["s1"]


def test_custom_inventory_data_root():
    content = """
    <inventoryData>
      <suppliers><supplier><id>s1</id><name>Acme</name></supplier></suppliers>
      <products>
        <product><id>p9</id><code>Z1</code><name>Zeta</name><stock>4</stock>
          <hasVAT>true</hasVAT><suppliers><supplierId>s1</supplierId></suppliers></product>
        <product><name>no code</name></product>
      </products>
    </inventoryData>
    """
    result = import_from_xml(content)
    assert result.success
    assert len(result.products) == 1
    assert result.products[0].id == "p9"
    assert result.products[0].stock == 4
    assert result.products[0].suppliers == ["s1"]


def test_unrecognised_xml_root():
    result = import_from_xml("<catalog/>")
    assert not result.success
    assert "Unrecognised" in result.message


def test_malformed_xml():
    result = import_from_xml("<inventoryData><products>")
    assert not result.success
    assert "Could not parse" in result.message


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------
def test_import_file_picks_reader(tmp_path, catalog):
    products, suppliers = catalog
    as_json = tmp_path / "export.json"
    as_json.write_text(export_as_json(products, suppliers), encoding="utf-8")
    sniffed = tmp_path / "export.dat"
    sniffed.write_text(export_as_xml(products, suppliers), encoding="utf-8")

    assert import_file(str(as_json)).products == products
    assert [p.code for p in import_file(str(sniffed)).products] == ["A001", "B001"]


def test_import_missing_file(tmp_path):
    result = import_file(str(tmp_path / "missing.json"))
    assert not result.success


def test_export_inventory_csv(tmp_path, catalog):
    products, _ = catalog
    path = export_inventory_csv(products, str(tmp_path / "inventory.csv"))
    df = pd.read_csv(path)
    assert list(df["code"]) == ["A001", "B001"]
    assert list(df["stock"]) == [10, 1]


def test_import_file_rejects_non_utf8_bytes(tmp_path):
    path = tmp_path / "latin1.json"
    path.write_bytes('{"products": [], "suppliers": [{"id": "s1", "name": "café"}]}'.encode("latin-1"))
    result = import_file(str(path))
    assert not result.success
    assert "not a UTF-8" in result.message
    assert result.products == [] and result.suppliers == []


# ----------------------------------------------------------------------
# Malformed records
# ----------------------------------------------------------------------
def product_json(**fields):
    record = {"id": "p9", "code": "Z1", "name": "Zeta", "purchasePrice": 4.0,
              "salePrice": 6.0, "stock": 5}
    record.update(fields)
    return json.dumps({"products": [record], "suppliers": []})


def test_json_import_coerces_numeric_strings():
    result = import_from_json(product_json(hasDiscount=True, discountPrice="9.5"))
    assert result.success
    assert result.products[0].discount_price == 9.5


def test_json_import_treats_null_collections_as_empty():
    result = import_from_json(product_json(tierMargins=None, prices=None, suppliers=None))
    assert result.success
    product = result.products[0]
    assert product.tier_margins == {}
    assert product.prices == {}
    assert product.suppliers == []


@pytest.mark.parametrize("fields, field_name", [
    ({"stock": 2.5}, "stock"),
    ({"hasVAT": "maybe"}, "hasVAT"),
    ({"discountPrice": "cheap"}, "discountPrice"),
    ({"tierMargins": {"2": "high"}}, "tierMargins.2"),
    ({"suppliers": "s1"}, "suppliers"),
])
def test_json_import_rejects_wrong_typed_fields(fields, field_name):
    result = import_from_json(product_json(**fields))
    assert not result.success
    assert f"field '{field_name}'" in result.message
    assert result.products == []


def test_xml_import_falls_back_for_unreadable_values():
    content = """
    <inventoryData>
      <products><product><id>p9</id><code>Z1</code><name>Zeta</name>
        <hasVAT>maybe</hasVAT><stock>many</stock><discountPrice>cheap</discountPrice>
        <tierMargins><margin tierId="2">high</margin></tierMargins></product></products>
    </inventoryData>
    """
    result = import_from_xml(content)
    assert result.success
    product = result.products[0]
    assert product.has_vat is False
    assert product.stock == 0
    assert product.discount_price == 0.0
    assert product.tier_margins == {"2": 0.0}
