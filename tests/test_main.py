import json

import pytest

from database import Database
from inventory import InventorySystem
from logger import reset_logger
from main import DEFAULT_CONFIG, load_config, main, parse_arguments
from models import Product, Supplier


@pytest.fixture
def config_path(tmp_path):
    config = {
        "database": {"name": str(tmp_path / "store.db"), "backup_dir": str(tmp_path / "backups")},
        "export": {"default_dir": str(tmp_path / "exports")},
        "logging": {"file": str(tmp_path / "logs" / "inventory.log")},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    yield str(path)
    # release the rotating file handlers opened by main()
    reset_logger()


@pytest.fixture
def seeded(tmp_path, config_path):
    db = Database(str(tmp_path / "store.db"))
    system = InventorySystem(db)
    system.add_supplier(Supplier(id="s1", name="Acme"))
    system.add_product(Product(id="p1", code="A001", name="Widget", stock=2, supplier_id="s1"))
    db.close()
    return config_path


def test_load_config_creates_default_file(tmp_path):
    path = tmp_path / "config.json"
    config = load_config(str(path))
    assert config == DEFAULT_CONFIG
    assert json.loads(path.read_text(encoding="utf-8")) == DEFAULT_CONFIG


def test_load_config_merges_nested_sections(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"inventory": {"low_stock_threshold": 9}}), encoding="utf-8")
    config = load_config(str(path))
    assert config["inventory"] == {"low_stock_threshold": 9, "currency": "€"}
    assert config["database"] == DEFAULT_CONFIG["database"]


def test_load_config_with_broken_file_uses_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_actions_are_mutually_exclusive():
    with pytest.raises(SystemExit):
        parse_arguments(["--summary", "--reset"])


def test_summary(seeded, capsys):
    assert main(["--config", seeded]) == 0
    out = capsys.readouterr().out
    assert "Products:       1" in out
    assert "Register:       closed" in out


def test_low_stock_listing(seeded, capsys):
    assert main(["--config", seeded, "--low-stock"]) == 0
    assert "A001" in capsys.readouterr().out


def test_export_then_import(seeded, tmp_path, capsys):
    out_file = tmp_path / "catalog.json"
    assert main(["--config", seeded, "--export", "json", "--output", str(out_file)]) == 0
    exported = json.loads(out_file.read_text(encoding="utf-8"))
    assert [p["code"] for p in exported["products"]] == ["A001"]

    # the same code is already in the catalog, so the product is rejected
    assert main(["--config", seeded, "--import", str(out_file)]) == 0
    assert "Imported 0 products and 1 suppliers" in capsys.readouterr().out


def test_backup_goes_to_backup_dir(seeded, tmp_path):
    assert main(["--config", seeded, "--backup", "xml"]) == 0
    backups = list((tmp_path / "backups").glob("store_backup_*.xml"))
    assert len(backups) == 1
    assert "<StoreControlBackup>" in backups[0].read_text(encoding="utf-8")


def test_import_of_invalid_file_fails(seeded, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"products": []}', encoding="utf-8")
    assert main(["--config", seeded, "--import", str(bad)]) == 1


def test_reset(seeded, tmp_path, capsys):
    assert main(["--config", seeded, "--reset"]) == 0
    db = Database(str(tmp_path / "store.db"))
    try:
        assert db.load_data("products") is None
    finally:
        db.close()


def test_csv_export(seeded, tmp_path):
    out_file = tmp_path / "catalog.csv"
    assert main(["--config", seeded, "--export", "csv", "--output", str(out_file)]) == 0
    assert "A001" in out_file.read_text(encoding="utf-8")


def test_stock_report_written_to_export_dir(seeded, tmp_path):
    assert main(["--config", seeded, "--report", "stock"]) == 0
    reports = list((tmp_path / "exports").glob("stock_report_*.csv"))
    assert len(reports) == 1
    content = reports[0].read_text(encoding="utf-8")
    assert content.splitlines()[0] == "code,name,category,stock,threshold,low_stock"
    assert "A001,Widget,,2,5,True" in content


def test_sales_report_with_no_sales(seeded, tmp_path):
    out_file = tmp_path / "sales.xlsx"
    assert main(["--config", seeded, "--report", "sales", "--format", "excel",
                 "--output", str(out_file)]) == 0
    assert out_file.exists()
