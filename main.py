# main.py
import os
import sys
import argparse
import copy
import json
import datetime
from pathlib import Path

import pandas as pd

from database import Database
from inventory import InventorySystem
from logger import configure_logger, get_logger
from reports import (
    generate_stock_report, get_last_n_days_range, get_sales_for_range, sale_items_frame,
    write_report,
)
from utils import (
    export_as_json, export_as_xml, export_complete_data, export_inventory_csv,
    format_currency, format_number, import_file,
)

logger = get_logger()

# Default configuration
DEFAULT_CONFIG = {
    "database": {
        "name": "inventory.db",
        "prefix": "inventory_app_",
        "backup_dir": "backups"
    },
    "export": {
        "default_dir": "exports"
    },
    "logging": {
        "level": "INFO",
        "file": "logs/inventory.log",
        "max_size": 1048576,
        "backup_count": 3
    },
    "inventory": {
        "low_stock_threshold": 5,
        "currency": "€"
    }
}


def _merge(defaults, overrides):
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path="config.json"):
    """Load configuration from JSON file or create default if not exists"""
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
            logger.info(f"Configuration loaded from {config_path}")
            return _merge(DEFAULT_CONFIG, config)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config: {e}")
            return _merge(DEFAULT_CONFIG, {})

    # Create default config if not exists
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(DEFAULT_CONFIG, f, indent=4, ensure_ascii=False)
        logger.info(f"Created default configuration at {config_path}")
    except OSError as e:
        logger.error(f"Could not write default configuration: {e}")

    return _merge(DEFAULT_CONFIG, {})


def setup_directories(config):
    """Create required directories if they don't exist."""
    dir_mappings = {
        'export_dir': config.get('export', {}).get('default_dir', 'exports'),
        'backup_dir': config.get('database', {}).get('backup_dir', 'backups'),
        'log_dir': os.path.dirname(config.get('logging', {}).get('file', 'logs/inventory.log'))
    }

    for dir_key, dir_path in dir_mappings.items():
        if not dir_path:
            continue
        path = Path(dir_path)
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created directory: {path}")
        else:
            logger.debug(f"Directory already exists: {path}")


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description="Inventory and point-of-sale data store")
    parser.add_argument("--config", help="Path to configuration file", default="config.json")
    parser.add_argument("--debug", help="Enable debug mode", action="store_true")
    parser.add_argument("--output", help="Output file for exports and backups")

    action = parser.add_mutually_exclusive_group()
    action.add_argument("--summary", action="store_true", help="Print a store summary (default)")
    action.add_argument("--low-stock", action="store_true", help="List products at or below threshold")
    action.add_argument("--export", choices=["json", "xml", "csv"], help="Export products and suppliers")
    action.add_argument("--backup", choices=["json", "xml"], help="Write a complete backup")
    action.add_argument("--import", dest="import_path", metavar="FILE", help="Import products and suppliers")
    action.add_argument("--report", choices=["sales", "stock"], help="Write a sales or stock report")
    action.add_argument("--reset", action="store_true", help="Delete all stored data")
    parser.add_argument("--days", type=int, default=30, help="Days covered by the sales report")
    parser.add_argument("--format", dest="report_format", choices=["csv", "excel"], default="csv",
                        help="Report file format")
    return parser.parse_args(argv)


def _write(content, path):
    with open(path, 'w', encoding='utf-8') as f:
        f.write(content)
    logger.info(f"Wrote {path}")
    return path


def _default_path(config, section, stem, fmt):
    if section == "backup":
        directory = config["database"].get("backup_dir", "backups")
    else:
        directory = config["export"].get("default_dir", "exports")
    stamp = datetime.date.today().isoformat()
    return os.path.join(directory, f"{stem}_{stamp}.{fmt}")


def run(args, config, system: InventorySystem):
    """Carry out the selected action. Returns the process exit code."""
    currency = config["inventory"].get("currency", "€")

    if args.export:
        path = args.output or _default_path(config, "export", "inventory_data", args.export)
        if args.export == "csv":
            print(export_inventory_csv(system.products, path))
            return 0
        if args.export == "json":
            content = export_as_json(system.products, system.suppliers)
        else:
            content = export_as_xml(system.products, system.suppliers)
        print(_write(content, path))
        return 0

    if args.report:
        ext = "xlsx" if args.report_format == "excel" else "csv"
        path = args.output or _default_path(config, "export", f"{args.report}_report", ext)
        if args.report == "sales":
            start, end = get_last_n_days_range(args.days)
            df = sale_items_frame(get_sales_for_range(system.sales, start, end))
        else:
            df = pd.DataFrame([
                {"code": p.code, "name": p.name, "category": p.category, "stock": p.stock,
                 "threshold": p.effective_threshold(system.low_stock_threshold),
                 "low_stock": p.is_low_stock(system.low_stock_threshold)}
                for p in system.products
            ], columns=["code", "name", "category", "stock", "threshold", "low_stock"])
        print(write_report(df, path, args.report_format))
        return 0

    if args.backup:
        content = export_complete_data(system.snapshot(), args.backup)
        path = args.output or _default_path(config, "backup", "store_backup", args.backup)
        print(_write(content, path))
        return 0

    if args.import_path:
        result = import_file(args.import_path)
        if not result.success:
            print(result.message)
            return 1
        outcome = system.import_records(result.products, result.suppliers)
        print(outcome.message)
        return 0

    if args.reset:
        print(system.reset_all().message)
        return 0

    if args.low_stock:
        for p in system.get_low_stock_products():
            threshold = p.effective_threshold(system.low_stock_threshold)
            print(f"{p.code:12} {p.name[:30]:30} stock {p.stock:5}  threshold {threshold}")
        return 0

    print(f"Company:        {system.company_info.name}")
    print(f"Products:       {len(system.products)}")
    print(f"Suppliers:      {len(system.suppliers)}")
    print(f"Customers:      {len(system.customers)}")
    print(f"Sales:          {len(system.sales)}")
    stock = generate_stock_report(system.products, system.low_stock_threshold)
    print(f"Units in stock: {format_number(sum(p.stock for p in system.products))}")
    print(f"Stock value:    {format_currency(stock['total_value'], currency)}")
    print(f"Low stock:      {stock['low_stock_count']}")
    if system.is_register_open:
        print(f"Register open:  expected cash {format_currency(system.expected_cash(), currency)}")
    else:
        print("Register:       closed")
    return 0


def main(argv=None):
    try:
        args = parse_arguments(argv)

        config = load_config(args.config)
        if args.debug:
            config["logging"]["level"] = "DEBUG"
        configure_logger(config)
        logger.debug("Debug mode enabled")

        setup_directories(config)

        db_config = config["database"]
        db = Database(db_config.get("name", "inventory.db"), db_config.get("prefix", "inventory_app_"))
        logger.info(f"Database initialized: {db.db_name}")

        try:
            system = InventorySystem(db, config)
            return run(args, config, system)
        finally:
            db.close()

    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
