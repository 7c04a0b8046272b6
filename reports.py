# reports.py
import datetime

import pandas as pd

from logger import get_logger
from models import PaymentMethod

logger = get_logger("reports")

UNCATEGORIZED = "Uncategorized"
VIP_SEGMENT_AMOUNT = 500
INACTIVE_AFTER_MONTHS = 3

SALE_COLUMNS = ["id", "date", "total", "payment_method", "customer_type_id",
                "customer_id", "cash_register_id"]
ITEM_COLUMNS = ["sale_id", "date", "product_id", "name", "price", "quantity", "revenue"]


def _to_date(value) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def _sale_datetime(sale) -> datetime.datetime:
    return datetime.datetime.fromisoformat(sale.date).replace(tzinfo=None)


def _method(value) -> str:
    return PaymentMethod(value).value


def sales_frame(sales) -> pd.DataFrame:
    """One row per sale."""
    rows = [{
        "id": s.id,
        "date": _sale_datetime(s),
        "total": s.total,
        "payment_method": _method(s.payment_method),
        "customer_type_id": s.customer_type.id if s.customer_type else None,
        "customer_id": s.customer_id,
        "cash_register_id": s.cash_register_id,
    } for s in sales]
    return pd.DataFrame(rows, columns=SALE_COLUMNS)


def sale_items_frame(sales) -> pd.DataFrame:
    """One row per sold line."""
    rows = [{
        "sale_id": s.id,
        "date": _sale_datetime(s),
        "product_id": item.product_id,
        "name": item.name,
        "price": item.price,
        "quantity": item.quantity,
        "revenue": item.price * item.quantity,
    } for s in sales for item in s.items]
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def get_sales_for_range(sales, start_date, end_date):
    """Sales dated within [start_date, end_date], both days inclusive."""
    start, end = _to_date(start_date), _to_date(end_date)
    return [s for s in sales if start <= _sale_datetime(s).date() <= end]


def get_last_n_days_range(days: int, today=None):
    end = _to_date(today or datetime.date.today())
    start = end - datetime.timedelta(days=days)
    return start.isoformat(), end.isoformat()


def generate_sales_report(sales, start_date, end_date):
    """Totals for the range, broken down by payment method and customer type."""
    df = sales_frame(get_sales_for_range(sales, start_date, end_date))
    total_sales = float(df["total"].sum()) if not df.empty else 0.0
    sales_count = len(df)

    by_method = {m.value: 0.0 for m in PaymentMethod}
    for method, amount in df.groupby("payment_method")["total"].sum().items():
        by_method[method] = float(amount)

    by_type = {type_id: float(amount)
               for type_id, amount in df.groupby("customer_type_id")["total"].sum().items()}

    return {
        "total_sales": total_sales,
        "sales_count": sales_count,
        "average_sale": total_sales / sales_count if sales_count else 0.0,
        "sales_by_payment_method": by_method,
        "sales_by_customer_type": by_type,
    }


def generate_advanced_sales_report(sales, start_date, end_date):
    """
    Basic report plus totals by hour of day, by weekday (0 = Monday) and
    by month, with the peak hour and weekday.
    """
    report = generate_sales_report(sales, start_date, end_date)
    df = sales_frame(get_sales_for_range(sales, start_date, end_date))

    by_hour = [0.0] * 24
    by_weekday = [0.0] * 7
    by_month = {}
    if not df.empty:
        for hour, amount in df.groupby(df["date"].dt.hour)["total"].sum().items():
            by_hour[int(hour)] = float(amount)
        for day, amount in df.groupby(df["date"].dt.weekday)["total"].sum().items():
            by_weekday[int(day)] = float(amount)
        months = df["date"].dt.strftime("%Y-%m")
        by_month = {m: float(a) for m, a in df.groupby(months)["total"].sum().items()}

    report.update({
        "sales_by_hour": by_hour,
        "sales_by_weekday": by_weekday,
        "sales_by_month": by_month,
        "peak_hour": by_hour.index(max(by_hour)),
        "peak_weekday": by_weekday.index(max(by_weekday)),
    })
    return report


def generate_product_report(sales, start_date, end_date, limit: int = 5):
    """Most and least sold products by quantity."""
    items = sale_items_frame(get_sales_for_range(sales, start_date, end_date))
    if items.empty:
        return {"most_sold": [], "least_sold": []}

    per_product = (items.groupby("product_id", sort=False)
                   .agg(name=("name", "first"), quantity=("quantity", "sum"))
                   .reset_index()
                   .sort_values("quantity", ascending=False, kind="stable"))
    records = [{"product_id": r.product_id, "name": r.name, "quantity": int(r.quantity)}
               for r in per_product.itertuples(index=False)]
    return {
        "most_sold": records[:limit],
        "least_sold": list(reversed(records))[:limit],
    }


def generate_customer_report(sales, customers, start_date, end_date, today=None):
    """Customer counts, segments and value metrics."""
    in_range = get_sales_for_range(sales, start_date, end_date)
    today = _to_date(today or datetime.date.today())
    cutoff = (pd.Timestamp(today) - pd.DateOffset(months=INACTIVE_AFTER_MONTHS)).to_pydatetime()

    def inactive(c):
        if not c.last_purchase_date:
            return True
        return datetime.datetime.fromisoformat(c.last_purchase_date).replace(tzinfo=None) < cutoff

    segments = {
        "new": sum(1 for c in customers if c.total_purchases == 0),
        "regular": sum(1 for c in customers if 0 < c.total_purchases < VIP_SEGMENT_AMOUNT),
        "vip": sum(1 for c in customers if c.total_purchases >= VIP_SEGMENT_AMOUNT),
        "inactive": sum(1 for c in customers if inactive(c)),
    }

    df = sales_frame(in_range)
    returning = df["customer_id"].dropna().nunique()
    lifetime = (sum(c.total_purchases for c in customers) / len(customers)) if customers else 0.0

    return {
        "total_customers": len(customers),
        "active_customers": sum(1 for c in customers if c.is_active),
        "returning_customers": int(returning),
        "average_order_value": float(df["total"].mean()) if not df.empty else 0.0,
        "customer_lifetime_value": lifetime,
        "segments": segments,
        "top_customers": sorted(customers, key=lambda c: c.total_purchases, reverse=True)[:10],
    }


def generate_profitability_report(sales, products, start_date, end_date):
    """
    Revenue, cost and profit of sold lines. Cost uses each product's current
    purchase price; lines of products no longer in the catalog are skipped.
    """
    items = sale_items_frame(get_sales_for_range(sales, start_date, end_date))
    catalog = pd.DataFrame(
        [{"product_id": p.id, "purchase_price": p.purchase_price,
          "category": p.category or UNCATEGORIZED} for p in products],
        columns=["product_id", "purchase_price", "category"])
    lines = items.merge(catalog, on="product_id", how="inner")

    report = {
        "total_revenue": 0.0,
        "total_cost": 0.0,
        "total_profit": 0.0,
        "profit_margin": 0.0,
        "profit_by_category": {},
        "profit_by_product": {},
    }
    if lines.empty:
        return report

    lines["cost"] = lines["purchase_price"] * lines["quantity"]
    lines["profit"] = lines["revenue"] - lines["cost"]

    report["total_revenue"] = float(lines["revenue"].sum())
    report["total_cost"] = float(lines["cost"].sum())
    report["total_profit"] = float(lines["profit"].sum())
    if report["total_revenue"] > 0:
        report["profit_margin"] = report["total_profit"] / report["total_revenue"] * 100

    by_category = lines.groupby("category")[["revenue", "cost", "profit"]].sum()
    report["profit_by_category"] = {
        cat: {k: float(v) for k, v in row.items()} for cat, row in by_category.iterrows()
    }
    by_product = lines.groupby("product_id").agg(
        name=("name", "first"), revenue=("revenue", "sum"), cost=("cost", "sum"),
        profit=("profit", "sum"), quantity=("quantity", "sum"))
    report["profit_by_product"] = {
        pid: {"name": row["name"], "revenue": float(row["revenue"]), "cost": float(row["cost"]),
              "profit": float(row["profit"]), "quantity": int(row["quantity"])}
        for pid, row in by_product.iterrows()
    }
    return report


def generate_stock_report(products, low_stock_threshold: int):
    """Low stock list, inventory value at purchase price, per-category stock."""
    low_stock = [p for p in products if p.is_low_stock(low_stock_threshold)]
    df = pd.DataFrame(
        [{"category": p.category or UNCATEGORIZED, "stock": p.stock,
          "value": p.purchase_price * p.stock} for p in products],
        columns=["category", "stock", "value"])
    total_value = float(df["value"].sum()) if not df.empty else 0.0

    by_category = {}
    if not df.empty:
        grouped = df.groupby("category").agg(
            count=("stock", "size"), total_stock=("stock", "sum"), total_value=("value", "sum"))
        by_category = {
            cat: {"count": int(row["count"]), "total_stock": int(row["total_stock"]),
                  "total_value": float(row["total_value"])}
            for cat, row in grouped.iterrows()
        }

    return {
        "low_stock": low_stock,
        "total_products": len(products),
        "total_value": total_value,
        "low_stock_count": len(low_stock),
        "out_of_stock_count": sum(1 for p in products if p.stock == 0),
        "average_stock_value": total_value / len(products) if products else 0.0,
        "stock_by_category": by_category,
    }


def get_daily_sales_data(sales, days: int = 7, today=None):
    """Daily totals for the last `days` days plus today, oldest first."""
    start, end = get_last_n_days_range(days, today)
    df = sales_frame(get_sales_for_range(sales, start, end))
    labels = [d.strftime("%Y-%m-%d") for d in pd.date_range(start, end, freq="D")]
    daily = pd.Series(0.0, index=labels)
    if not df.empty:
        totals = df.groupby(df["date"].dt.strftime("%Y-%m-%d"))["total"].sum()
        daily = daily.add(totals, fill_value=0.0).reindex(labels, fill_value=0.0)
    return {"labels": labels, "data": [float(v) for v in daily.tolist()]}


def _growth_rate(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def generate_comparative_analysis(sales, date_range, comparison_range):
    """Compare two (start, end) ranges and report growth percentages."""
    current = generate_sales_report(sales, *date_range)
    comparison = generate_sales_report(sales, *comparison_range)
    return {
        "current": current,
        "comparison": comparison,
        "growth": {
            "revenue": _growth_rate(current["total_sales"], comparison["total_sales"]),
            "orders": _growth_rate(current["sales_count"], comparison["sales_count"]),
            "avg_order": _growth_rate(current["average_sale"], comparison["average_sale"]),
        },
    }


def _trend(values: pd.Series) -> float:
    # least-squares slope against the day index
    if len(values) < 2:
        return 0.0
    x = pd.Series(range(len(values)), dtype=float)
    return float(x.cov(values) / x.var())


def _forecast_confidence(values: pd.Series) -> float:
    if len(values) < 2:
        return 0.0
    mean = values.mean()
    std = values.std(ddof=0)
    variation = std / mean if mean > 0 else 1.0
    return float(max(0.0, min(100.0, (1 - variation) * 100)))


def generate_forecast(sales, days: int = 30, today=None, history_days: int = 90):
    """Linear-trend projection of daily sales from the last `history_days` days."""
    history = pd.Series(get_daily_sales_data(sales, history_days, today)["data"], dtype=float)
    trend = _trend(history)
    last = float(history.iloc[-1]) if len(history) else 0.0
    return {
        "forecast": [max(0.0, last + trend * i) for i in range(1, days + 1)],
        "trend": trend,
        "confidence": _forecast_confidence(history),
    }


def write_report(df: pd.DataFrame, file_path: str, fmt: str = "csv"):
    """Write a report frame to CSV (default) or Excel."""
    if fmt.lower() == "excel":
        df.to_excel(file_path, index=False, sheet_name="Report")
    else:
        df.to_csv(file_path, index=False)
    logger.info(f"Report written to {file_path}")
    return file_path
