"""Declarative registry of the tables editable through the grid.

Each logical table maps to an ordered list of typed column descriptors. The
editor never inspects a table's shape on its own: everything it knows about
columns, labels and options comes from here.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from moddersheet.errors import UnknownTableError
from moddersheet.utils import parse_datetime, to_float

COLUMN_TYPES = ("text", "number", "boolean", "select", "image", "datetime")


@dataclass(frozen=True)
class ColumnDescriptor:
    key: str
    label: str
    type: str = "text"
    options: Tuple[Tuple[Any, str], ...] = ()
    # Options resolved at runtime (e.g. "categories")
    option_source: Optional[str] = None
    sticky: bool = False
    readonly: bool = False

    def __post_init__(self):
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"Unknown column type {self.type!r} for {self.key}")


@dataclass(frozen=True)
class TableSchema:
    name: str
    source: str
    columns: Tuple[ColumnDescriptor, ...]
    filters: Dict[str, Any] = field(default_factory=dict)
    defaults: Dict[str, Any] = field(default_factory=dict)
    derive: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None

    def __post_init__(self):
        keys = [c.key for c in self.columns]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"Duplicate column keys in {self.name}: {', '.join(dupes)}")

    def column(self, key: str) -> Optional[ColumnDescriptor]:
        for c in self.columns:
            if c.key == key:
                return c
        return None


def _opts(*pairs: Tuple[Any, str]) -> Tuple[Tuple[Any, str], ...]:
    return tuple(pairs)


def _plain_opts(values: Iterable[str]) -> Tuple[Tuple[Any, str], ...]:
    return tuple((v, v) for v in values)


UNIT_OPTIONS = _plain_opts(["dona", "kg", "m", "m2", "m3", "litr"])

PRODUCT_TYPE_OPTIONS = _opts(("sale", "Sotuv"), ("rental", "Ijara"))

ORDER_STATUS_OPTIONS = _opts(
    ("pending", "Kutilmoqda"),
    ("confirmed", "Tasdiqlangan"),
    ("processing", "Jarayonda"),
    ("shipped", "Yuborilgan"),
    ("delivered", "Yetkazilgan"),
    ("cancelled", "Bekor qilingan"),
)


def debtor_fields(row: Dict[str, Any], now: Optional[dt.datetime] = None) -> Dict[str, Any]:
    """Remaining days until a borrowed order is due, and whether it is overdue.

    Due date is ``borrowed_updated_at`` plus the base and additional borrow
    periods (in days). Days are rounded up.
    """
    start = parse_datetime(row.get("borrowed_updated_at")) or parse_datetime(row.get("created_at"))
    if start is None:
        return {"days_remaining": 0, "is_overdue": False}
    period = to_float(row.get("borrowed_period")) or 0.0
    extra = to_float(row.get("borrowed_additional_period")) or 0.0
    due = start + dt.timedelta(days=period + extra)
    if now is None:
        now = dt.datetime.now(start.tzinfo)
    elif (now.tzinfo is None) != (start.tzinfo is None):
        now = now.replace(tzinfo=start.tzinfo)
    days = math.ceil((due - now).total_seconds() / 86400)
    return {"days_remaining": days, "is_overdue": days < 0}


TABLE_SCHEMAS: Dict[str, TableSchema] = {
    "products": TableSchema(
        name="products",
        source="products",
        columns=(
            ColumnDescriptor("images", "Rasm", "image"),
            ColumnDescriptor("name_uz", "Nomi (UZ)", "text", sticky=True),
            ColumnDescriptor("price", "Narxi", "number"),
            ColumnDescriptor("unit", "O'lchov", "select", options=UNIT_OPTIONS),
            ColumnDescriptor("stock_quantity", "Miqdor", "number"),
            ColumnDescriptor("category_id", "Kategoriya", "select", option_source="categories"),
            ColumnDescriptor("product_type", "Turi", "select", options=PRODUCT_TYPE_OPTIONS),
            ColumnDescriptor("is_available", "Mavjud", "boolean"),
            ColumnDescriptor("is_featured", "Tavsiya", "boolean"),
            ColumnDescriptor("is_popular", "Mashhur", "boolean"),
            ColumnDescriptor("has_delivery", "Yetkazish", "boolean"),
            ColumnDescriptor("delivery_price", "Yetkazish narxi", "number"),
            ColumnDescriptor("minimum_order", "Min buyurtma", "number"),
            ColumnDescriptor("view_count", "Ko'rishlar", "number", readonly=True),
            ColumnDescriptor("average_rating", "Reyting", "number", readonly=True),
        ),
        defaults={"unit": "dona", "product_type": "sale", "is_available": True, "minimum_order": 1},
    ),
    "orders": TableSchema(
        name="orders",
        source="orders",
        columns=(
            ColumnDescriptor("order_number", "Raqam", "text", sticky=True),
            ColumnDescriptor("customer_name", "Mijoz", "text"),
            ColumnDescriptor("customer_phone", "Telefon", "text"),
            ColumnDescriptor("status", "Holat", "select", options=ORDER_STATUS_OPTIONS),
            ColumnDescriptor("total_amount", "Summa", "number"),
            ColumnDescriptor("is_payed", "To'langan", "boolean"),
            ColumnDescriptor("is_agree", "Kelishilgan", "boolean"),
            ColumnDescriptor("is_claimed", "Qabul", "boolean"),
            ColumnDescriptor("is_borrowed", "Qarzdor", "boolean"),
            ColumnDescriptor("borrowed_period", "Qarz muddati", "number"),
            ColumnDescriptor("delivery_address", "Manzil", "text"),
            ColumnDescriptor("created_at", "Sana", "datetime", readonly=True),
        ),
        defaults={"status": "pending"},
    ),
    "debtors": TableSchema(
        name="debtors",
        source="orders",
        columns=(
            ColumnDescriptor("order_number", "Raqam", "text", sticky=True),
            ColumnDescriptor("customer_name", "Mijoz", "text"),
            ColumnDescriptor("customer_phone", "Telefon", "text"),
            ColumnDescriptor("total_amount", "Summa", "number"),
            ColumnDescriptor("borrowed_period", "Asosiy muddat", "number"),
            ColumnDescriptor("borrowed_additional_period", "Qo'shimcha muddat", "number"),
            ColumnDescriptor("days_remaining", "Qolgan kunlar", "number", readonly=True),
            ColumnDescriptor("is_overdue", "Kechikkan", "boolean", readonly=True),
            ColumnDescriptor("borrowed_updated_at", "Yangilangan", "datetime"),
        ),
        filters={"is_borrowed": True, "is_payed": False},
        defaults={"status": "pending"},
        derive=debtor_fields,
    ),
    "categories": TableSchema(
        name="categories",
        source="categories",
        columns=(
            ColumnDescriptor("name_uz", "Nomi (UZ)", "text", sticky=True),
            ColumnDescriptor("name_ru", "Nomi (RU)", "text"),
            ColumnDescriptor("parent_id", "Ota kategoriya", "select", option_source="categories"),
            ColumnDescriptor("level", "Daraja", "number"),
            ColumnDescriptor("products_count", "Mahsulotlar", "number", readonly=True),
            ColumnDescriptor("created_at", "Yaratilgan", "datetime", readonly=True),
        ),
        defaults={"level": 1},
    ),
}


def get_schema(table: str) -> TableSchema:
    try:
        return TABLE_SCHEMAS[table]
    except KeyError:
        raise UnknownTableError(table) from None


def category_options(categories: Sequence[Dict[str, Any]]) -> Tuple[Tuple[Any, str], ...]:
    return tuple(
        (c.get("id"), str(c.get("name_uz") or c.get("id")))
        for c in categories
    )


def columns_for(table: str, categories: Optional[Sequence[Dict[str, Any]]] = None) -> List[ColumnDescriptor]:
    """Column list for a table with runtime option sources resolved."""
    schema = get_schema(table)
    resolved: List[ColumnDescriptor] = []
    for col in schema.columns:
        if col.option_source == "categories":
            col = replace(col, options=category_options(categories or []))
        resolved.append(col)
    return resolved


def option_label(column: ColumnDescriptor, value: Any) -> str:
    if value is None:
        return ""
    for opt_value, label in column.options:
        if opt_value == value or str(opt_value) == str(value):
            return label
    return str(value)


def option_value(column: ColumnDescriptor, label: Any) -> Optional[Any]:
    """Reverse of :func:`option_label`; accepts a raw option value as well."""
    if label is None:
        return None
    text = str(label).strip()
    if not text:
        return None
    low = text.lower()
    for opt_value, opt_label in column.options:
        if str(opt_label).strip().lower() == low:
            return opt_value
    for opt_value, _ in column.options:
        if str(opt_value).lower() == low:
            return opt_value
    return None


def table_names() -> List[str]:
    return list(TABLE_SCHEMAS)
