"""
Read and insert shapes derived from the table declarations.

Each table gets two pydantic models built from its columns, so field lists
are never written twice:
- read shape: every column; nullable columns are Optional
- insert shape: a column is required only when it is NOT NULL, has no
  client or server default and is not an auto-increment key
"""

from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, create_model
from sqlalchemy import Column, Integer

from .models import User, Product, Order, OrderItem, Cart, Download, AdminUser


def column_python_type(column: Column) -> Any:
    override = column.info.get("python_type")
    if override is not None:
        return override
    try:
        return column.type.python_type
    except NotImplementedError:
        return Any


def _is_generated_key(column: Column) -> bool:
    return (
        column.primary_key
        and isinstance(column.type, Integer)
        and column.autoincrement in (True, "auto")
    )


def _is_optional_on_insert(column: Column) -> bool:
    return (
        column.nullable
        or column.default is not None
        or column.server_default is not None
        or _is_generated_key(column)
    )


def _fields(table_cls, optional) -> Dict[str, Tuple[Any, Any]]:
    fields = {}
    for column in table_cls.__table__.columns:
        py_type = column_python_type(column)
        if optional(column):
            fields[column.key] = (Optional[py_type], None)
        else:
            fields[column.key] = (py_type, ...)
    return fields


def read_model(table_cls) -> Type[BaseModel]:
    return create_model(
        f"{table_cls.__name__}Read",
        __config__=ConfigDict(from_attributes=True),
        **_fields(table_cls, lambda c: c.nullable and not c.primary_key),
    )


def insert_model(table_cls) -> Type[BaseModel]:
    return create_model(
        f"{table_cls.__name__}Create",
        __config__=ConfigDict(from_attributes=True),
        **_fields(table_cls, _is_optional_on_insert),
    )


UserRead = read_model(User)
UserCreate = insert_model(User)
ProductRead = read_model(Product)
ProductCreate = insert_model(Product)
OrderRead = read_model(Order)
OrderCreate = insert_model(Order)
OrderItemRead = read_model(OrderItem)
OrderItemCreate = insert_model(OrderItem)
CartRead = read_model(Cart)
CartCreate = insert_model(Cart)
DownloadRead = read_model(Download)
DownloadCreate = insert_model(Download)
AdminUserRead = read_model(AdminUser)
AdminUserCreate = insert_model(AdminUser)


class ProductWithDetails(ProductRead):
    in_stock: bool = False
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)

    @classmethod
    def from_product(cls, product: Product, discount_percentage: Optional[float] = None) -> "ProductWithDetails":
        base = ProductRead.model_validate(product).model_dump()
        return cls(**base, in_stock=(product.inventory or 0) > 0, discount_percentage=discount_percentage)
