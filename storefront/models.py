# storefront/models.py
import enum
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Column, Integer, String, Numeric, JSON, TIMESTAMP, Text, ForeignKey,
    CheckConstraint, Enum, func,
)
from sqlalchemy.orm import relationship

from .db import Base
from .schemas import ShippingAddress, CartLine


class UserRole(str, enum.Enum):
    customer = "customer"
    admin = "admin"
    vendor = "vendor"


class ProductStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    archived = "archived"


class License(str, enum.Enum):
    single = "single"
    unlimited = "unlimited"
    commercial = "commercial"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    refunded = "refunded"


class AdminRole(str, enum.Enum):
    super_admin = "super_admin"
    admin = "admin"
    moderator = "moderator"


def _enum(cls, name):
    # store the lowercase values, not the member names
    return Enum(cls, name=name, values_callable=lambda e: [m.value for m in e], validate_strings=True)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(64), unique=True, index=True, nullable=True)
    email = Column(String, unique=True, index=True, nullable=True)
    name = Column(String)
    role = Column(_enum(UserRole, "user_role"), nullable=False, default=UserRole.customer)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    last_purchase_at = Column(TIMESTAMP)

    orders = relationship("Order", back_populates="user")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_nonnegative"),
        CheckConstraint("inventory >= 0", name="ck_products_inventory_nonnegative"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    price_eth = Column(Numeric(18, 8))
    price_usdc = Column(Numeric(10, 2))
    inventory = Column(Integer, nullable=False, default=0)
    category = Column(String, index=True)
    status = Column(_enum(ProductStatus, "product_status"), nullable=False, default=ProductStatus.draft)
    tags = Column(JSON, default=list, info={"python_type": List[str]})
    images = Column(JSON, default=list, info={"python_type": List[str]})
    file_url = Column(String)
    file_type = Column(String)
    license = Column(_enum(License, "product_license"))
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(32), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    status = Column(_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.pending)
    payment_status = Column(_enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.pending)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    shipping = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="USD")  # USD, ETH, USDC
    total_crypto = Column(Numeric(18, 8))
    tx_hash = Column(String)
    shipping_address = Column(JSON, info={"python_type": ShippingAddress})
    payment_method = Column(String)
    payment_intent_id = Column(String, unique=True)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)
    # price at purchase time; later product price changes do not touch it
    unit_price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(TIMESTAMP, server_default=func.now())

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Cart(Base):
    __tablename__ = "carts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True)
    session_id = Column(String, index=True, nullable=True)
    items = Column(JSON, nullable=False, default=list, info={"python_type": List[CartLine]})
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())


class Download(Base):
    __tablename__ = "downloads"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    download_url = Column(String)
    expires_at = Column(TIMESTAMP)
    download_count = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP, server_default=func.now())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Advisory only; nothing in the store refuses an expired row."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        return now >= self.expires_at


class AdminUser(Base):
    __tablename__ = "admin_users"
    wallet_address = Column(String(64), primary_key=True)
    role = Column(_enum(AdminRole, "admin_role"), nullable=False)
    permissions = Column(JSON, default=list, info={"python_type": List[str]})
    created_at = Column(TIMESTAMP, server_default=func.now())
    last_login = Column(TIMESTAMP)
