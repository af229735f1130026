# storefront/crud.py
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    User, Product, Order, OrderItem, Cart, Download, AdminUser,
    ProductStatus, AdminRole,
)
from . import orders as order_rules
from .utils import generate_order_number, quantize_fiat
from .validation import (
    ValidationError, FieldError, validate_product, validate_checkout, validate_cart_line,
    validate_customer,
)

logger = logging.getLogger(__name__)

DOWNLOAD_TTL = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def _commit(db: AsyncSession) -> None:
    """Commit; on a store error roll back so the session stays usable, then re-raise."""
    try:
        await db.commit()
    except Exception as e:
        logger.warning("commit failed, rolling back: %s", e)
        await db.rollback()
        raise


# ---------- products ----------
async def get_product(db: AsyncSession, product_id: int) -> Optional[Product]:
    q = select(Product).where(Product.id == product_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_product_by_slug(db: AsyncSession, slug: str) -> Optional[Product]:
    q = select(Product).where(Product.slug == slug)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def list_products(db: AsyncSession, limit: int = 50, status: Optional[ProductStatus] = None,
                        category: Optional[str] = None) -> List[Product]:
    q = select(Product).order_by(Product.id)
    if status is not None:
        q = q.where(Product.status == ProductStatus(status))
    if category is not None:
        q = q.where(Product.category == category)
    r = await db.execute(q.limit(limit))
    return list(r.scalars().all())


async def create_product(db: AsyncSession, data: Dict[str, Any], **extra) -> Product:
    """Validate a product document and insert it. `extra` carries columns the
    create form does not cover (price_eth, file_url, license, status, ...)."""
    clean = validate_product(data)
    clean["price"] = quantize_fiat(clean["price"])
    product = Product(**clean, **extra)
    db.add(product)
    await _commit(db)
    logger.info("created product %s (slug=%s)", product.id, product.slug)
    return product


async def set_product_status(db: AsyncSession, product_id: int, status: ProductStatus) -> Optional[Product]:
    product = await get_product(db, product_id)
    if product is None:
        return None
    product.status = ProductStatus(status)
    await _commit(db)
    return product


# ---------- users ----------
async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    q = select(User).where(User.id == user_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    q = select(User).where(User.email == email)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_user_by_wallet(db: AsyncSession, wallet_address: str) -> Optional[User]:
    q = select(User).where(User.wallet_address == wallet_address.lower())
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def create_user(db: AsyncSession, email: Optional[str] = None, name: Optional[str] = None,
                      wallet_address: Optional[str] = None, **extra) -> User:
    clean = validate_customer({"email": email, "name": name, "wallet_address": wallet_address})
    user = User(**clean, **extra)
    db.add(user)
    await _commit(db)
    return user


async def upsert_customer_by_wallet(db: AsyncSession, wallet_address: str, email: Optional[str] = None) -> User:
    clean = validate_customer({"email": email, "wallet_address": wallet_address})
    existing = await get_user_by_wallet(db, clean["wallet_address"])
    if existing:
        if clean["email"] and existing.email != clean["email"]:
            existing.email = clean["email"]
            await _commit(db)
        return existing
    return await create_user(db, email=clean["email"], wallet_address=clean["wallet_address"])


# ---------- carts ----------
async def get_or_create_cart(db: AsyncSession, user_id: Optional[int] = None,
                             session_id: Optional[str] = None) -> Cart:
    if user_id is None and session_id is None:
        raise ValueError("a cart belongs to a user or a session")
    if user_id is not None:
        q = select(Cart).where(Cart.user_id == user_id)
    else:
        q = select(Cart).where(Cart.session_id == session_id, Cart.user_id.is_(None))
    r = await db.execute(q.order_by(Cart.id).limit(1))
    cart = r.scalar_one_or_none()
    if cart:
        return cart
    cart = Cart(user_id=user_id, session_id=session_id, items=[])
    db.add(cart)
    await _commit(db)
    return cart


async def add_item_to_cart(db: AsyncSession, cart: Cart, product_id: int, quantity: int = 1) -> Cart:
    line = validate_cart_line({"product_id": product_id, "quantity": quantity})
    items = [dict(i) for i in (cart.items or [])]
    for item in items:
        if item["product_id"] == line["product_id"]:
            item["quantity"] += line["quantity"]
            break
    else:
        items.append(line)
    # reassign: in-place mutation of a JSON value is not tracked
    cart.items = items
    await _commit(db)
    return cart


async def remove_item_from_cart(db: AsyncSession, cart: Cart, product_id: int) -> Cart:
    cart.items = [dict(i) for i in (cart.items or []) if i["product_id"] != product_id]
    await _commit(db)
    return cart


async def clear_cart(db: AsyncSession, cart: Cart) -> Cart:
    cart.items = []
    await _commit(db)
    return cart


# ---------- orders ----------
async def _reserve_inventory(db: AsyncSession, product_id: int, qty: int) -> bool:
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.inventory >= qty)
        .values(inventory=Product.inventory - qty)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def place_order(
    db: AsyncSession,
    user_id: int,
    lines: Iterable[Dict[str, Any]],
    checkout: Dict[str, Any],
    tax=0,
    shipping=0,
    payment_intent_id: Optional[str] = None,
) -> Order:
    """Create an order with item rows priced from the current catalog.

    Unit prices are copied onto the items; inventory is decremented in the same
    transaction. Only active products can be ordered. Raises ValidationError for
    bad input, unavailable products or insufficient stock; store errors propagate.
    Either way only the order's savepoint is rolled back, so objects the caller
    already holds stay loaded.
    """
    clean = validate_checkout(checkout)
    lines = [validate_cart_line(line) for line in lines]
    if not lines:
        raise ValidationError.single("items", "Order must contain at least one item")

    async with db.begin_nested():
        errors = []
        priced = []
        for idx, line in enumerate(lines):
            product = await get_product(db, line["product_id"])
            if product is None or product.status != ProductStatus.active:
                errors.append(FieldError(f"items.{idx}.product_id", "Product is not available"))
                continue
            if not await _reserve_inventory(db, product.id, line["quantity"]):
                errors.append(FieldError(f"items.{idx}.quantity", "Insufficient inventory"))
                continue
            priced.append((product, line["quantity"]))
        if errors:
            raise ValidationError(errors)

        subtotal = order_rules.compute_subtotal((p.price, qty) for p, qty in priced)
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            subtotal=subtotal,
            tax=quantize_fiat(tax),
            shipping=quantize_fiat(shipping),
            total=order_rules.compute_total(subtotal, tax, shipping),
            shipping_address=clean["shipping_address"],
            payment_method=clean.get("payment_method"),
            payment_intent_id=payment_intent_id,
            items=[OrderItem(product_id=p.id, quantity=qty, unit_price=p.price) for p, qty in priced],
        )
        order_rules.check_totals(order)
        db.add(order)
        await db.execute(update(User).where(User.id == user_id).values(last_purchase_at=_utcnow()))
        await db.flush()
    await _commit(db)

    logger.info("placed order %s for user %s total=%s", order.order_number, user_id, order.total)
    return order


async def place_order_from_cart(db: AsyncSession, cart: Cart, checkout: Dict[str, Any], **kwargs) -> Order:
    if cart.user_id is None:
        raise ValidationError.single("user_id", "Sign in to check out")
    order = await place_order(db, cart.user_id, cart.items or [], checkout, **kwargs)
    await clear_cart(db, cart)
    return order


async def get_order(db: AsyncSession, order_id: int) -> Optional[Order]:
    q = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_order_by_number(db: AsyncSession, order_number: str) -> Optional[Order]:
    q = select(Order).options(selectinload(Order.items)).where(Order.order_number == order_number)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_orders_for_user(db: AsyncSession, user_id: int, limit: int = 50) -> List[Order]:
    q = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    )
    r = await db.execute(q)
    return list(r.scalars().all())


async def update_order_status(db: AsyncSession, order_id: int, status) -> Optional[Order]:
    order = await get_order(db, order_id)
    if order is None:
        return None
    previous = order.status
    order_rules.transition_status(order, status)
    await _commit(db)
    logger.info("order %s status %s -> %s", order.order_number, previous.value, order.status.value)
    return order


async def update_payment_status(db: AsyncSession, order_id: int, status, tx_hash: Optional[str] = None,
                                total_crypto=None, currency: Optional[str] = None) -> Optional[Order]:
    order = await get_order(db, order_id)
    if order is None:
        return None
    order_rules.transition_payment_status(order, status)
    if tx_hash is not None:
        order.tx_hash = tx_hash
    if total_crypto is not None:
        order.total_crypto = Decimal(str(total_crypto))
    if currency is not None:
        order.currency = currency
    await _commit(db)
    return order


async def delete_order(db: AsyncSession, order_id: int) -> bool:
    """Delete an order; its order_items go with it (ON DELETE CASCADE).

    Downloads do not cascade: deleting an order that has any raises the
    store's IntegrityError after the session is rolled back.
    """
    try:
        result = await db.execute(delete(Order).where(Order.id == order_id))
    except Exception:
        await db.rollback()
        raise
    await _commit(db)
    return result.rowcount == 1


# ---------- downloads ----------
async def create_download(db: AsyncSession, order_id: int, product_id: int, user_id: int,
                          download_url: Optional[str] = None, ttl: Optional[timedelta] = DOWNLOAD_TTL) -> Download:
    dl = Download(
        order_id=order_id,
        product_id=product_id,
        user_id=user_id,
        download_url=download_url,
        expires_at=_utcnow() + ttl if ttl is not None else None,
    )
    db.add(dl)
    await _commit(db)
    return dl


async def get_download(db: AsyncSession, download_id: int) -> Optional[Download]:
    q = select(Download).where(Download.id == download_id)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def record_download(db: AsyncSession, download_id: int) -> Optional[Download]:
    """Bump the counter in the store. Expiry is not checked here."""
    await db.execute(
        update(Download)
        .where(Download.id == download_id)
        .values(download_count=Download.download_count + 1)
    )
    await _commit(db)
    dl = await get_download(db, download_id)
    if dl is not None:
        await db.refresh(dl)
    return dl


async def get_downloads_for_user(db: AsyncSession, user_id: int, include_expired: bool = False) -> List[Download]:
    q = select(Download).where(Download.user_id == user_id)
    if not include_expired:
        q = q.where(or_(Download.expires_at.is_(None), Download.expires_at > _utcnow()))
    r = await db.execute(q.order_by(Download.id))
    return list(r.scalars().all())


# ---------- admin users ----------
async def get_admin(db: AsyncSession, wallet_address: str) -> Optional[AdminUser]:
    q = select(AdminUser).where(AdminUser.wallet_address == wallet_address.lower())
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def upsert_admin(db: AsyncSession, wallet_address: str, role: AdminRole,
                       permissions: Optional[List[str]] = None) -> AdminUser:
    admin = await get_admin(db, wallet_address)
    if admin is None:
        admin = AdminUser(wallet_address=wallet_address.lower())
        db.add(admin)
    admin.role = AdminRole(role)
    admin.permissions = list(permissions or [])
    await _commit(db)
    return admin


async def touch_admin_login(db: AsyncSession, wallet_address: str) -> Optional[AdminUser]:
    admin = await get_admin(db, wallet_address)
    if admin is None:
        return None
    admin.last_login = _utcnow()
    await _commit(db)
    return admin


def admin_has_permission(admin: Optional[AdminUser], permission: str) -> bool:
    if admin is None:
        return False
    if admin.role == AdminRole.super_admin:
        return True
    return permission in (admin.permissions or [])
