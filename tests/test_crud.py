"""Tests for the data-access helpers against a SQLite database."""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from storefront import crud
from storefront.models import (
    AdminRole, Order, OrderItem, OrderStatus, PaymentStatus, Product, ProductStatus, UserRole,
)
from storefront.validation import ValidationError

pytestmark = pytest.mark.asyncio


async def _count(session, model, *where):
    r = await session.execute(select(func.count()).select_from(model).where(*where))
    return r.scalar_one()


async def test_create_product_defaults(session):
    p = await crud.create_product(
        session, {"name": "Theme", "slug": "theme", "price": 49.99, "inventory": 1, "category": "themes"}
    )
    assert p.id is not None
    assert p.status == ProductStatus.draft
    assert p.price == Decimal("49.99")
    assert await crud.get_product_by_slug(session, "theme") is p


async def test_create_product_rejects_invalid_input(session):
    with pytest.raises(ValidationError) as exc:
        await crud.create_product(session, {"name": "x", "slug": "x", "price": -1, "inventory": 0, "category": "c"})
    assert set(exc.value.fields) == {"name", "price"}
    assert await _count(session, Product) == 0


async def test_create_product_rejects_sub_cent_price(session):
    with pytest.raises(ValidationError) as exc:
        await crud.create_product(
            session, {"name": "Theme", "slug": "theme", "price": 49.999, "inventory": 1, "category": "themes"}
        )
    assert exc.value.fields == ["price"]
    assert await _count(session, Product) == 0


async def test_duplicate_slug_propagates_store_error(session, product):
    with pytest.raises(IntegrityError):
        await crud.create_product(
            session, {"name": "Other", "slug": "parser-kit", "price": 1, "inventory": 0, "category": "c"}
        )
    # the failed insert is rolled back; the session keeps working
    existing = await crud.get_product_by_slug(session, "parser-kit")
    assert existing.slug == "parser-kit"
    assert await _count(session, Product) == 1


async def test_list_products_filters(session, product, other_product):
    await crud.set_product_status(session, other_product.id, ProductStatus.archived)
    active = await crud.list_products(session, status=ProductStatus.active)
    assert [p.slug for p in active] == ["parser-kit"]
    assert len(await crud.list_products(session, category="scripts")) == 2


async def test_users(session, customer):
    assert customer.role == UserRole.customer
    assert customer.wallet_address == "0xabcdef0123456789"
    assert (await crud.get_user_by_wallet(session, "0xABCDEF0123456789")).id == customer.id
    assert (await crud.get_user_by_email(session, "ada@lovelace.io")).id == customer.id

    same = await crud.upsert_customer_by_wallet(session, "0xabcdef0123456789", email="ada@analytical.io")
    assert same.id == customer.id
    assert same.email == "ada@analytical.io"

    fresh = await crud.upsert_customer_by_wallet(session, "0x9999")
    assert fresh.id != customer.id
    assert fresh.email is None


async def test_users_reject_malformed_email(session, customer):
    with pytest.raises(ValidationError) as exc:
        await crud.create_user(session, email="not-an-email", wallet_address="0x7777")
    assert exc.value.fields == ["email"]
    with pytest.raises(ValidationError) as exc:
        await crud.upsert_customer_by_wallet(session, customer.wallet_address, email="ada@")
    assert exc.value.fields == ["email"]
    assert (await crud.get_user_by_id(session, customer.id)).email == "ada@lovelace.io"
    assert await crud.get_user_by_wallet(session, "0x7777") is None


async def test_cart_lines_merge(session, customer, product, other_product):
    cart = await crud.get_or_create_cart(session, user_id=customer.id)
    await crud.add_item_to_cart(session, cart, product.id, 2)
    await crud.add_item_to_cart(session, cart, product.id, 1)
    await crud.add_item_to_cart(session, cart, other_product.id)
    assert cart.items == [
        {"product_id": product.id, "quantity": 3},
        {"product_id": other_product.id, "quantity": 1},
    ]
    again = await crud.get_or_create_cart(session, user_id=customer.id)
    assert again.id == cart.id

    await crud.remove_item_from_cart(session, cart, product.id)
    assert cart.items == [{"product_id": other_product.id, "quantity": 1}]
    await crud.clear_cart(session, cart)
    assert cart.items == []


async def test_guest_cart_by_session(session, product):
    cart = await crud.get_or_create_cart(session, session_id="guest-1")
    assert cart.user_id is None
    with pytest.raises(ValidationError):
        await crud.add_item_to_cart(session, cart, product.id, 0)
    with pytest.raises(ValueError):
        await crud.get_or_create_cart(session)


async def test_place_order_snapshots_prices(session, customer, product, other_product, checkout):
    order = await crud.place_order(
        session, customer.id,
        [{"product_id": product.id, "quantity": 2}, {"productId": other_product.id}],
        checkout, tax="1.25", shipping=4,
    )
    assert order.order_number.startswith("ORD-")
    assert order.status == OrderStatus.pending
    assert order.payment_status == PaymentStatus.pending
    assert order.subtotal == Decimal("44.00")
    assert order.total == Decimal("49.25")
    assert order.shipping_address["zip"] == "12345"
    assert order.payment_method == "card"

    await session.refresh(product)
    assert product.inventory == 8

    # a later price change does not reach the stored items
    product.price = Decimal("99.00")
    await session.commit()
    loaded = await crud.get_order_by_number(session, order.order_number)
    prices = sorted(i.unit_price for i in loaded.items)
    assert prices == [Decimal("5.00"), Decimal("19.50")]


async def test_place_order_insufficient_inventory_rolls_back(session, customer, product, other_product, checkout):
    with pytest.raises(ValidationError) as exc:
        await crud.place_order(
            session, customer.id,
            [{"product_id": product.id, "quantity": 1}, {"product_id": other_product.id, "quantity": 4}],
            checkout,
        )
    assert exc.value.fields == ["items.1.quantity"]
    await session.refresh(product)
    assert product.inventory == 10
    assert await _count(session, Order) == 0


async def test_place_order_validates_checkout(session, customer, product, checkout):
    checkout["shippingAddress"]["zip"] = "ABCDE"
    with pytest.raises(ValidationError) as exc:
        await crud.place_order(session, customer.id, [{"product_id": product.id}], checkout)
    assert exc.value.fields == ["shipping_address.zip"]


async def test_place_order_unknown_product(session, customer, checkout):
    with pytest.raises(ValidationError) as exc:
        await crud.place_order(session, customer.id, [{"product_id": 404}], checkout)
    assert exc.value.fields == ["items.0.product_id"]
    with pytest.raises(ValidationError):
        await crud.place_order(session, customer.id, [], checkout)


async def test_place_order_refuses_products_not_active(session, customer, product, checkout):
    draft = await crud.create_product(
        session, {"name": "Beta Kit", "slug": "beta-kit", "price": 9, "inventory": 5, "category": "scripts"}
    )
    with pytest.raises(ValidationError) as exc:
        await crud.place_order(
            session, customer.id,
            [{"product_id": product.id}, {"product_id": draft.id}],
            checkout,
        )
    assert exc.value.fields == ["items.1.product_id"]

    await crud.set_product_status(session, product.id, ProductStatus.archived)
    with pytest.raises(ValidationError) as exc:
        await crud.place_order(session, customer.id, [{"product_id": product.id}], checkout)
    assert exc.value.fields == ["items.0.product_id"]
    await session.refresh(product)
    assert product.inventory == 10
    assert await _count(session, Order) == 0


async def test_place_order_from_cart(session, customer, product, checkout):
    cart = await crud.get_or_create_cart(session, user_id=customer.id)
    await crud.add_item_to_cart(session, cart, product.id, 2)
    order = await crud.place_order_from_cart(session, cart, checkout)
    assert order.total == Decimal("39.00")
    assert cart.items == []
    user = await crud.get_user_by_id(session, customer.id)
    await session.refresh(user)
    assert user.last_purchase_at is not None
    assert [o.id for o in await crud.get_orders_for_user(session, customer.id)] == [order.id]


async def test_failed_checkout_keeps_cart_loaded(session, customer, product, checkout):
    cart = await crud.get_or_create_cart(session, user_id=customer.id)
    await crud.add_item_to_cart(session, cart, product.id, 20)
    with pytest.raises(ValidationError) as exc:
        await crud.place_order_from_cart(session, cart, checkout)
    assert exc.value.fields == ["items.0.quantity"]
    # attribute access must not need a lazy reload
    assert cart.items == [{"product_id": product.id, "quantity": 20}]
    assert customer.id == cart.user_id
    assert await _count(session, Order) == 0


async def test_order_status_updates(session, customer, product, checkout):
    order = await crud.place_order(session, customer.id, [{"product_id": product.id}], checkout)
    await crud.update_order_status(session, order.id, "processing")
    await crud.update_order_status(session, order.id, OrderStatus.shipped)
    with pytest.raises(ValidationError):
        await crud.update_order_status(session, order.id, "pending")
    assert (await crud.get_order(session, order.id)).status == OrderStatus.shipped
    assert await crud.update_order_status(session, 9999, "processing") is None

    paid = await crud.update_payment_status(session, order.id, "confirmed", tx_hash="0xfeed",
                                            total_crypto="0.0065", currency="ETH")
    assert paid.payment_status == PaymentStatus.confirmed
    assert paid.tx_hash == "0xfeed"
    assert paid.total_crypto == Decimal("0.0065")


async def test_delete_order_cascades_to_items_only(session, customer, product, other_product, checkout):
    order = await crud.place_order(
        session, customer.id,
        [{"product_id": product.id, "quantity": 1}, {"product_id": other_product.id, "quantity": 1}],
        checkout,
    )
    assert await _count(session, OrderItem, OrderItem.order_id == order.id) == 2

    assert await crud.delete_order(session, order.id) is True
    assert await _count(session, Order) == 0
    assert await _count(session, OrderItem) == 0
    assert await _count(session, Product) == 2
    assert await crud.delete_order(session, order.id) is False


async def test_delete_order_with_downloads_is_refused(session, customer, product, checkout):
    order = await crud.place_order(session, customer.id, [{"product_id": product.id}], checkout)
    await crud.create_download(session, order.id, product.id, customer.id)
    # the rollback expires loaded objects
    order_id, customer_id = order.id, customer.id

    with pytest.raises(IntegrityError):
        await crud.delete_order(session, order_id)
    assert (await crud.get_order(session, order_id)).id == order_id
    assert len(await crud.get_downloads_for_user(session, customer_id)) == 1


async def test_order_requires_existing_user(session, product, checkout):
    with pytest.raises(IntegrityError):
        await crud.place_order(session, 12345, [{"product_id": product.id}], checkout)
    await session.refresh(product)
    assert product.inventory == 10


async def test_downloads(session, customer, product, checkout):
    order = await crud.place_order(session, customer.id, [{"product_id": product.id}], checkout)
    dl = await crud.create_download(session, order.id, product.id, customer.id, "https://cdn.example.com/kit.zip")
    assert dl.download_count == 0
    assert dl.is_expired() is False
    assert dl.is_expired(dl.expires_at + timedelta(seconds=1)) is True

    await crud.record_download(session, dl.id)
    dl = await crud.record_download(session, dl.id)
    assert dl.download_count == 2

    old = await crud.create_download(session, order.id, product.id, customer.id, ttl=timedelta(days=-1))
    visible = await crud.get_downloads_for_user(session, customer.id)
    assert [d.id for d in visible] == [dl.id]
    everything = await crud.get_downloads_for_user(session, customer.id, include_expired=True)
    assert [d.id for d in everything] == [dl.id, old.id]


async def test_admin_users(session):
    admin = await crud.upsert_admin(session, "0xADMIN", AdminRole.moderator, ["products:write"])
    assert admin.wallet_address == "0xadmin"
    assert crud.admin_has_permission(admin, "products:write")
    assert not crud.admin_has_permission(admin, "orders:refund")

    await crud.upsert_admin(session, "0xadmin", "super_admin")
    admin = await crud.touch_admin_login(session, "0xAdmin")
    assert admin.role == AdminRole.super_admin
    assert admin.last_login is not None
    assert crud.admin_has_permission(admin, "orders:refund")
    assert not crud.admin_has_permission(None, "orders:refund")
    assert await crud.touch_admin_login(session, "0xnobody") is None
