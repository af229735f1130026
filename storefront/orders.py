# storefront/orders.py
"""Order invariants the schema itself cannot express.

- total == subtotal + tax + shipping
- fulfilment status only moves forward:
      pending -> processing -> shipped -> delivered
      pending | processing -> cancelled
- payment status (crypto settlements) only moves forward:
      pending -> confirmed -> completed
      confirmed | completed -> refunded
"""
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Tuple, Union

from .models import Order, OrderStatus, PaymentStatus
from .utils import quantize_fiat
from .validation import ValidationError

Number = Union[Decimal, int, float, str]

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.processing, OrderStatus.cancelled}),
    OrderStatus.processing: frozenset({OrderStatus.shipped, OrderStatus.cancelled}),
    OrderStatus.shipped: frozenset({OrderStatus.delivered}),
    OrderStatus.delivered: frozenset(),
    OrderStatus.cancelled: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.pending: frozenset({PaymentStatus.confirmed}),
    PaymentStatus.confirmed: frozenset({PaymentStatus.completed, PaymentStatus.refunded}),
    PaymentStatus.completed: frozenset({PaymentStatus.refunded}),
    PaymentStatus.refunded: frozenset(),
}


def compute_subtotal(lines: Iterable[Tuple[Number, int]]) -> Decimal:
    """Sum of unit_price * quantity over (unit_price, quantity) pairs."""
    return quantize_fiat(sum((Decimal(str(price)) * qty for price, qty in lines), Decimal("0")))


def compute_total(subtotal: Number, tax: Number = 0, shipping: Number = 0) -> Decimal:
    return quantize_fiat(Decimal(str(subtotal)) + Decimal(str(tax)) + Decimal(str(shipping)))


def check_totals(order: Order) -> None:
    expected = compute_total(order.subtotal or 0, order.tax or 0, order.shipping or 0)
    if quantize_fiat(order.total or 0) != expected:
        raise ValidationError.single(
            "total", f"Total {order.total} does not equal subtotal + tax + shipping ({expected})"
        )


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return OrderStatus(new) in ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: PaymentStatus, new: PaymentStatus) -> bool:
    return PaymentStatus(new) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def transition_status(order: Order, new: Union[OrderStatus, str]) -> Order:
    try:
        new = OrderStatus(new)
    except ValueError:
        raise ValidationError.single("status", f"Unknown order status '{new}'") from None
    current = OrderStatus(order.status or OrderStatus.pending)
    if not can_transition(current, new):
        raise ValidationError.single("status", f"Cannot move order from {current.value} to {new.value}")
    order.status = new
    return order


def transition_payment_status(order: Order, new: Union[PaymentStatus, str]) -> Order:
    try:
        new = PaymentStatus(new)
    except ValueError:
        raise ValidationError.single("payment_status", f"Unknown payment status '{new}'") from None
    current = PaymentStatus(order.payment_status or PaymentStatus.pending)
    if not can_transition_payment(current, new):
        raise ValidationError.single(
            "payment_status", f"Cannot move payment from {current.value} to {new.value}"
        )
    order.payment_status = new
    return order
