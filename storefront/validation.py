# storefront/validation.py
from typing import Any, Dict, List, Mapping, NamedTuple, Tuple

import pydantic

from .schemas import ProductIn, CheckoutIn, CartLine, CustomerIn


class FieldError(NamedTuple):
    field: str
    message: str


class ValidationError(ValueError):
    """Rejected input. Carries every violated field, not just the first."""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors))

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.errors]

    def as_dict(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for e in self.errors:
            out.setdefault(e.field, []).append(e.message)
        return out


# errors whose message is replaced by the field's own wording
_CONSTRAINT_TYPES = {
    "string_too_short",
    "greater_than",
    "greater_than_equal",
    "string_pattern_mismatch",
}

PRODUCT_MESSAGES = {
    "name": "Name must be at least 3 characters",
    "slug": "Slug is required",
    "price": "Price must be positive",
    "inventory": "Inventory cannot be negative",
    "category": "Category is required",
}

CHECKOUT_MESSAGES = {
    "shipping_address.name": "Name is required",
    "shipping_address.address": "Address is required",
    "shipping_address.city": "City is required",
    "shipping_address.state": "State is required",
    "shipping_address.zip": "Invalid ZIP code",
    "shipping_address.country": "Country is required",
}

CART_LINE_MESSAGES = {
    "quantity": "Quantity must be at least 1",
}

CUSTOMER_MESSAGES = {
    "email": "Invalid email address",
    "wallet_address": "Invalid wallet address",
}

_ALIASES = {"shippingAddress": "shipping_address", "paymentMethod": "payment_method", "productId": "product_id"}


def _field_path(loc: Tuple[Any, ...]) -> str:
    if not loc:
        return "input"
    return ".".join(_ALIASES.get(str(part), str(part)) for part in loc)


def _translate(exc: pydantic.ValidationError, messages: Mapping[str, str]) -> ValidationError:
    errors = []
    for err in exc.errors():
        field = _field_path(err["loc"])
        if err["type"] == "missing":
            message = "Required"
        elif err["type"] in _CONSTRAINT_TYPES and field in messages:
            message = messages[field]
        elif err["type"] == "value_error" and "error" in err.get("ctx", {}):
            # raised by a field validator; its text is already user-facing
            message = str(err["ctx"]["error"])
        elif err["type"] == "value_error" and field in messages:
            message = messages[field]
        else:
            message = err["msg"]
        errors.append(FieldError(field, message))
    return ValidationError(errors)


def _validate(model, data: Any, messages: Mapping[str, str]) -> Dict[str, Any]:
    try:
        parsed = model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise _translate(exc, messages) from None
    return parsed.model_dump(exclude_unset=True)


def validate_product(data: Any) -> Dict[str, Any]:
    """Validate a "create product" document.

    Returns the validated document (unchanged for well-formed input) or raises
    ValidationError listing every offending field.
    """
    return _validate(ProductIn, data, PRODUCT_MESSAGES)


def validate_checkout(data: Any) -> Dict[str, Any]:
    """Validate a checkout document; keys come back in snake_case."""
    return _validate(CheckoutIn, data, CHECKOUT_MESSAGES)


def validate_cart_line(data: Any) -> Dict[str, Any]:
    out = _validate(CartLine, data, CART_LINE_MESSAGES)
    out.setdefault("quantity", 1)
    return out


def validate_customer(data: Any) -> Dict[str, Any]:
    """Validate customer identity fields; the wallet address comes back lowercased."""
    return _validate(CustomerIn, data, CUSTOMER_MESSAGES)
