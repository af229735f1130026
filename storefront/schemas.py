"""
Structured records for the JSON columns of the storefront schema.

The store keeps these as plain JSON documents; these models are the typed
view of them at the application boundary:
- ShippingAddress -> orders.shipping_address
- CartLine        -> carts.items[]
- Permission list -> admin_users.permissions (open list of strings)
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, EmailStr, StrictInt, field_validator

# ASCII digits only; \d would also take other scripts' digits
ZIP_PATTERN = r"^[0-9]{5}(-[0-9]{4})?$"

# Numeric(10, 2)
MAX_PRICE = Decimal("99999999.99")


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=2, description="Recipient name")
    address: str = Field(..., min_length=5, description="Street address")
    city: str = Field(..., min_length=2)
    state: str = Field(..., min_length=2)
    zip: str = Field(..., pattern=ZIP_PATTERN, description="NNNNN or NNNNN-NNNN")
    country: str = Field(..., min_length=2)


class CartLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: StrictInt = Field(..., alias="productId")
    quantity: StrictInt = Field(1, gt=0)


class ProductIn(BaseModel):
    model_config = ConfigDict(strict=True)

    name: str = Field(..., min_length=3)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., gt=0, allow_inf_nan=False, description="Price in USD")
    inventory: int = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)

    @field_validator("price")
    @classmethod
    def fits_price_column(cls, v):
        d = Decimal(str(v))
        if d.as_tuple().exponent < -2:
            raise ValueError("Price must have at most 2 decimal places")
        if d > MAX_PRICE:
            raise ValueError(f"Price must be at most {MAX_PRICE:,}")
        return v


class CheckoutIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")


class CustomerIn(BaseModel):
    wallet_address: Optional[str] = Field(None, min_length=1, max_length=64)
    email: Optional[EmailStr] = None
    name: Optional[str] = None

    @field_validator("wallet_address")
    @classmethod
    def lowercase_wallet(cls, v):
        return v.lower() if v is not None else v
