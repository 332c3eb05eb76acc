"""Pydantic schemas for listings and the listing command bodies.

Learn: Pydantic v2 models validate request/response data. Separate
"Create"/"Update" schemas (input) from the "Read" schema (output).
Inputs accept the camelCase wire names (plus the names the legacy
marketplace client sends: sellerWhatsApp, imageUrl); output is always
camelCase with the server-owned createdOrUpdatedAt.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    AliasGenerator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

_INPUT_CONFIG = ConfigDict(
    str_strip_whitespace=True,
    populate_by_name=True,
    coerce_numbers_to_str=True,  # ids and phone numbers often arrive as numbers
    extra="ignore",
)


def _text(*names: str, required: bool = True) -> Any:
    """A trimmed, non-empty string field readable under any of `names`."""
    return Field(
        ... if required else None,
        min_length=1,
        validation_alias=AliasChoices(*names),
    )


def _price(required: bool = True) -> Any:
    return Field(... if required else None, ge=0, allow_inf_nan=False)


# The store keeps prices as Numeric(14, 2).
_CENTS = Decimal("0.01")
_PRICE_LIMIT = Decimal(10) ** 12


def _to_cents(value: Optional[Decimal]) -> Optional[Decimal]:
    """Round a price half-up to the two decimal places the store keeps."""
    if value is None:
        return None
    if value < _PRICE_LIMIT:
        cents = value.quantize(_CENTS, rounding=ROUND_HALF_UP)
        if cents < _PRICE_LIMIT:
            return cents
    raise ValueError(f"must be less than {_PRICE_LIMIT}")


# ─── Inputs ─────────────────────────────────────────────

class ListingCreate(BaseModel):
    """Body of a create_listing command. `id` is optional; the server assigns one."""

    model_config = _INPUT_CONFIG

    id: Optional[str] = None
    name: str = _text("name")
    category: str = _text("category")
    price: Decimal = _price()
    description: str = _text("description")
    condition: str = _text("condition")
    negotiable: bool = False
    location: str = _text("location")
    payment_option: str = _text("paymentOption", "payment_option")
    seller_contact: str = _text("sellerContact", "sellerWhatsApp", "seller_contact")
    seller_id: str = _text("sellerId", "seller_id")
    image_ref: str = _text("imageRef", "imageUrl", "image_ref")

    @field_validator("id")
    @classmethod
    def blank_id_is_absent(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("price")
    @classmethod
    def price_in_cents(cls, v: Decimal) -> Decimal:
        return _to_cents(v)


class ListingUpdate(BaseModel):
    """Body of an update_listing command: `id` plus any subset of mutable fields."""

    model_config = _INPUT_CONFIG

    id: str = Field(..., min_length=1)
    name: Optional[str] = _text("name", required=False)
    category: Optional[str] = _text("category", required=False)
    price: Optional[Decimal] = _price(required=False)
    description: Optional[str] = _text("description", required=False)
    condition: Optional[str] = _text("condition", required=False)
    negotiable: Optional[bool] = None
    location: Optional[str] = _text("location", required=False)
    payment_option: Optional[str] = _text("paymentOption", "payment_option", required=False)
    seller_contact: Optional[str] = _text(
        "sellerContact", "sellerWhatsApp", "seller_contact", required=False
    )
    seller_id: Optional[str] = _text("sellerId", "seller_id", required=False)
    image_ref: Optional[str] = _text("imageRef", "imageUrl", "image_ref", required=False)

    @field_validator("price")
    @classmethod
    def price_in_cents(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _to_cents(v)

    def changes(self) -> dict[str, Any]:
        """Mutable columns supplied by the client (id and seller_id excluded)."""
        return self.model_dump(exclude_none=True, exclude={"id", "seller_id"})


class ListingKey(BaseModel):
    """Body of a delete_listing command."""

    model_config = _INPUT_CONFIG

    id: str = Field(..., min_length=1)


class SellerQuery(BaseModel):
    """Body of a list_by_seller command."""

    model_config = _INPUT_CONFIG

    seller_id: str = _text("sellerId", "seller_id")


class EmptyBody(BaseModel):
    """Body of a list_all command. Anything sent is ignored."""

    model_config = ConfigDict(extra="ignore")


# ─── Output ─────────────────────────────────────────────

class ListingRead(BaseModel):
    """Canonical wire form of a stored listing."""

    id: str
    name: str
    category: str
    price: Decimal
    description: str
    condition: str
    negotiable: bool
    location: str
    payment_option: str
    seller_contact: str
    seller_id: str
    image_ref: str
    created_or_updated_at: int

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=AliasGenerator(serialization_alias=to_camel),
    )

    @field_serializer("price")
    def serialize_price(self, price: Decimal) -> int | float:
        # JSON clients expect a number, not pydantic's default decimal string
        return int(price) if price == price.to_integral_value() else float(price)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Wire names for the snake_case fields, used in error messages.
_WIRE_NAMES = {
    "payment_option": "paymentOption",
    "seller_contact": "sellerContact",
    "seller_id": "sellerId",
    "image_ref": "imageRef",
}


def describe_validation_error(exc: ValidationError) -> str:
    """Flatten a pydantic ValidationError into one human-readable sentence.

    Missing and blank fields are grouped ("Missing required field(s): name,
    price"); every other problem is reported as "<field>: <reason>".
    """
    missing: list[str] = []
    problems: list[str] = []
    for err in exc.errors():
        loc = err.get("loc") or ("body",)
        field = str(loc[0])
        field = _WIRE_NAMES.get(field, field)
        if err["type"] in ("missing", "string_too_short"):
            if field not in missing:
                missing.append(field)
        elif err["type"] == "model_type":
            problems.append("payload must be an object")
        else:
            problems.append(f"{field}: {err['msg']}")

    parts = []
    if missing:
        parts.append("Missing required field(s): " + ", ".join(missing))
    parts.extend(problems)
    return "; ".join(parts)
