"""
Record models for data returned by the Tesco grocery API.

The server speaks in PascalCase JSON objects. These pydantic models validate and
normalize the records the library consumes (products, basket lines, basket
summaries) so the rest of the code can work with typed attributes instead of
raw dictionary lookups.

# NOTE: Records are parsed with extra="allow": the API adds fields over time
    and unknown keys must never break decoding.

Field mapping:
- ProductRecord: ProductId, Name, ImagePath, MaximumPurchaseQuantity, EANBarcode,
  OfferLabelImagePath, OfferPromotion, OfferValidity,
  HealthierAlthernativeProductId, CheaperAlthernativeProductId, BaseProductId
- BasketLineRecord: ProductId, BasketLineQuantity, BasketLineErrorMessage,
  BasketLinePromoMessage, NoteForPersonalShopper
- BasketRecord: BasketId, BasketGuidePrice, BasketGuideMultiBuySavings,
  BasketTotalClubcardPoints, BasketQuantity, BasketLines
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator


class ServerResponse(dict):
    """
    A decoded API response.

    Behaves like the decoded JSON object and additionally remembers the request
    parameters (command included) that produced it, so a paginated listing can
    re-issue the same request for a different page.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, request_parameters: Optional[Dict[str, Any]] = None):
        super().__init__(data or {})
        self.request_parameters: Dict[str, Any] = dict(request_parameters or {})

    @property
    def status_code(self) -> Optional[int]:
        """StatusCode reported by the server (0 means success)."""
        code = self.get("StatusCode")
        return int(code) if code is not None else None


def _id_to_str(value: Any) -> Optional[str]:
    """Normalize an id token (int or str) to a stripped string; empty means absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class Barcode(BaseModel):
    """A product barcode. str() gives the code exactly as the server sent it."""
    code: str = Field(..., description="Barcode digits")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return self.code


class EAN(Barcode):
    """European Article Number barcode."""
    pass


class ProductRecord(BaseModel):
    """A product entry from a Products[] array."""
    product_id: Optional[str] = Field(None, alias="ProductId", description="Numeric product token")
    name: Optional[str] = Field(None, alias="Name", description="Product display name")
    image_path: Optional[str] = Field(None, alias="ImagePath", description="URL of the product image")
    max_quantity: Optional[int] = Field(None, alias="MaximumPurchaseQuantity", description="Maximum units per order")
    ean_barcode: Optional[str] = Field(None, alias="EANBarcode", description="EAN barcode digits")

    # Promotions
    offer_label_image_path: Optional[str] = Field(None, alias="OfferLabelImagePath", description="Offer label image URL")
    offer_promotion: Optional[str] = Field(None, alias="OfferPromotion", description="Offer description")
    offer_validity: Optional[str] = Field(None, alias="OfferValidity", description="Offer validity text")

    # Related products (the misspellings are the server's)
    healthier_alternative_id: Optional[str] = Field(None, alias="HealthierAlthernativeProductId")
    cheaper_alternative_id: Optional[str] = Field(None, alias="CheaperAlthernativeProductId")
    base_product_id: Optional[str] = Field(None, alias="BaseProductId")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator(
        "product_id",
        "ean_barcode",
        "healthier_alternative_id",
        "cheaper_alternative_id",
        "base_product_id",
        mode="before",
    )
    @classmethod
    def _normalize_ids(cls, value: Any) -> Optional[str]:
        return _id_to_str(value)


class BasketLineRecord(BaseModel):
    """A BasketLines[] entry describing one product's line in the basket."""
    product_id: str = Field(..., alias="ProductId")
    quantity: int = Field(0, ge=0, alias="BasketLineQuantity")
    error_message: Optional[str] = Field(None, alias="BasketLineErrorMessage")
    promo_message: Optional[str] = Field(None, alias="BasketLinePromoMessage")
    note_for_shopper: Optional[str] = Field(None, alias="NoteForPersonalShopper")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("product_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Optional[str]:
        return _id_to_str(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class BasketRecord(BaseModel):
    """
    The server-computed totals of a listbasket response.

    BasketLines are validated one by one as BasketLineRecord, because the raw
    line is also merged into the line's Product.
    """
    basket_id: Optional[int] = Field(None, alias="BasketId")
    guide_price: float = Field(0.0, alias="BasketGuidePrice")
    multi_buy_savings: float = Field(0.0, alias="BasketGuideMultiBuySavings")
    clubcard_points: int = Field(0, alias="BasketTotalClubcardPoints")
    quantity: int = Field(0, alias="BasketQuantity")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("basket_id", mode="before")
    @classmethod
    def _empty_id_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("guide_price", "multi_buy_savings", "clubcard_points", "quantity", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value
