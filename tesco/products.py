"""
Product identity map with lazy detail loading.

The Tesco API mentions the same product in many places: search results, offer
listings, category listings, basket lines, and as the healthier/cheaper/base
alternative of other products. ProductRegistry guarantees there is exactly one
Product object per product id, so:

- Products can be used as dictionary keys (the basket relies on this)
- every holder observes the latest data any listing delivered for that product
- related products are cheap placeholders until something reads their details

Detail-bearing attributes (name, image_url, max_quantity, offer, barcode) are
plain properties that call details() first when the product has not been
resolved yet.
"""

import logging
import re
import threading
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from .errors import InvalidArgumentError, NotFoundError
from .models import EAN, ProductRecord, ServerResponse
from .offers import Offer

logger = logging.getLogger(__name__)

ApiRequest = Callable[[str, Optional[Dict[str, Any]]], ServerResponse]

_PRODUCT_ID_PATTERN = re.compile(r"^\d+$")

_OFFER_FIELDS = {"offer_label_image_path", "offer_promotion", "offer_validity"}


def normalize_product_id(product_id: Any) -> str:
    """
    Validate a product id token and return it as a string.

    Args:
        product_id: Id as sent by the server (str or int)

    Returns:
        The id as a string of digits

    Raises:
        InvalidArgumentError: If the id is not a non-negative integer token
    """
    if isinstance(product_id, bool) or product_id is None:
        raise InvalidArgumentError(f"{product_id!r} is not a product id")
    text = str(product_id).strip()
    if not _PRODUCT_ID_PATTERN.match(text):
        raise InvalidArgumentError(f"{product_id!r} is not a product id")
    return text


class Product:
    """
    A grocery item from the Tesco catalogue.

    Do not instantiate directly; use ProductRegistry.get_or_create() (or
    TescoClient.product()) so that each product id maps to a single object.

    healthier_alternative, cheaper_alternative and base_product are populated as
    unresolved Products. Reading any detail from them fetches it from the API.
    """

    def __init__(self, registry: "ProductRegistry", product_id: str, record: Optional[Mapping[str, Any]] = None):
        self._registry = registry
        self._product_id = product_id
        self._pending_record: Optional[Mapping[str, Any]] = record or None

        self._name: Optional[str] = None
        self._image_url: Optional[str] = None
        self._max_quantity: Optional[int] = None
        self._barcode: Optional[EAN] = None
        self._offer: Optional[Offer] = None

        self.healthier_alternative: Optional["Product"] = None
        self.cheaper_alternative: Optional["Product"] = None
        self.base_product: Optional["Product"] = None

    def __repr__(self) -> str:
        if self._name is None:
            return f"<Product {self._product_id} (unresolved)>"
        return f"<Product {self._product_id} {self._name!r}>"

    @property
    def product_id(self) -> str:
        return self._product_id

    @property
    def is_detailed(self) -> bool:
        """True once a name has been decoded for this product."""
        return self._name is not None

    def _ensure_details(self) -> None:
        if self._name is None:
            self.details()

    @property
    def name(self) -> Optional[str]:
        self._ensure_details()
        return self._name

    @property
    def image_url(self) -> Optional[str]:
        self._ensure_details()
        return self._image_url

    @property
    def max_quantity(self) -> Optional[int]:
        self._ensure_details()
        return self._max_quantity

    @property
    def barcode(self) -> Optional[EAN]:
        self._ensure_details()
        return self._barcode

    @property
    def offer(self) -> Optional[Offer]:
        self._ensure_details()
        return self._offer

    def details(self) -> "Product":
        """
        Load (or refresh) this product's details.

        Uses the record supplied at construction if it has not been decoded yet;
        otherwise searches the catalogue for this product id.

        Returns:
            self, with attributes updated in place

        Raises:
            NotFoundError: If the catalogue search returns no products
            TescoApiError: If the request fails
        """
        record = self._pending_record
        self._pending_record = None

        if not record:
            logger.debug("Fetching details for product %s", self._product_id)
            response = self._registry.api_request("productsearch", {"searchtext": self._product_id})
            products = response.get("Products") or []
            if not products:
                raise NotFoundError(f"No product found with id {self._product_id}")
            # A search by id can match other products too; prefer the exact id
            record = next(
                (p for p in products if str(p.get("ProductId", "")).strip() == self._product_id),
                products[0],
            )

        self.update(record)
        return self

    def update(self, record: Mapping[str, Any]) -> None:
        """
        Merge a raw product record into this product.

        Only fields present in the record are changed, so a sparse record (a
        basket line, for example) never erases details a fuller listing
        delivered earlier.
        """
        parsed = ProductRecord.model_validate(dict(record))
        present = parsed.model_fields_set

        if "name" in present:
            self._name = parsed.name
        if "image_path" in present:
            self._image_url = parsed.image_path
        if "max_quantity" in present:
            self._max_quantity = parsed.max_quantity
        if "ean_barcode" in present:
            self._barcode = EAN(code=parsed.ean_barcode) if parsed.ean_barcode else None
        if present & _OFFER_FIELDS:
            self._offer = Offer.from_fields(
                parsed.offer_label_image_path,
                parsed.offer_promotion,
                parsed.offer_validity,
            )

        if "healthier_alternative_id" in present:
            self.healthier_alternative = self._registry.resolve_optional(parsed.healthier_alternative_id)
        if "cheaper_alternative_id" in present:
            self.cheaper_alternative = self._registry.resolve_optional(parsed.cheaper_alternative_id)
        if "base_product_id" in present:
            self.base_product = self._registry.resolve_optional(parsed.base_product_id)


class ProductRegistry:
    """
    Identity map from product id to Product.

    A registry is normally owned by a TescoClient, which binds its api_request
    method so products can fetch their own details. Registries can also be
    created standalone (e.g. in tests) by passing any callable with the
    api_request(command, params) signature.

    Thread-safe: the map is guarded by a lock that is only held for the
    lookup/insert, never across a network call.
    """

    def __init__(self, api_request: Optional[ApiRequest] = None):
        self._api_request = api_request
        self._products: Dict[str, Product] = {}
        self._lock = threading.Lock()

    def bind(self, api_request: ApiRequest) -> None:
        """Attach the request function used for detail fetches, if none is set yet."""
        if self._api_request is None:
            self._api_request = api_request

    def api_request(self, command: str, params: Optional[Dict[str, Any]] = None) -> ServerResponse:
        if self._api_request is None:
            raise RuntimeError("ProductRegistry is not bound to an API client")
        return self._api_request(command, params)

    def get_or_create(self, product_id: Any, record: Optional[Mapping[str, Any]] = None) -> Product:
        """
        Return the single Product for product_id, creating it if needed.

        Args:
            product_id: Product id token (str or int of digits)
            record: Optional raw product record. For a new product it is decoded
                immediately; for an existing product it is merged in place.

        Returns:
            The Product registered under product_id

        Raises:
            InvalidArgumentError: If product_id is not a valid product id
        """
        key = normalize_product_id(product_id)

        with self._lock:
            product = self._products.get(key)
            created = product is None
            if created:
                product = Product(self, key, record)
                self._products[key] = product

        if created:
            if record:
                product.details()
        elif record:
            product.update(record)

        return product

    def resolve_optional(self, product_id: Any) -> Optional[Product]:
        """
        Resolve a related-product id to an unresolved Product.

        Related products are optional metadata: an absent or malformed id
        yields None instead of an error.
        """
        if product_id is None:
            return None
        try:
            return self.get_or_create(product_id)
        except InvalidArgumentError:
            logger.debug("Ignoring invalid related product id %r", product_id)
            return None

    def get(self, product_id: Any) -> Optional[Product]:
        """Return the registered Product for product_id without creating one."""
        try:
            key = normalize_product_id(product_id)
        except InvalidArgumentError:
            return None
        with self._lock:
            return self._products.get(key)

    def clear(self) -> None:
        """Forget every registered product."""
        with self._lock:
            self._products.clear()

    def __contains__(self, product_id: Any) -> bool:
        return self.get(product_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._products)

    def __iter__(self) -> Iterator[Product]:
        with self._lock:
            return iter(list(self._products.values()))
