"""
Shopping basket kept in step with the Tesco servers.

The true basket lives on the server and is shared by every session of the same
customer. Basket holds a local view of it:

- sync() replaces the local view with the server's basket lines
- add / set_quantity / remove / set_note / clear send *delta* requests
  (changebasket with a signed changequantity) and update the local view only
  after the server accepted the change, so a failed call never makes the local
  view drift from the server
- every mutation first checks that the client acting on the basket is still
  logged in as the basket's owner

BasketRegistry keeps one Basket per customer id, so all parts of a program
share the same view and API calls are not repeated needlessly.
"""

import logging
import threading
from collections.abc import Iterable
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union, TYPE_CHECKING

from pydantic import BaseModel, Field, ConfigDict

from .errors import InvalidArgumentError, NotAuthenticatedError, NotFoundError
from .models import BasketLineRecord, BasketRecord, EAN
from .offers import Offer
from .products import Product, ProductRegistry

if TYPE_CHECKING:
    from .client import TescoClient

logger = logging.getLogger(__name__)

ProductSelection = Union[Product, Iterable[Product]]


class BasketItem(BaseModel):
    """
    One product's line in the basket.

    Product attributes are available through forwarding properties
    (item.name, item.max_quantity, ...) so callers rarely need item.product.
    """
    product: Product = Field(..., description="The product on this basket line")
    quantity: int = Field(0, ge=0, description="Units of the product in the basket")
    note_for_shopper: Optional[str] = Field(None, description="Note for the personal shopper")
    error_message: Optional[str] = Field(None, description="Server message explaining a problem with the line")
    promo_message: Optional[str] = Field(None, description="Server message about promotions on the line")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def product_id(self) -> str:
        return self.product.product_id

    @property
    def name(self) -> Optional[str]:
        return self.product.name

    @property
    def image_url(self) -> Optional[str]:
        return self.product.image_url

    @property
    def max_quantity(self) -> Optional[int]:
        return self.product.max_quantity

    @property
    def offer(self) -> Optional[Offer]:
        return self.product.offer

    @property
    def barcode(self) -> Optional[EAN]:
        return self.product.barcode


def _as_products(products: ProductSelection) -> List[Product]:
    """Normalize a single Product or an iterable of Products into a list, validating every element."""
    if isinstance(products, Product):
        return [products]
    if isinstance(products, (str, bytes)) or not isinstance(products, Iterable):
        raise InvalidArgumentError(f"{products!r} isn't a Product instance")
    selection = list(products)
    for product in selection:
        if not isinstance(product, Product):
            raise InvalidArgumentError(f"{product!r} isn't a Product instance")
    return selection


class Basket:
    """
    Local view of a customer's server-side basket.

    Obtain one through TescoClient.basket() or Basket.for_customer(client)
    rather than instantiating it directly.

    Attributes:
        customer_id: Id of the customer owning this basket
        basket_id: Server basket id (None until synced)
        guide_price: Guide price of the whole basket
        multi_buy_savings: Savings from multi-buy promotions
        clubcard_points: Clubcard points earned by the basket
        quantity: Total number of units according to the server
        synced: True once the basket has been synchronised at least once
    """

    def __init__(self, client: "TescoClient", customer_id: Any):
        self._client = client
        self.customer_id = str(customer_id)

        self.basket_id: Optional[int] = None
        self.guide_price: float = 0.0
        self.multi_buy_savings: float = 0.0
        self.clubcard_points: int = 0
        self.quantity: int = 0
        self.synced = False

        self._items: Dict[Product, BasketItem] = {}
        # Held for each request-then-update sequence so deltas are computed
        # from the quantity the server last acknowledged
        self._lock = threading.RLock()

    @classmethod
    def for_customer(cls, client: "TescoClient") -> "Basket":
        """Return the shared basket of the customer client is logged in as."""
        return client.baskets.for_customer(client)

    @property
    def _products(self) -> ProductRegistry:
        return self._client.products

    # Mapping protocol

    def __getitem__(self, product: Product) -> BasketItem:
        return self._items[product]

    def __contains__(self, product: object) -> bool:
        return product in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Product]:
        return iter(list(self._items))

    def items(self) -> List[Tuple[Product, BasketItem]]:
        return list(self._items.items())

    def get(self, product: Product) -> Optional[BasketItem]:
        return self._items.get(product)

    def __repr__(self) -> str:
        return f"<Basket customer={self.customer_id} lines={len(self._items)} guide_price={self.guide_price:.2f}>"

    # Server synchronisation

    def sync(self) -> "Basket":
        """
        Make the local view mirror the basket on the server.

        This is a full reconciliation: totals are overwritten and the lines are
        rebuilt from the response, so local-only lines are discarded.

        Returns:
            self
        """
        with self._lock:
            response = self._client.api_request("listbasket", None)
            summary = BasketRecord.model_validate(dict(response))

            items: Dict[Product, BasketItem] = {}
            for raw_line in response.get("BasketLines") or []:
                line = BasketLineRecord.model_validate(raw_line)
                product = self._products.get_or_create(line.product_id, raw_line)
                items[product] = BasketItem(
                    product=product,
                    quantity=line.quantity,
                    note_for_shopper=line.note_for_shopper,
                    error_message=line.error_message,
                    promo_message=line.promo_message,
                )

            self.basket_id = summary.basket_id
            self.guide_price = summary.guide_price
            self.multi_buy_savings = summary.multi_buy_savings
            self.clubcard_points = summary.clubcard_points
            self.quantity = summary.quantity
            self._items = items
            self.synced = True

        logger.info(
            "Basket synced: customer=%s basket_id=%s lines=%d guide_price=%.2f",
            self.customer_id, self.basket_id, len(items), self.guide_price,
        )
        return self

    def ensure_synced(self) -> "Basket":
        """Sync once if this basket has never been synchronised."""
        with self._lock:
            if not self.synced:
                self.sync()
        return self

    # Mutations

    def add(self, products: ProductSelection, note: Optional[str] = None) -> None:
        """
        Add one unit of each given product to the basket.

        Products already in the basket have their quantity incremented.

        Args:
            products: A Product or an iterable of Products
            note: Note for the shopper; when omitted, an existing note on the
                line is kept

        Raises:
            InvalidArgumentError: If any element is not a Product (checked
                before any request is sent)
            NotAuthenticatedError: If the client is not logged in as the owner
        """
        selection = _as_products(products)
        with self._lock:
            self._ensure_owner()
            for product in selection:
                item = self._items.get(product) or BasketItem(product=product, quantity=0)
                effective_note = note if note is not None else item.note_for_shopper
                self._send_change(product, 1, effective_note)
                item.quantity += 1
                item.note_for_shopper = effective_note
                self._items[product] = item

    def set_quantity(self, product: Product, amount: int, note: Optional[str] = None) -> None:
        """
        Set the quantity of a product in the basket.

        The change is sent to the server as a delta from the current local
        quantity. Setting 0 removes the line. Nothing is sent when neither the
        quantity nor the note would change.

        Args:
            product: Product to change
            amount: New quantity, between 0 and product.max_quantity
                (reading max_quantity may fetch the product's details)
            note: Note for the shopper; when omitted, an existing note on the
                line is kept

        Raises:
            InvalidArgumentError: If product is not a Product or amount is not an
                integer within [0, max_quantity]
            NotAuthenticatedError: If the client is not logged in as the owner
        """
        if not isinstance(product, Product):
            raise InvalidArgumentError(f"{product!r} isn't a Product instance")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidArgumentError(f"amount must be an integer >= 0, got {amount!r}")

        with self._lock:
            self._ensure_owner()
            max_quantity = product.max_quantity
            if max_quantity is not None and amount > max_quantity:
                raise InvalidArgumentError(f"amount must be <= {max_quantity}, got {amount!r}")

            item = self._items.get(product)
            current = item.quantity if item else 0
            effective_note = note if note is not None else (item.note_for_shopper if item else None)

            if amount == current and (item is None or effective_note == item.note_for_shopper):
                logger.debug("set_quantity for product %s is a no-op", product.product_id)
                return

            self._send_change(product, amount - current, effective_note)

            if amount == 0:
                self._items.pop(product, None)
                return
            if item is None:
                item = BasketItem(product=product)
                self._items[product] = item
            item.quantity = amount
            item.note_for_shopper = effective_note

    def remove(self, products: ProductSelection) -> None:
        """
        Remove the given products from the basket entirely.

        Products that are not in the basket are ignored (no request is sent).

        Raises:
            InvalidArgumentError: If any element is not a Product
            NotAuthenticatedError: If the client is not logged in as the owner
        """
        selection = _as_products(products)
        with self._lock:
            self._ensure_owner()
            for product in selection:
                item = self._items.get(product)
                if item is None:
                    continue
                self._send_change(product, -item.quantity, None)
                del self._items[product]

    def set_note(self, product: Product, note: Optional[str]) -> None:
        """
        Change the note for the shopper on a product already in the basket.

        Raises:
            NotFoundError: If the product has no line in the basket
            NotAuthenticatedError: If the client is not logged in as the owner
        """
        with self._lock:
            self._ensure_owner()
            item = self._items.get(product)
            if item is None:
                raise NotFoundError(f"{product!r} is not in the basket")
            self._send_change(product, 0, note)
            item.note_for_shopper = note

    def clear(self) -> None:
        """
        Empty the basket.

        Sends one removal request per line; this may take a while for large
        baskets.
        """
        with self._lock:
            self.remove(list(self._items))

    def _owner_session_active(self) -> bool:
        acting_customer = self._client.authenticated_customer_id
        return acting_customer is not None and str(acting_customer) == self.customer_id

    def _ensure_owner(self) -> None:
        if not self._owner_session_active():
            acting_customer = self._client.authenticated_customer_id
            logger.warning(
                "Rejected basket change: basket belongs to customer %s, session is %s",
                self.customer_id, acting_customer,
            )
            raise NotAuthenticatedError(
                f"This basket belongs to customer {self.customer_id}; log in as that customer to change it."
            )

    def _send_change(self, product: Product, delta: int, note: Optional[str]) -> None:
        logger.debug("changebasket product=%s delta=%+d", product.product_id, delta)
        self._client.api_request(
            "changebasket",
            {
                "productid": product.product_id,
                "changequantity": delta,
                "noteforshopper": note,
            },
        )


class BasketRegistry:
    """
    One Basket per customer id.

    Baskets are created and synced on first use and then reused, so every
    caller sees the same local view. flush() forgets all of them (the server
    baskets are untouched) so the next request resyncs from scratch.
    """

    def __init__(self):
        self._baskets: Dict[str, Basket] = {}
        self._lock = threading.Lock()

    def for_customer(self, client: "TescoClient") -> Basket:
        """
        Return the basket of the customer client is logged in as.

        Args:
            client: A client logged in as a non-anonymous customer

        Returns:
            The shared, synced Basket for that customer

        Raises:
            NotAuthenticatedError: If client is anonymous or not logged in
        """
        key = str(client.customer_id)

        with self._lock:
            basket = self._baskets.get(key)
            if basket is None:
                logger.debug("Creating basket for customer %s", key)
                basket = Basket(client, key)
                self._baskets[key] = basket
            elif not basket._owner_session_active():
                # The bound session logged out or switched customer; move to this one
                logger.debug("Rebinding basket of customer %s to a new session", key)
                basket._client = client

        return basket.ensure_synced()

    def flush(self) -> None:
        """Forget every cached basket without touching the server."""
        with self._lock:
            self._baskets.clear()

    def __contains__(self, customer_id: Any) -> bool:
        with self._lock:
            return str(customer_id) in self._baskets

    def __len__(self) -> int:
        with self._lock:
            return len(self._baskets)
