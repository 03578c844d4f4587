"""
Tesco grocery API client.

TescoClient is the entry point of the library. It holds the session with the
Tesco REST service and exposes the catalogue and basket operations:

- login() as a customer, or anonymously (done implicitly on the first request)
- search(), on_offer(), favourites(), products_by_category() return lazily
  paginated ProductPage listings
- departments() and search_shelves() browse the catalogue taxonomy
- basket() returns the logged-in customer's shared Basket
- api_request() sends any command directly, for calls without a dedicated method

Each client owns a ProductRegistry and a BasketRegistry. Both can be passed in
to share them between clients or to isolate tests.

Usage:
    client = TescoClient()              # keys from TESCO_DEVELOPER_KEY / TESCO_APPLICATION_KEY
    client.login("me@example.com", "secret")
    milk = client.search("milk")
    client.basket().add(milk[0])
"""

import logging
import re
from typing import Any, Dict, List, Optional, Union

from .basket import Basket, BasketRegistry
from .catalogue import Department, Shelf, build_departments
from .config import validate_required_config
from .errors import InvalidArgumentError, NotAuthenticatedError, TescoApiError
from .models import ServerResponse
from .pagination import ProductPage
from .products import Product, ProductRegistry
from .transport import HttpTransport

logger = logging.getLogger(__name__)

# ChosenDeliverySlotInfo sent back for anonymous logins
ANONYMOUS_SLOT_INFO = "Not applicable with anonymous login"

STATUS_OK = 0
STATUS_NOT_AUTHENTICATED = 200


class TescoClient:
    """
    A session with the Tesco grocery API.

    Attributes:
        transport: Object with a request(params) -> dict method (HttpTransport by default)
        products: Identity map of every Product this client has seen
        baskets: Per-customer basket registry
    """

    def __init__(
        self,
        developer_key: Optional[str] = None,
        application_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        transport: Optional[Any] = None,
        products: Optional[ProductRegistry] = None,
        baskets: Optional[BasketRegistry] = None,
    ):
        """
        Create a client.

        Args:
            developer_key: Developer key (reads TESCO_DEVELOPER_KEY if not provided)
            application_key: Application key (reads TESCO_APPLICATION_KEY if not provided)
            endpoint: REST endpoint URL (reads TESCO_API_ENDPOINT or uses the public service)
            transport: Custom transport; endpoint is ignored when given
            products: Product registry to use (a new one by default)
            baskets: Basket registry to use (a new one by default)

        Raises:
            RuntimeError: If either key is missing
        """
        self.developer_key, self.application_key = validate_required_config(developer_key, application_key)

        self.transport = transport if transport is not None else HttpTransport(endpoint=endpoint)
        self.products = products if products is not None else ProductRegistry()
        self.products.bind(self.api_request)
        self.baskets = baskets if baskets is not None else BasketRegistry()

        self._session_key: Optional[str] = None
        # None until the first login, then True/False
        self._anonymous: Optional[bool] = None
        self._customer: Dict[str, Any] = {}
        self._shelves: Optional[List[Shelf]] = None

    # Session

    def api_request(self, command: str, params: Optional[Dict[str, Any]] = None) -> ServerResponse:
        """
        Send a command to the Tesco API.

        Logs in anonymously first if there is no session yet. Parameters whose
        value is None are left out of the request.

        Args:
            command: API command, e.g. "productsearch"
            params: Command parameters; "page" defaults to 1

        Returns:
            The decoded response, with request_parameters set to the command and
            the parameters passed here

        Raises:
            NotAuthenticatedError: If the server answers with status 200
            TescoApiError: For any other non-zero status or transport failure
        """
        if self._session_key is None and command != "login":
            logger.info("No session yet, logging in anonymously before %r", command)
            self.login()

        caller_params = {key: value for key, value in (params or {}).items() if value is not None}

        query: Dict[str, Any] = {
            "command": command,
            "applicationkey": self.application_key,
            "developerkey": self.developer_key,
            "page": 1,
        }
        query.update(caller_params)
        if self._session_key is not None:
            query["sessionkey"] = self._session_key

        data = self.transport.request({key: str(value) for key, value in query.items()})
        response = ServerResponse(data, request_parameters={"command": command, **caller_params})

        status = response.status_code
        if status == STATUS_OK:
            return response
        if status == STATUS_NOT_AUTHENTICATED:
            logger.warning("Tesco API rejected %r: not authenticated", command)
            raise NotAuthenticatedError(status_code=status, response=response)

        logger.error("Tesco API returned unknown status code %r for command=%r", status, command)
        raise TescoApiError(
            f"Unknown status code {status!r} for command {command!r}",
            status_code=status,
            response=response,
        )

    def login(self, email: str = "", password: str = "") -> bool:
        """
        Log in as a customer, or anonymously when no credentials are given.

        Anonymous login happens automatically on the first request if login()
        has not been called.

        Returns:
            True once the session is established
        """
        response = self.api_request("login", {"email": email, "password": password})

        self._anonymous = response.get("ChosenDeliverySlotInfo") == ANONYMOUS_SLOT_INFO
        if self._anonymous:
            # In anonymous mode the server sends a placeholder customer; ignore it
            self._customer = {}
        else:
            self._customer = {
                "name": response.get("CustomerName"),
                "forename": response.get("CustomerForename"),
                "id": response.get("CustomerId"),
                "branch_number": response.get("BranchNumber"),
            }
        self._session_key = response.get("SessionKey")

        logger.info("Logged in to Tesco API (%s)", "anonymous" if self._anonymous else f"customer {self._customer['id']}")
        return True

    @property
    def endpoint(self) -> Optional[str]:
        return getattr(self.transport, "endpoint", None)

    @endpoint.setter
    def endpoint(self, url: str) -> None:
        self.transport.endpoint = url

    @property
    def is_anonymous(self) -> bool:
        """True unless logged in as a customer."""
        return self._anonymous is not False

    @property
    def authenticated_customer_id(self) -> Optional[Any]:
        """Customer id of the logged-in customer, or None when anonymous / not logged in."""
        if self.is_anonymous:
            return None
        return self._customer.get("id")

    def _require_customer(self, field: str) -> Any:
        if self.is_anonymous:
            raise NotAuthenticatedError()
        return self._customer.get(field)

    @property
    def customer_name(self) -> Optional[str]:
        return self._require_customer("name")

    @property
    def customer_forename(self) -> Optional[str]:
        return self._require_customer("forename")

    @property
    def customer_id(self) -> Any:
        return self._require_customer("id")

    @property
    def branch_number(self) -> Any:
        return self._require_customer("branch_number")

    # Catalogue

    def search(self, query: str) -> ProductPage:
        """Search the grocery catalogue. Returns a lazily paginated listing."""
        logger.info("Product search: query=%r", query)
        return ProductPage(self.products, self.api_request("productsearch", {"searchtext": query}))

    def on_offer(self) -> ProductPage:
        """List all products currently on offer."""
        return ProductPage(self.products, self.api_request("listproductoffers"))

    def favourites(self) -> ProductPage:
        """
        List the customer's favourite products.

        Raises:
            NotAuthenticatedError: If not logged in as a customer
        """
        if self.is_anonymous:
            raise NotAuthenticatedError()
        return ProductPage(self.products, self.api_request("listfavourites"))

    def products_by_category(self, shelf_id: Union[int, str]) -> ProductPage:
        """
        List the products in a category, identified by shelf id.

        departments()[i].aisles[j].shelves[k].products() is usually more
        convenient.

        Raises:
            InvalidArgumentError: If shelf_id is not a positive integer
        """
        try:
            category = int(shelf_id) if not isinstance(shelf_id, bool) else 0
        except (TypeError, ValueError):
            category = 0
        if category <= 0:
            raise InvalidArgumentError(f"{shelf_id!r} is not a valid Shelf ID")
        return ProductPage(self.products, self.api_request("listproductsbycategory", {"category": category}))

    def product(self, product_id: Union[int, str]) -> Product:
        """Return the Product for an id. Details are fetched when first read."""
        return self.products.get_or_create(product_id)

    def departments(self) -> List[Department]:
        """
        Fetch the department / aisle / shelf tree.

        The flattened shelf list is remembered for search_shelves().
        """
        response = self.api_request("listproductcategories")
        departments = build_departments(self, response.get("Departments") or [])
        self._shelves = [shelf for department in departments for shelf in department.shelves]
        logger.debug("Loaded %d departments, %d shelves", len(departments), len(self._shelves))
        return departments

    def search_shelves(self, pattern: Union[str, "re.Pattern[str]"]) -> List[Shelf]:
        """
        Find shelves whose name matches a regular expression.

        Args:
            pattern: Compiled regex, or a string compiled case-insensitively

        Returns:
            Matching shelves (the department tree is fetched on first use)

        Raises:
            InvalidArgumentError: If pattern is neither a string nor a compiled regex
        """
        if isinstance(pattern, str):
            pattern = re.compile(pattern, re.IGNORECASE)
        elif not isinstance(pattern, re.Pattern):
            raise InvalidArgumentError("pattern needs to be a regular expression")

        if self._shelves is None:
            self.departments()
        return [shelf for shelf in self._shelves if pattern.search(shelf.name)]

    # Basket

    def basket(self) -> Basket:
        """
        Return the logged-in customer's basket, synced on first use.

        Raises:
            NotAuthenticatedError: If not logged in as a customer
        """
        return self.baskets.for_customer(self)

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()
