"""
Lazy, page-cursor based listings.

The Tesco API returns long listings (search results, offers, category contents)
one page at a time. PaginatedCollection wraps the first page of such a response
and behaves like a read-only sequence over the whole listing:

- len() and page_count come from the first response
- collection[n] fetches only the page that holds item n
- for_each_page() yields page after page, so consumers see results as they
  arrive instead of waiting for the entire listing
- every fetched page is cached for the lifetime of the collection

Other pages are requested by re-issuing the original command with the same
parameters and a different page number.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Mapping, Optional, TypeVar, Union

from .errors import InvalidPageError, OutOfRangeError
from .models import ServerResponse
from .products import Product, ProductRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

ApiRequest = Callable[[str, Optional[Dict[str, Any]]], ServerResponse]
PageSelector = Union[int, str, Iterable[int]]

ALL_PAGES = "all"


class PaginatedCollection(ABC, Generic[T]):
    """
    A read-only sequence over a paginated API listing.

    Subclasses define how a raw record becomes an item (decode_item) and which
    response key holds the records (items_key).

    Attributes:
        items_key: Response field containing the page's records
    """
    items_key: str = "Products"

    def __init__(self, response: ServerResponse, api_request: ApiRequest):
        """
        Wrap the first page of a listing.

        Args:
            response: First page response; its request_parameters must include
                the originating "command"
            api_request: Callable used to fetch the other pages
        """
        self._api_request = api_request
        self._params: Dict[str, Any] = dict(getattr(response, "request_parameters", {}) or {})
        self._cached_pages: Dict[int, List[T]] = {}

        first_page_number = int(response.get("PageNumber") or self._params.get("page") or 1)
        first_items = self._store(first_page_number, response)

        total_pages = response.get("TotalPageCount")
        self._page_count = int(total_pages) if total_pages is not None else 1

        per_page = response.get("PageProductCount")
        self._per_page = int(per_page) if per_page is not None else len(first_items)

        total_items = response.get("TotalProductCount")
        self._length = int(total_items) if total_items is not None else self._per_page

        if self._per_page <= 0 and self._length > 0:
            # First page came back empty without a page size; spread the total over the pages
            self._per_page = -(-self._length // max(self._page_count, 1))

    @abstractmethod
    def decode_item(self, record: Mapping[str, Any]) -> T:
        """Turn one raw record of a page into an item."""

    @property
    def page_count(self) -> int:
        return self._page_count

    @property
    def per_page(self) -> int:
        return self._per_page

    @property
    def cached_pages(self) -> List[int]:
        """Page numbers fetched so far, ascending."""
        return sorted(self._cached_pages)

    def __len__(self) -> int:
        return self._length

    def __iter__(self) -> Iterator[T]:
        return self.for_each_page(ALL_PAGES)

    def __getitem__(self, n: int) -> T:
        return self.at(n)

    def at(self, n: int) -> T:
        """
        Return the item at global index n, fetching its page if needed.

        Args:
            n: 0-based index into the whole listing

        Returns:
            The item at index n

        Raises:
            TypeError: If n is not an integer
            OutOfRangeError: If n < 0 or n >= len(self)
        """
        if isinstance(n, bool) or not isinstance(n, int):
            raise TypeError(f"{n!r} isn't a valid index")
        if n < 0 or n >= self._length:
            raise OutOfRangeError(f"Index {n} is outside a listing of {self._length} products")

        page_number = n // self._per_page + 1
        offset = n % self._per_page
        items = self._get_page(page_number)
        if offset >= len(items):
            raise OutOfRangeError(
                f"Index {n} is missing from page {page_number}, which the server returned with {len(items)} products"
            )
        return items[offset]

    def page(self, page: Union[int, str]) -> List[T]:
        """
        Return every item on the requested page.

        Passing 0 or "all" returns every item of every page, fetching each page
        that is not cached yet in ascending order. That is one request per
        missing page and can take a very long time for large listings.

        Args:
            page: 1-based page number, or 0 / "all"

        Returns:
            List of items on the page (indices relative to the page), or the
            whole listing for 0 / "all"

        Raises:
            InvalidPageError: If page is not in [0, page_count] and not "all"
        """
        self._validate_page(page)
        if page == ALL_PAGES or page == 0:
            items: List[T] = []
            for number in range(1, self._page_count + 1):
                items.extend(self._get_page(number))
            return items
        return list(self._get_page(page))

    def for_each_page(self, pages: PageSelector = ALL_PAGES) -> Iterator[T]:
        """
        Lazily iterate over the items of the selected pages.

        Pages are fetched one at a time, in the order given, and all items of a
        page are yielded before the next page is requested.

        Args:
            pages: A page number, an ordered iterable of page numbers, or
                0 / "all" for pages 1..page_count

        Yields:
            Items in page order

        Raises:
            InvalidPageError: When an invalid page number is reached. Items of
                earlier pages have already been yielded by then.
        """
        if pages == ALL_PAGES or pages == 0:
            selected: Iterable[Any] = range(1, self._page_count + 1)
        elif isinstance(pages, (int, str)):
            selected = [pages]
        else:
            selected = pages

        for number in selected:
            self._validate_page(number)
            for item in self.page(number):
                yield item

    def __repr__(self) -> str:
        parts: List[str] = []
        missing = 0
        for number in range(1, self._page_count + 1):
            if number in self._cached_pages:
                if missing:
                    parts.append(f"… {missing} more …")
                    missing = 0
                parts.extend(repr(item) for item in self._cached_pages[number])
            else:
                missing += self._expected_page_size(number)
        if missing:
            parts.append(f"… {missing} more")
        return f"[{', '.join(parts)}]"

    def _expected_page_size(self, number: int) -> int:
        before = (number - 1) * self._per_page
        return max(0, min(self._per_page, self._length - before))

    def _validate_page(self, page: Any) -> None:
        if page == ALL_PAGES:
            return
        if isinstance(page, bool) or not isinstance(page, int) or not 0 <= page <= self._page_count:
            raise InvalidPageError(f"{page!r} isn't a valid page reference (listing has {self._page_count} pages)")

    def _get_page(self, number: int) -> List[T]:
        cached = self._cached_pages.get(number)
        if cached is not None:
            logger.debug("Page %d served from cache", number)
            return cached

        params = dict(self._params)
        command = params.pop("command", None)
        if not command:
            raise RuntimeError("Cannot fetch further pages: the listing's originating command is unknown")
        params["page"] = number

        logger.debug("Fetching page %d/%d for command=%r", number, self._page_count, command)
        response = self._api_request(command, params)
        return self._store(number, response)

    def _store(self, number: int, response: Mapping[str, Any]) -> List[T]:
        items = [self.decode_item(record) for record in (response.get(self.items_key) or [])]
        self._cached_pages[number] = items
        return items


class ProductPage(PaginatedCollection[Product]):
    """A paginated product listing whose items are registry-backed Products."""

    def __init__(
        self,
        registry: ProductRegistry,
        response: ServerResponse,
        api_request: Optional[ApiRequest] = None,
    ):
        self._registry = registry
        super().__init__(response, api_request or registry.api_request)

    def decode_item(self, record: Mapping[str, Any]) -> Product:
        return self._registry.get_or_create(record.get("ProductId"), record)
