"""
Client library for the Tesco grocery API.

Main entry point is TescoClient; see tesco.client for usage.
"""

from .basket import Basket, BasketItem, BasketRegistry
from .catalogue import Aisle, Department, Shelf
from .client import TescoClient
from .errors import (
    InvalidArgumentError,
    InvalidPageError,
    NotAuthenticatedError,
    NotFoundError,
    OutOfRangeError,
    PaginationError,
    TescoApiError,
)
from .models import EAN, Barcode, ServerResponse
from .offers import Offer, parse_validity
from .pagination import PaginatedCollection, ProductPage
from .products import Product, ProductRegistry

__all__ = [
    "TescoClient",
    "Product",
    "ProductRegistry",
    "PaginatedCollection",
    "ProductPage",
    "Basket",
    "BasketItem",
    "BasketRegistry",
    "Department",
    "Aisle",
    "Shelf",
    "Offer",
    "parse_validity",
    "Barcode",
    "EAN",
    "ServerResponse",
    "TescoApiError",
    "NotAuthenticatedError",
    "InvalidArgumentError",
    "PaginationError",
    "OutOfRangeError",
    "InvalidPageError",
    "NotFoundError",
]
