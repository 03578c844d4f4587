"""
Department / aisle / shelf taxonomy of the Tesco catalogue.

listproductcategories returns a three level tree: Departments contain Aisles,
Aisles contain Shelves. A shelf id is the category filter used by
listproductsbycategory, so Shelf.products() lists what is on the shelf.
"""

from typing import Any, List, Mapping, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field, PrivateAttr

if TYPE_CHECKING:
    from .client import TescoClient
    from .pagination import ProductPage


class Shelf(BaseModel):
    """A shelf: the lowest catalogue level, holding products."""
    id: int = Field(..., description="Shelf id, used as the category filter")
    name: str = Field(..., description="Shelf name")

    _client: Any = PrivateAttr(default=None)

    def products(self) -> "ProductPage":
        """List the products on this shelf."""
        if self._client is None:
            raise RuntimeError("Shelf is not attached to a client")
        return self._client.products_by_category(self.id)

    def __repr__(self) -> str:
        return f"{self.name} Shelf"


class Aisle(BaseModel):
    """An aisle within a department."""
    id: int = Field(..., description="Aisle id")
    name: str = Field(..., description="Aisle name")
    shelves: List[Shelf] = Field(default_factory=list, description="Shelves in this aisle")

    def __repr__(self) -> str:
        return f"{self.name} Aisle"


class Department(BaseModel):
    """A top-level catalogue department."""
    id: int = Field(..., description="Department id")
    name: str = Field(..., description="Department name")
    aisles: List[Aisle] = Field(default_factory=list, description="Aisles in this department")

    def __repr__(self) -> str:
        return f"{self.name} Department"

    @property
    def shelves(self) -> List[Shelf]:
        """Every shelf of every aisle in the department."""
        return [shelf for aisle in self.aisles for shelf in aisle.shelves]


def build_departments(client: "TescoClient", raw_departments: List[Mapping[str, Any]]) -> List[Department]:
    """
    Build the department tree from a listproductcategories response.

    Args:
        client: Client the shelves will use to list their products
        raw_departments: The response's Departments array

    Returns:
        List of Department objects with their aisles and shelves
    """
    departments: List[Department] = []
    for raw_department in raw_departments or []:
        aisles: List[Aisle] = []
        for raw_aisle in raw_department.get("Aisles") or []:
            shelves: List[Shelf] = []
            for raw_shelf in raw_aisle.get("Shelves") or []:
                shelf = Shelf(id=raw_shelf["Id"], name=raw_shelf["Name"])
                shelf._client = client
                shelves.append(shelf)
            aisles.append(Aisle(id=raw_aisle["Id"], name=raw_aisle["Name"], shelves=shelves))
        departments.append(Department(id=raw_department["Id"], name=raw_department["Name"], aisles=aisles))
    return departments
