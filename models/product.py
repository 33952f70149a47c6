from pydantic import BaseModel
from typing import Optional


class Product(BaseModel):
    """A product from the product master list (display data only)."""
    id: str
    code: str
    name: str
    category: Optional[str] = None
    unit_of_measure: Optional[str] = None
    tax_class: Optional[str] = None    # Default tax class suggested for new order lines
