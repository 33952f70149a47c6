from pydantic import BaseModel
from typing import Optional


class Store(BaseModel):
    """A stock-holding location. Only active stores can receive goods."""
    id: str
    code: str
    name: str
    address: Optional[str] = None
    manager_name: Optional[str] = None
    is_active: bool = True
