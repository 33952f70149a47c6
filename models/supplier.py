from pydantic import BaseModel
from typing import Optional, List


class Supplier(BaseModel):
    """
    A known supplier from the supplier master list.
    aliases is a list of alternative names / trading names used for fuzzy lookup.
    """
    id: str
    name: str
    code: Optional[str] = None
    tax_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    aliases: List[str] = []            # Alternative names / trading names

    @property
    def all_names(self) -> List[str]:
        """Return the canonical name plus all aliases for matching."""
        return [self.name] + self.aliases
