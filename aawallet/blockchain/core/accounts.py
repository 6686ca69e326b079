from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

class Account(BaseModel):
    address: str
    balance: int = 0
    nonce: int = 0

    # Contract class name for deployed code, None for externally-owned accounts
    code: Optional[str] = None

    # Contract storage slots (JSON-serializable values only)
    storage: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_code(self) -> bool:
        return self.code is not None
