from pydantic import BaseModel
from typing import Literal

CurrencyLiteral = Literal["TRY", "USD", "EUR"]
MovementKindLiteral = Literal["purchase", "sale"]

class Ok(BaseModel):
    ok: bool = True
