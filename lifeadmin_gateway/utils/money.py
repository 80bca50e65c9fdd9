"""Money conversion - amounts are stored as integer pence"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

PENNY = Decimal("0.01")


def to_pence(amount: Decimal) -> int:
    return int((amount / PENNY).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_pence(pence: Optional[int]) -> Optional[Decimal]:
    if pence is None:
        return None
    return Decimal(pence).scaleb(-2)
