"""
GST breakdowns for Indian orders.

An intra-state sale (customer in the outlet's state) splits the tax evenly
between CGST and SGST; anything else, including an unknown customer state,
is charged as IGST.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from . import money
from .exceptions import InvariantViolation


@dataclass(frozen=True)
class TaxBreakdown:
    cgst: int = 0
    sgst: int = 0
    igst: int = 0
    total_tax: int = 0

    def __post_init__(self):
        for name in ('cgst', 'sgst', 'igst', 'total_tax'):
            money.ensure_amount(getattr(self, name), name)
        if self.cgst + self.sgst + self.igst != self.total_tax:
            raise InvariantViolation(
                "cgst + sgst + igst must equal total_tax",
                cgst=self.cgst, sgst=self.sgst, igst=self.igst, total_tax=self.total_tax,
            )

    @classmethod
    def of(cls, cgst: int = 0, sgst: int = 0, igst: int = 0) -> "TaxBreakdown":
        return cls(cgst, sgst, igst, money.add(cgst, sgst, igst))

    def __add__(self, other: "TaxBreakdown") -> "TaxBreakdown":
        return TaxBreakdown(
            money.add(self.cgst, other.cgst),
            money.add(self.sgst, other.sgst),
            money.add(self.igst, other.igst),
            money.add(self.total_tax, other.total_tax),
        )

    def __neg__(self) -> "TaxBreakdown":
        return TaxBreakdown(-self.cgst, -self.sgst, -self.igst, -self.total_tax)

    def __sub__(self, other: "TaxBreakdown") -> "TaxBreakdown":
        return self + (-other)

    def as_dict(self) -> dict:
        return {
            'cgst': self.cgst,
            'sgst': self.sgst,
            'igst': self.igst,
            'total_tax': self.total_tax,
        }


ZERO = TaxBreakdown()


def normalize_state(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = str(code).strip().upper()
    return code or None


def is_intra_state(location_state: Optional[str], customer_state: Optional[str]) -> bool:
    location_state = normalize_state(location_state)
    customer_state = normalize_state(customer_state)
    return customer_state is not None and customer_state == location_state


def compute_item_tax(subtotal: int, tax_rate_bps: int, location_state: Optional[str],
                     customer_state: Optional[str] = None) -> TaxBreakdown:
    total_tax = money.multiply_rate(subtotal, tax_rate_bps)
    if is_intra_state(location_state, customer_state):
        cgst, sgst = money.split_even(total_tax, 2)
        return TaxBreakdown(cgst=cgst, sgst=sgst, igst=0, total_tax=total_tax)
    return TaxBreakdown(cgst=0, sgst=0, igst=total_tax, total_tax=total_tax)


def compute_order_tax(items: Iterable[Tuple[int, int]], location_state: Optional[str],
                      customer_state: Optional[str] = None) -> TaxBreakdown:
    """
    Sum per-item breakdowns. ``items`` yields ``(subtotal, tax_rate_bps)`` pairs.
    """
    result = ZERO
    for subtotal, tax_rate_bps in items:
        result = result + compute_item_tax(subtotal, tax_rate_bps, location_state, customer_state)
    return result
