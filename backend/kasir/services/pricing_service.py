# Overview: Pure sale-total arithmetic shared by checkout, invoice editing and the POS preview.

"""
Kasir Pricing Invariants (authoritative)

- All money is whole currency units; percentages are basis points (1% = 100).
- line_subtotal = unit_price * quantity
- event_discount = event_discount_bps / 10000 * unit_price * quantity
- line_net = line_subtotal - event_discount - item_discount * quantity
- subtotal = sum(line_subtotal), before any discount.
- customer_discount = round_half_up(subtotal * customer_discount_bps / 10000)
  when the sale is attributed to a registered customer, else 0.
- Event, item and customer discounts are each taken against the undiscounted
  amounts and summed, never compounded.
- net_total = round_half_up(sum(line_net) - customer_discount + adjustment).
  Rounding happens once, on the aggregate, never per line.
- change = max(0, amount_tendered - net_total). Callers reject tenders below
  net_total themselves; the calculator never fails on amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP

from ..validation import ValidationError

BPS_DENOMINATOR = Decimal(10000)
DEFAULT_CUSTOMER_DISCOUNT_BPS = 1000


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price: int
    item_discount: int = 0
    event_discount_bps: int = 0
    event_product_id: int | None = None


@dataclass(frozen=True)
class LineTotals:
    line: CartLine
    line_subtotal: int
    event_discount: Decimal
    item_discount_total: int
    line_net: Decimal

    @property
    def line_total(self) -> int:
        """line_net rounded for storage and display; never summed into net_total."""
        return round_half_up(self.line_net)


@dataclass(frozen=True)
class SaleTotals:
    lines: list[LineTotals]
    subtotal: int
    event_discount: Decimal
    item_discount: int
    customer_discount: int
    adjustment: int
    net_total: int
    amount_tendered: int | None = None
    change: int = 0

    @property
    def discount(self) -> int:
        """Aggregate discount recorded on the sale header."""
        return round_half_up(self.event_discount + self.item_discount + self.customer_discount)

    def is_sufficient(self, amount_tendered: int) -> bool:
        return amount_tendered >= self.net_total

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "event_discount": round_half_up(self.event_discount),
            "item_discount": self.item_discount,
            "customer_discount": self.customer_discount,
            "discount": self.discount,
            "adjustment": self.adjustment,
            "net_total": self.net_total,
            "amount_tendered": self.amount_tendered,
            "change": self.change,
            "lines": [
                {
                    "product_id": lt.line.product_id,
                    "quantity": lt.line.quantity,
                    "unit_price": lt.line.unit_price,
                    "item_discount": lt.line.item_discount,
                    "event_discount_bps": lt.line.event_discount_bps,
                    "line_subtotal": lt.line_subtotal,
                    "line_total": lt.line_total,
                }
                for lt in self.lines
            ],
        }


def compute_line(line: CartLine) -> LineTotals:
    if line.quantity < 1:
        raise ValidationError("quantity must be >= 1")

    # Per-item discount cannot take a unit below zero
    item_discount = min(max(line.item_discount, 0), line.unit_price)

    line_subtotal = line.unit_price * line.quantity
    event_discount = Decimal(line.event_discount_bps) / BPS_DENOMINATOR * line_subtotal
    item_discount_total = item_discount * line.quantity

    return LineTotals(
        line=replace(line, item_discount=item_discount),
        line_subtotal=line_subtotal,
        event_discount=event_discount,
        item_discount_total=item_discount_total,
        line_net=Decimal(line_subtotal) - event_discount - item_discount_total,
    )


def compute_totals(
    lines: list[CartLine],
    *,
    is_registered_customer: bool,
    adjustment: int = 0,
    amount_tendered: int | None = None,
    customer_discount_bps: int = DEFAULT_CUSTOMER_DISCOUNT_BPS,
) -> SaleTotals:
    line_totals = [compute_line(line) for line in lines]

    subtotal = sum(lt.line_subtotal for lt in line_totals)
    event_discount = sum((lt.event_discount for lt in line_totals), Decimal(0))
    item_discount = sum(lt.item_discount_total for lt in line_totals)
    lines_net = sum((lt.line_net for lt in line_totals), Decimal(0))

    customer_discount = 0
    if is_registered_customer:
        customer_discount = round_half_up(Decimal(subtotal) * customer_discount_bps / BPS_DENOMINATOR)

    net_total = round_half_up(lines_net - customer_discount + adjustment)

    change = 0
    if amount_tendered is not None:
        change = max(0, amount_tendered - net_total)

    return SaleTotals(
        lines=line_totals,
        subtotal=subtotal,
        event_discount=event_discount,
        item_discount=item_discount,
        customer_discount=customer_discount,
        adjustment=adjustment,
        net_total=net_total,
        amount_tendered=amount_tendered,
        change=change,
    )


@dataclass
class Cart:
    """
    POS view-model: the lines being rung up before checkout. Owned by the
    request handling the POS screen, never shared.
    """
    lines: list[CartLine] = field(default_factory=list)

    def find(self, product_id: int) -> CartLine | None:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def add(self, product_id: int, unit_price: int, *, event_discount_bps: int = 0,
            event_product_id: int | None = None) -> CartLine:
        """Add one unit; a product already in the cart gets its quantity bumped."""
        existing = self.find(product_id)
        if existing is not None:
            return self.set_quantity(product_id, existing.quantity + 1)

        line = CartLine(
            product_id=product_id,
            quantity=1,
            unit_price=unit_price,
            event_discount_bps=event_discount_bps,
            event_product_id=event_product_id,
        )
        self.lines.append(line)
        return line

    def set_quantity(self, product_id: int, quantity: int) -> CartLine | None:
        """Quantity at or below zero removes the line."""
        existing = self.find(product_id)
        if existing is None:
            return None
        if quantity <= 0:
            self.remove(product_id)
            return None
        updated = replace(existing, quantity=quantity)
        self.lines = [updated if line.product_id == product_id else line for line in self.lines]
        return updated

    def remove(self, product_id: int) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def clear(self) -> None:
        self.lines = []
