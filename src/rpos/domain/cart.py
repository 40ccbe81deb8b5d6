from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import Item


@dataclass
class CartLine:
    item_id: str
    name: str
    size: Optional[str]
    color: Optional[str]
    quantity: int
    unit_price: float
    tax_rate: float

    def same_sku(self, item_id: str, size: Optional[str], color: Optional[str]) -> bool:
        return self.item_id == item_id and self.size == size and self.color == color


class Cart:
    """Client-side cart. Nothing here touches storage."""

    def __init__(self) -> None:
        self.lines: list[CartLine] = []

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self.lines)

    def is_empty(self) -> bool:
        return not self.lines

    def add(self, item: Item, quantity: int = 1, size: Optional[str] = None, color: Optional[str] = None) -> CartLine:
        qty = int(quantity)
        if qty <= 0:
            raise ValidationError("Qty must be >= 1.")

        # first variant only for a bare pick; a partial size/color never guesses
        if size is None and color is None:
            variant = item.variants[0] if item.variants else None
        else:
            idx = item.variant_index(size, color)
            variant = item.variants[idx] if idx >= 0 else None
        if variant is None:
            raise ValidationError(f"Variant not found for {item.name}: size={size} color={color}.")

        for line in self.lines:
            if line.same_sku(item.id, variant.size, variant.color):
                line.quantity += qty
                return line

        line = CartLine(
            item_id=item.id,
            name=item.name,
            size=variant.size,
            color=variant.color,
            quantity=qty,
            unit_price=float(variant.price) if variant.price else float(item.base_price),
            tax_rate=float(item.tax_rate),
        )
        self.lines.append(line)
        return line

    def update_quantity(self, index: int, delta: int) -> None:
        line = self._line_at(index)
        line.quantity += int(delta)
        if line.quantity <= 0:
            del self.lines[index]

    def remove(self, index: int) -> None:
        self._line_at(index)
        del self.lines[index]

    def clear(self) -> None:
        self.lines.clear()

    def _line_at(self, index: int) -> CartLine:
        if index < 0 or index >= len(self.lines):
            raise NotFoundError("Cart line not found.")
        return self.lines[index]
