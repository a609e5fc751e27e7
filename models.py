"""
Data models for the receipt splitter - extracted items and split state
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from utils import clamp, to_float, to_int

PALETTE_SIZE = 8


@dataclass(frozen=True)
class ReceiptItem:
    """One priced line of a receipt. price is the line total."""
    name: str
    quantity: int = 1
    price: float = 0.0
    is_modifier: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "is_modifier": self.is_modifier,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReceiptItem":
        return cls(
            name=str(data.get("name") or ""),
            quantity=clamp(to_int(data.get("quantity")), 1, 100),
            price=max(0.0, round(to_float(data.get("price")), 2)),
            is_modifier=data.get("is_modifier") is True,
        )


@dataclass(frozen=True)
class ExtractionResult:
    """What the extraction pipeline hands back for one photo"""
    items: Tuple[ReceiptItem, ...] = ()
    receipt_total: Optional[float] = None
    restaurant_name: Optional[str] = None
    rate_limited: bool = False

    @property
    def status(self) -> str:
        if self.rate_limited:
            return "rate_limited"
        return "ok" if self.items else "empty"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "receipt_total": self.receipt_total,
            "restaurant_name": self.restaurant_name,
            "rate_limited": self.rate_limited,
        }


@dataclass
class Person:
    """Someone sharing the bill"""
    id: int
    name: str
    color_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color_index": self.color_index}


@dataclass
class DividedPart:
    id: str
    name: str
    price: float


@dataclass
class DividedItem:
    """A row turned into a zero-priced header plus independently assignable parts"""
    item_id: str
    original_price: float
    parts: List[DividedPart] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "original_price": self.original_price,
            "parts": [{"id": p.id, "name": p.name, "price": p.price} for p in self.parts],
        }


def default_people() -> List[Person]:
    return [Person(1, "Yo", 0), Person(2, "Persona 1", 1)]


@dataclass
class SplitState:
    """Everything needed to restore an in-progress split for one receipt.

    from_dict() ignores unknown keys and fills missing ones with defaults,
    so snapshots written by older versions stay readable.
    """
    people: List[Person] = field(default_factory=default_people)
    selected_person_id: Optional[int] = None
    next_person_id: Optional[int] = None
    assignments: Dict[str, int] = field(default_factory=dict)
    divided_items: List[DividedItem] = field(default_factory=list)
    tip_percentage: float = 0.0

    def __post_init__(self):
        if not self.people:
            self.people = default_people()
        ids = [p.id for p in self.people]
        if self.selected_person_id not in ids:
            self.selected_person_id = ids[0]
        if self.next_person_id is None or self.next_person_id <= max(ids):
            self.next_person_id = max(ids) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "people": [p.to_dict() for p in self.people],
            "selected_person_id": self.selected_person_id,
            "next_person_id": self.next_person_id,
            "assignments": dict(self.assignments),
            "divided_items": [d.to_dict() for d in self.divided_items],
            "tip_percentage": self.tip_percentage,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SplitState":
        data = data if isinstance(data, dict) else {}

        people = []
        raw_people = data.get("people")
        for raw in raw_people if isinstance(raw_people, list) else []:
            try:
                people.append(Person(int(raw["id"]), str(raw.get("name") or ""), int(raw.get("color_index") or 0)))
            except (KeyError, TypeError, ValueError, AttributeError):
                continue

        assignments = {}
        raw_assignments = data.get("assignments")
        if isinstance(raw_assignments, dict):
            for row_id, person_id in raw_assignments.items():
                try:
                    assignments[str(row_id)] = int(person_id)
                except (TypeError, ValueError):
                    continue

        divided = []
        raw_divided = data.get("divided_items")
        for raw in raw_divided if isinstance(raw_divided, list) else []:
            try:
                parts = [DividedPart(str(p["id"]), str(p.get("name") or ""), float(p["price"])) for p in raw.get("parts") or []]
                divided.append(DividedItem(str(raw["item_id"]), float(raw["original_price"]), parts))
            except (KeyError, TypeError, ValueError, AttributeError):
                continue

        def _opt_int(value):
            try:
                return int(value)
            except (TypeError, ValueError):
                return None

        try:
            tip = float(data.get("tip_percentage") or 0)
        except (TypeError, ValueError):
            tip = 0.0

        return cls(
            people=people,
            selected_person_id=_opt_int(data.get("selected_person_id")),
            next_person_id=_opt_int(data.get("next_person_id")),
            assignments=assignments,
            divided_items=divided,
            tip_percentage=tip,
        )
