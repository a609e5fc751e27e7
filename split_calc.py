"""
Bill splitting for an extracted receipt.

SplitCheck keeps who-pays-what for one receipt: the people at the table, which
person each row belongs to, items divided into shares, and the tip. Rows are
built from the extracted items; a main item and the modifiers printed under it
share a group id, and groups are always found by filtering rows, never stored.

Operations that don't make sense (removing the last person, dividing into
fewer than two parts, assigning to someone who isn't there) are ignored
rather than raised.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from models import (
    PALETTE_SIZE,
    DividedItem,
    DividedPart,
    Person,
    ReceiptItem,
    SplitState,
)
from utils import clamp, get_logger, money, to_float

log = get_logger("split_calc")

AMOUNT_TOLERANCE = 0.01


@dataclass
class SplitRow:
    id: str
    name: str
    price: float
    is_modifier: bool
    group: str
    assigned_to: Optional[int] = None
    parent_id: Optional[str] = None  # parts of a divided item point at their header
    original_price: Optional[float] = None  # only set on a divided header

    @property
    def is_header(self) -> bool:
        return self.original_price is not None

    @property
    def is_part(self) -> bool:
        return self.parent_id is not None

    @property
    def assignable(self) -> bool:
        return not self.is_header


def build_rows(items: Iterable[ReceiptItem]) -> List[SplitRow]:
    rows = []
    group = None
    for index, item in enumerate(items):
        row_id = str(index)
        # a modifier belongs to the main item above it
        if not item.is_modifier or group is None:
            group = row_id
        rows.append(SplitRow(row_id, item.name, item.price, item.is_modifier, group))
    return rows


@dataclass
class PersonTotal:
    subtotal: float = 0.0
    tip: float = 0.0
    total: float = 0.0


@dataclass
class SplitTotals:
    tip_percentage: float
    per_person: Dict[int, PersonTotal]
    unassigned_subtotal: float

    @property
    def grand_subtotal(self) -> float:
        return sum(t.subtotal for t in self.per_person.values())

    @property
    def grand_total(self) -> float:
        return sum(t.total for t in self.per_person.values())

    def to_dict(self) -> dict:
        return {
            "tip_percentage": self.tip_percentage,
            "people": {
                str(pid): {
                    "subtotal": float(money(t.subtotal)),
                    "tip": float(money(t.tip)),
                    "total": float(money(t.total)),
                }
                for pid, t in self.per_person.items()
            },
            "unassigned_subtotal": float(money(self.unassigned_subtotal)),
            "grand_subtotal": float(money(self.grand_subtotal)),
            "grand_total": float(money(self.grand_total)),
        }


class SplitCheck:
    def __init__(self, items: Iterable[ReceiptItem], names: Optional[Sequence[str]] = None,
                 store=None, storage_key: Optional[str] = None):
        self.items = tuple(items)
        self.store = store
        self.storage_key = storage_key
        people = [Person(i + 1, name, i % PALETTE_SIZE) for i, name in enumerate(names or [])]
        self._apply_state(SplitState(people=people))

    @classmethod
    def load(cls, items: Iterable[ReceiptItem], store, storage_key: str,
             names: Optional[Sequence[str]] = None) -> "SplitCheck":
        """Build a split for items, picking up where a saved session left off."""
        split = cls(items, names, store=store, storage_key=storage_key)
        state = store.load(storage_key)
        if state is not None:
            split.deserialize(state)
        return split

    # --- lookups ---

    def get_row(self, row_id: str) -> Optional[SplitRow]:
        for row in self.rows:
            if row.id == str(row_id):
                return row
        return None

    def get_person(self, person_id: Optional[int]) -> Optional[Person]:
        for person in self.people:
            if person.id == person_id:
                return person
        return None

    def group_rows(self, group: str) -> List[SplitRow]:
        return [r for r in self.rows if r.group == group]

    def parts_of(self, header_id: str) -> List[SplitRow]:
        return [r for r in self.rows if r.parent_id == header_id]

    def rows_for(self, person_id: Optional[int]) -> List[SplitRow]:
        """Rows billed to person_id; None gives the unassigned ones."""
        return [r for r in self.rows if r.assignable and r.assigned_to == person_id]

    # --- people ---

    def _next_color_index(self) -> int:
        used = {p.color_index for p in self.people}
        for i in range(PALETTE_SIZE):
            if i not in used:
                return i
        counts = [0] * PALETTE_SIZE
        for p in self.people:
            counts[p.color_index % PALETTE_SIZE] += 1
        return counts.index(min(counts))

    def add_person(self, name: Optional[str] = None) -> Person:
        person_id = self.next_person_id
        name = (name or "").strip() or f"Persona {person_id - 1}"
        person = Person(person_id, name, self._next_color_index())
        self.people.append(person)
        self.next_person_id += 1
        self.selected_person_id = person_id
        self._save()
        return person

    def remove_person(self, person_id: int) -> bool:
        if len(self.people) <= 1 or self.get_person(person_id) is None:
            return False
        for row in self.rows:
            if row.assigned_to == person_id:
                row.assigned_to = None
        self.people = [p for p in self.people if p.id != person_id]
        if self.selected_person_id == person_id:
            self.selected_person_id = self.people[0].id
        self._save()
        return True

    def rename_person(self, person_id: int, name: str) -> bool:
        person = self.get_person(person_id)
        name = (name or "").strip()
        if person is None or not name:
            return False
        person.name = name
        self._save()
        return True

    def select_person(self, person_id: int) -> bool:
        if self.get_person(person_id) is None:
            return False
        self.selected_person_id = person_id
        self._save()
        return True

    # --- assignment ---

    def _target(self, person_id: Optional[int]) -> Optional[int]:
        person_id = self.selected_person_id if person_id is None else person_id
        return person_id if self.get_person(person_id) is not None else None

    def assign_item(self, row_id: str, person_id: Optional[int] = None):
        """Give one row to a person, or take it back if they already have it."""
        target = self._target(person_id)
        row = self.get_row(row_id)
        if target is None or row is None or not row.assignable:
            return
        row.assigned_to = None if row.assigned_to == target else target
        self._save()

    def assign_group(self, group: str, person_id: Optional[int] = None):
        """Toggle a main item together with its modifiers.

        Shares of divided items are left alone; they are assigned one by one.
        """
        target = self._target(person_id)
        rows = [r for r in self.group_rows(group) if r.assignable and not r.is_part]
        if target is None or not rows:
            return
        mains = [r for r in rows if not r.is_modifier]
        representative = mains[0] if mains else rows[0]
        new_owner = None if representative.assigned_to == target else target
        for row in rows:
            row.assigned_to = new_owner
        self._save()

    def toggle_row(self, row_id: str, person_id: Optional[int] = None):
        """Tap on a row: main items carry their modifiers, everything else goes alone."""
        row = self.get_row(row_id)
        if row is None or row.is_header:
            return
        if row.is_modifier or row.is_part:
            self.assign_item(row_id, person_id)
        else:
            self.assign_group(row.group, person_id)

    def assign_remainder_to_new_person(self) -> Optional[Person]:
        remaining = self.rows_for(None)
        if not remaining:
            return None
        person = self.add_person()
        for row in remaining:
            row.assigned_to = person.id
        self._save()
        return person

    # --- dividing ---

    def _divide(self, row: SplitRow, prices: List[float]) -> List[str]:
        n = len(prices)
        row.original_price = row.price
        row.price = 0.0
        row.assigned_to = None
        at = self.rows.index(row) + 1
        parts = [
            SplitRow(f"{row.id}.{k}", f"{row.name} ({k}/{n})", price, row.is_modifier, row.group, parent_id=row.id)
            for k, price in enumerate(prices, start=1)
        ]
        self.rows[at:at] = parts
        log.debug(f"Divided row {row.id} ({row.name}) into {n} parts")
        return [p.id for p in parts]

    def _divisible(self, row_id: str) -> Optional[SplitRow]:
        row = self.get_row(row_id)
        if row is None or row.is_header or row.is_part:
            return None
        return row

    def divide_item(self, row_id: str, n: int) -> List[str]:
        """Split a row into n equal, unassigned shares. Returns the new row ids."""
        row = self._divisible(row_id)
        if row is None or not isinstance(n, int) or n < 2:
            return []
        part_ids = self._divide(row, [row.price / n] * n)
        self._save()
        return part_ids

    def divide_item_by_amounts(self, row_id: str, amounts: Sequence[float]) -> List[str]:
        """Split a row into custom shares that must add up to its price."""
        row = self._divisible(row_id)
        if row is None or len(amounts) < 2:
            return []
        prices = [to_float(a) for a in amounts]
        if any(p < 0 for p in prices) or abs(sum(prices) - row.price) > AMOUNT_TOLERANCE + 1e-9:
            return []
        part_ids = self._divide(row, prices)
        self._save()
        return part_ids

    def divide_equally(self, row_id: str) -> List[str]:
        """One share per person, each already given to that person."""
        row = self._divisible(row_id)
        if row is None or len(self.people) < 2:
            return []
        part_ids = self._divide(row, [row.price / len(self.people)] * len(self.people))
        for part_id, person in zip(part_ids, self.people):
            self.get_row(part_id).assigned_to = person.id
        self._save()
        return part_ids

    def undivide(self, row_id: str) -> bool:
        row = self.get_row(row_id)
        if row is not None and row.is_part:
            row = self.get_row(row.parent_id)
        if row is None or not row.is_header:
            return False
        self.rows = [r for r in self.rows if r.parent_id != row.id]
        row.price = row.original_price
        row.original_price = None
        row.assigned_to = None
        self._save()
        return True

    # --- totals ---

    def set_tip_percentage(self, value):
        self.tip_percentage = clamp(to_float(value), 0.0, 100.0)
        self._save()

    def compute_totals(self, tip_percentage=None) -> SplitTotals:
        tip = self.tip_percentage if tip_percentage is None else tip_percentage
        tip = clamp(to_float(tip), 0.0, 100.0)
        rate = tip / 100

        subtotals = {p.id: 0.0 for p in self.people}
        unassigned = 0.0
        for row in self.rows:
            if row.is_header:
                continue
            if row.assigned_to in subtotals:
                subtotals[row.assigned_to] += row.price
            else:
                unassigned += row.price

        per_person = {}
        for person_id, subtotal in subtotals.items():
            person_tip = subtotal * rate
            per_person[person_id] = PersonTotal(subtotal, person_tip, subtotal + person_tip)
        return SplitTotals(tip, per_person, unassigned)

    # --- state ---

    def serialize(self) -> SplitState:
        divided = [
            DividedItem(row.id, row.original_price,
                        [DividedPart(p.id, p.name, p.price) for p in self.parts_of(row.id)])
            for row in self.rows if row.is_header
        ]
        return SplitState(
            people=[Person(p.id, p.name, p.color_index) for p in self.people],
            selected_person_id=self.selected_person_id,
            next_person_id=self.next_person_id,
            assignments={r.id: r.assigned_to for r in self.rows if r.assigned_to is not None},
            divided_items=divided,
            tip_percentage=self.tip_percentage,
        )

    def deserialize(self, state) -> None:
        """Replace the current split with a saved one (SplitState or its dict form)."""
        if not isinstance(state, SplitState):
            state = SplitState.from_dict(state)
        self._apply_state(state)

    def _apply_state(self, state: SplitState):
        self.rows = build_rows(self.items)
        self.people = [Person(p.id, p.name, p.color_index) for p in state.people]
        self.next_person_id = state.next_person_id
        self.tip_percentage = clamp(to_float(state.tip_percentage), 0.0, 100.0)

        # divided rows first so their parts exist before assignments land on them
        for divided in state.divided_items:
            self._restore_divided(divided)

        for row_id, person_id in state.assignments.items():
            row = self.get_row(row_id)
            if row is not None and row.assignable and self.get_person(person_id) is not None:
                row.assigned_to = person_id

        if self.get_person(state.selected_person_id) is None:
            self.selected_person_id = self.people[0].id
        else:
            self.selected_person_id = state.selected_person_id

    def _restore_divided(self, divided: DividedItem):
        row = self._divisible(divided.item_id)
        if row is None or len(divided.parts) < 2:
            log.warning(f"Skipping saved division of unknown row {divided.item_id}")
            return
        row.original_price = divided.original_price
        row.price = 0.0
        row.assigned_to = None
        at = self.rows.index(row) + 1
        self.rows[at:at] = [
            SplitRow(p.id, p.name, p.price, row.is_modifier, row.group, parent_id=row.id)
            for p in divided.parts
        ]

    def _save(self):
        if self.store is not None and self.storage_key:
            self.store.save(self.storage_key, self.serialize())
