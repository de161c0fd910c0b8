"""Local edit layer over the aggregate store.

The overlay is rebuilt from the store every time items, employees or
production change, which throws away unsaved edits: whatever the server
confirmed last wins. Edits only flip `dirty`; nothing is written until the
reconciler saves.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from aggregate import AggregateStore
from entities import WORK_DAYS, parse_quantity, parse_rate, week_dates
from payroll import Paystub, weekly_paystub

logger = logging.getLogger(__name__)

TEMP_PREFIX = "new-"
RESYNC_SLICES = {"items", "employees", "production"}


def temp_id(employee_id: str, item_id: str, day: date) -> str:
    return f"{TEMP_PREFIX}{employee_id}-{item_id}-{day.isoformat()}"


@dataclass
class DraftEntry:
    id: str
    employee_id: str
    production_item_id: str
    date: date
    quantity: int
    provisional: bool = False

    @property
    def key(self) -> Tuple[str, str, date]:
        return (self.employee_id, self.production_item_id, self.date)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employeeId": self.employee_id,
            "productionItemId": self.production_item_id,
            "date": self.date.isoformat(),
            "quantity": self.quantity,
            "provisional": self.provisional,
        }


class DraftOverlay:
    def __init__(self, aggregate: AggregateStore, today: Callable[[], date] = date.today,
                 fill_placeholders: bool = True):
        self.aggregate = aggregate
        self.today = today
        self.fill_placeholders = fill_placeholders
        self.rates: Dict[str, float] = {}
        self.entries: Dict[str, DraftEntry] = {}
        self.dirty = False
        self._by_key: Dict[Tuple[str, str, date], str] = {}
        self._unsubscribe = aggregate.subscribe(self._on_aggregate_changed)
        self.rebaseline()

    def close(self) -> None:
        self._unsubscribe()

    def _on_aggregate_changed(self, changed) -> None:
        if changed & RESYNC_SLICES:
            if self.dirty:
                logger.info("server update replaced unsaved draft edits")
            self.rebaseline()

    def rebaseline(self) -> None:
        self.rates = {item.id: item.pay_rate for item in self.aggregate.items.values()}
        self.entries = {}
        self._by_key = {}
        for p in self.aggregate.production.values():
            self._put(DraftEntry(p.id, p.employee_id, p.production_item_id, p.date, p.quantity))
        if self.fill_placeholders:
            self._fill_placeholders()
        self.dirty = False

    def _put(self, entry: DraftEntry) -> None:
        self.entries[entry.id] = entry
        self._by_key.setdefault(entry.key, entry.id)

    def _fill_placeholders(self) -> None:
        days = week_dates(self.today())
        for emp in self.aggregate.employees.values():
            for item in self.aggregate.team_items(emp.team_id):
                for day in days:
                    if (emp.id, item.id, day) not in self._by_key:
                        self._put(DraftEntry(temp_id(emp.id, item.id, day), emp.id, item.id, day, 0, provisional=True))

    # edits

    def set_rate(self, item_id: str, raw) -> float:
        if item_id not in self.rates:
            raise KeyError(item_id)
        self.rates[item_id] = parse_rate(raw)
        self.dirty = True
        return self.rates[item_id]

    def day_for(self, weekday_index: int) -> date:
        if not 0 <= weekday_index < WORK_DAYS:
            raise ValueError(f"weekday index must be 0..{WORK_DAYS - 1}, got {weekday_index}")
        return week_dates(self.today())[weekday_index]

    def entry_for(self, employee_id: str, item_id: str, weekday_index: int) -> Optional[DraftEntry]:
        entry_id = self._by_key.get((employee_id, item_id, self.day_for(weekday_index)))
        return self.entries.get(entry_id) if entry_id else None

    def set_production_quantity(self, employee_id: str, item_id: str, weekday_index: int, raw) -> DraftEntry:
        day = self.day_for(weekday_index)
        quantity = parse_quantity(raw)
        entry_id = self._by_key.get((employee_id, item_id, day))
        if entry_id is not None:
            entry = replace(self.entries[entry_id], quantity=quantity)
            self.entries[entry_id] = entry
        else:
            entry = DraftEntry(temp_id(employee_id, item_id, day), employee_id, item_id, day, quantity, provisional=True)
            self._put(entry)
        self.dirty = True
        return entry

    def reset(self, team_id: Optional[str] = None) -> int:
        """Zero quantities (all teams, or one team's employees). Rates stay."""
        if team_id is None:
            targets = list(self.entries.values())
        else:
            members = {e.id for e in self.aggregate.team_employees(team_id)}
            targets = [e for e in self.entries.values() if e.employee_id in members]
        for entry in targets:
            self.entries[entry.id] = replace(entry, quantity=0)
        self.dirty = True
        return len(targets)

    def mark_clean(self) -> None:
        self.dirty = False

    # views

    def paystub(self, employee_id: str) -> Paystub:
        emp = self.aggregate.employees[employee_id]
        items = self.aggregate.team_items(emp.team_id)
        return weekly_paystub(emp, items, self.entries.values(), self.today(), rates=self.rates)

    def to_dict(self) -> dict:
        return {
            "dirty": self.dirty,
            "rates": dict(self.rates),
            "entries": [e.to_dict() for e in self.entries.values()],
        }
