from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from entities import DAY_NAMES, Employee, ProductionItem, week_dates


def cell_pay(quantity, rate):
    return quantity * rate


@dataclass(frozen=True)
class PaystubLine:
    item_id: str
    item_name: str
    rate: float
    quantities: Tuple[int, ...]     # Monday..Saturday

    @property
    def units(self) -> int:
        return sum(self.quantities)

    @property
    def subtotal(self) -> float:
        return cell_pay(self.units, self.rate)


@dataclass(frozen=True)
class Paystub:
    employee_id: str
    employee_name: str
    week_start: date
    lines: Tuple[PaystubLine, ...]

    @property
    def total(self) -> float:
        return sum(line.subtotal for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "weekStart": self.week_start.isoformat(),
            "days": DAY_NAMES,
            "lines": [
                {"itemId": l.item_id, "item": l.item_name, "rate": l.rate,
                 "quantities": list(l.quantities), "units": l.units, "subtotal": l.subtotal}
                for l in self.lines
            ],
            "total": self.total,
        }


def weekly_paystub(employee: Employee, items: Iterable[ProductionItem], entries: Iterable,
                   today: date, rates: Optional[Dict[str, float]] = None) -> Paystub:
    """Itemized Monday-Saturday pay for one employee.

    `entries` can be store entries or draft entries; anything with
    employee_id / production_item_id / date / quantity. `rates` overrides the
    items' pay rates (unsaved draft values).
    """
    days = week_dates(today)
    grid: Dict[Tuple[str, date], int] = {}
    for e in entries:
        if e.employee_id == employee.id:
            grid[(e.production_item_id, e.date)] = grid.get((e.production_item_id, e.date), 0) + e.quantity
    lines = []
    for item in items:
        rate = rates.get(item.id, item.pay_rate) if rates else item.pay_rate
        lines.append(PaystubLine(item.id, item.name, rate, tuple(grid.get((item.id, d), 0) for d in days)))
    return Paystub(employee.id, employee.name, days[0], tuple(lines))


@dataclass(frozen=True)
class RangeLine:
    date: date
    item_name: str
    rate: float
    quantity: int

    @property
    def pay(self) -> float:
        return cell_pay(self.quantity, self.rate)


def range_paystub(employee_id: str, items: Dict[str, ProductionItem], entries: Iterable,
                  start: date, end: date) -> Tuple[List[RangeLine], float]:
    """Every entry of the employee between start and end (inclusive), oldest first."""
    lines = []
    for e in entries:
        if e.employee_id != employee_id or not (start <= e.date <= end):
            continue
        item = items.get(e.production_item_id)
        lines.append(RangeLine(e.date, item.name if item else "Unknown Item", item.pay_rate if item else 0.0, e.quantity))
    lines.sort(key=lambda l: l.date)
    return lines, sum(l.pay for l in lines)
