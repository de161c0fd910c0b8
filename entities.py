"""Domain records and their document-store addresses.

teams/{teamId}
teams/{teamId}/productionItems/{itemId}
teams/{teamId}/employees/{employeeId}
teams/{teamId}/employees/{employeeId}/dailyProduction/{entryId}
"""

import math
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict

TEAMS = "teams"
WORK_DAYS = 6  # Monday..Saturday
DAY_NAMES = ["Lunes", "Martes", "Miercoles", "Jueves", "Viernes", "Sábado"]

# leading numeric prefix only, so "1_000" reads as 1 and "12abc" as 12
_INT_PREFIX = re.compile(r"[+-]?\d+")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _clean(raw):
    if raw is None:
        return ""
    return str(raw).strip().replace(" ", "").replace(",", ".")


def parse_rate(raw) -> float:
    m = _FLOAT_PREFIX.match(_clean(raw))
    if not m:
        return 0.0
    value = float(m.group())
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return max(0.0, value)


def parse_quantity(raw) -> int:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        if math.isnan(raw) or math.isinf(raw):
            return 0
        return max(0, int(raw))
    m = _INT_PREFIX.match(_clean(raw))
    return max(0, int(m.group())) if m else 0


def team_path(team_id):
    return f"{TEAMS}/{team_id}"

def items_path(team_id):
    return f"{TEAMS}/{team_id}/productionItems"

def item_path(team_id, item_id):
    return f"{items_path(team_id)}/{item_id}"

def employees_path(team_id):
    return f"{TEAMS}/{team_id}/employees"

def employee_path(team_id, employee_id):
    return f"{employees_path(team_id)}/{employee_id}"

def production_path(team_id, employee_id):
    return f"{employee_path(team_id, employee_id)}/dailyProduction"

def entry_path(team_id, employee_id, entry_id):
    return f"{production_path(team_id, employee_id)}/{entry_id}"


def week_start(today):
    return today - timedelta(days=today.weekday())

def week_dates(today):
    monday = week_start(today)
    return [monday + timedelta(days=i) for i in range(WORK_DAYS)]


@dataclass(frozen=True)
class Team:
    id: str
    name: str

    @classmethod
    def from_document(cls, doc_id: str, data: Dict) -> "Team":
        return cls(id=doc_id, name=str(data.get("name", "")))

    def to_document(self) -> Dict:
        return {"name": self.name}


@dataclass(frozen=True)
class Employee:
    id: str
    name: str
    team_id: str

    @classmethod
    def from_document(cls, doc_id: str, data: Dict, team_id: str = "") -> "Employee":
        # the parent path is authoritative when the stored teamId is missing
        return cls(id=doc_id, name=str(data.get("name", "")), team_id=str(data.get("teamId") or team_id))

    def to_document(self) -> Dict:
        return {"name": self.name, "teamId": self.team_id}


@dataclass(frozen=True)
class ProductionItem:
    id: str
    name: str
    pay_rate: float
    team_id: str

    @classmethod
    def from_document(cls, doc_id: str, data: Dict, team_id: str = "") -> "ProductionItem":
        return cls(
            id=doc_id,
            name=str(data.get("name", "")),
            pay_rate=parse_rate(data.get("payRate")),
            team_id=str(data.get("teamId") or team_id),
        )

    def to_document(self) -> Dict:
        return {"name": self.name, "payRate": self.pay_rate, "teamId": self.team_id}


@dataclass(frozen=True)
class ProductionEntry:
    id: str
    employee_id: str
    production_item_id: str
    date: date
    quantity: int

    @property
    def key(self):
        return (self.employee_id, self.production_item_id, self.date)

    @classmethod
    def from_document(cls, doc_id: str, data: Dict, employee_id: str = "") -> "ProductionEntry":
        return cls(
            id=doc_id,
            employee_id=str(data.get("employeeId") or employee_id),
            production_item_id=str(data.get("productionItemId", "")),
            date=date.fromisoformat(str(data["date"])),
            quantity=parse_quantity(data.get("quantity")),
        )

    def to_document(self) -> Dict:
        return {
            "employeeId": self.employee_id,
            "productionItemId": self.production_item_id,
            "date": self.date.isoformat(),
            "quantity": self.quantity,
        }
