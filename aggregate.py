import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Set

from entities import Employee, ProductionEntry, ProductionItem, Team

logger = logging.getLogger(__name__)

Observer = Callable[[Set[str]], None]


@dataclass(frozen=True)
class ReadModel:
    teams: List[Team]
    employees: List[Employee]
    items: List[ProductionItem]
    production: List[ProductionEntry]


class AggregateStore:
    def __init__(self):
        self.teams: Dict[str, Team] = {}
        self.employees: Dict[str, Employee] = {}
        self.items: Dict[str, ProductionItem] = {}
        self.production: Dict[str, ProductionEntry] = {}
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)
        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)
        return unsubscribe

    def _publish(self, changed: Set[str]) -> None:
        if not changed:
            return
        logger.debug("aggregate changed: %s", sorted(changed))
        for observer in list(self._observers):
            observer(set(changed))

    @staticmethod
    def _replace_where(slot: Dict, belongs: Callable, incoming: Iterable) -> bool:
        incoming = {rec.id: rec for rec in incoming}
        stale = [k for k, rec in slot.items() if belongs(rec) and k not in incoming]
        changed = bool(stale)
        for k in stale:
            del slot[k]
        for k, rec in incoming.items():
            if slot.get(k) != rec:
                slot[k] = rec
                changed = True
        return changed

    # merges driven by snapshots

    def replace_teams(self, teams: Iterable[Team]) -> None:
        changed = self._replace_where(self.teams, lambda t: True, teams)
        self._publish({"teams"} if changed else set())

    def replace_team_items(self, team_id: str, items: Iterable[ProductionItem]) -> None:
        changed = self._replace_where(self.items, lambda i: i.team_id == team_id, items)
        self._publish({"items"} if changed else set())

    def replace_team_employees(self, team_id: str, employees: Iterable[Employee]) -> None:
        changed = self._replace_where(self.employees, lambda e: e.team_id == team_id, employees)
        self._publish({"employees"} if changed else set())

    def replace_employee_production(self, employee_id: str, entries: Iterable[ProductionEntry]) -> None:
        changed = self._replace_where(self.production, lambda p: p.employee_id == employee_id, entries)
        self._publish({"production"} if changed else set())

    def purge_employee_production(self, employee_id):
        self.replace_employee_production(employee_id, ())

    def purge_team(self, team_id: str) -> None:
        """Drop everything owned by a team that left the team collection."""
        changed = set()
        emp_ids = {e.id for e in self.employees.values() if e.team_id == team_id}
        if self._replace_where(self.items, lambda i: i.team_id == team_id, ()):
            changed.add("items")
        if self._replace_where(self.employees, lambda e: e.team_id == team_id, ()):
            changed.add("employees")
        if self._replace_where(self.production, lambda p: p.employee_id in emp_ids, ()):
            changed.add("production")
        self._publish(changed)

    # optimistic reflection of awaited writes

    def upsert_team(self, team: Team) -> None:
        if self.teams.get(team.id) != team:
            self.teams[team.id] = team
            self._publish({"teams"})

    def upsert_employee(self, employee: Employee) -> None:
        if self.employees.get(employee.id) != employee:
            self.employees[employee.id] = employee
            self._publish({"employees"})

    def apply_saved(self, items: Iterable[ProductionItem], entries: Iterable[ProductionEntry]) -> None:
        # one notification for a whole committed batch
        changed = set()
        for item in items:
            if self.items.get(item.id) != item:
                self.items[item.id] = item
                changed.add("items")
        for entry in entries:
            if self.production.get(entry.id) != entry:
                self.production[entry.id] = entry
                changed.add("production")
        self._publish(changed)

    def remove_employee(self, employee_id: str) -> None:
        changed = set()
        if self.employees.pop(employee_id, None) is not None:
            changed.add("employees")
        if self._replace_where(self.production, lambda p: p.employee_id == employee_id, ()):
            changed.add("production")
        self._publish(changed)

    def remove_team(self, team_id: str) -> None:
        had_team = self.teams.pop(team_id, None) is not None
        if had_team:
            self._publish({"teams"})
        self.purge_team(team_id)

    # queries

    def team_items(self, team_id):
        return [i for i in self.items.values() if i.team_id == team_id]

    def team_employees(self, team_id):
        return [e for e in self.employees.values() if e.team_id == team_id]

    def employee_production(self, employee_id):
        return [p for p in self.production.values() if p.employee_id == employee_id]

    def team_of_employee(self, employee_id):
        emp = self.employees.get(employee_id)
        return emp.team_id if emp else None

    def find_entry(self, employee_id, item_id, day):
        for p in self.production.values():
            if p.key == (employee_id, item_id, day):
                return p
        return None

    def read_model(self) -> ReadModel:
        return ReadModel(
            teams=list(self.teams.values()),
            employees=list(self.employees.values()),
            items=list(self.items.values()),
            production=list(self.production.values()),
        )

    def to_dict(self):
        rm = self.read_model()
        return {
            "teams": [{"id": t.id, **t.to_document()} for t in rm.teams],
            "employees": [{"id": e.id, **e.to_document()} for e in rm.employees],
            "items": [{"id": i.id, **i.to_document()} for i in rm.items],
            "production": [{"id": p.id, **p.to_document()} for p in rm.production],
        }
