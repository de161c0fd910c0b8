"""Supervisor for the cascading live subscriptions.

    teams
      └─ per team: productionItems, employees
                      └─ per employee: dailyProduction

The shape of the tree follows the data: a team snapshot decides which team
branches exist, an employee snapshot decides which production listeners a
branch owns. Every listener handle is held explicitly and cancelled before
its replacement is opened.
"""

import logging
from typing import Callable, Dict, List, Optional, Set

from aggregate import AggregateStore
from docstore import DocumentStore, DocumentStoreError, QuerySnapshot
from entities import (
    TEAMS, Employee, ProductionEntry, ProductionItem, Team,
    employees_path, items_path, production_path,
)
from errors import ErrorChannel, SnapshotError

logger = logging.getLogger(__name__)


class TeamBranch:
    """Listeners owned by one team."""

    def __init__(self, team_id: str):
        self.team_id = team_id
        self.active = True
        self.unsub_items: Optional[Callable[[], None]] = None
        self.unsub_employees: Optional[Callable[[], None]] = None
        self.employee_subs: Dict[str, Callable[[], None]] = {}
        self.items_ready = False
        self.employees_ready = False
        self.production_ready: Set[str] = set()

    @property
    def settled(self) -> bool:
        # an empty employee list settles the branch as soon as it is observed
        return (self.items_ready and self.employees_ready
                and all(emp_id in self.production_ready for emp_id in self.employee_subs))

    @property
    def listener_count(self) -> int:
        return (self.unsub_items is not None) + (self.unsub_employees is not None) + len(self.employee_subs)

    def cancel_employee(self, employee_id: str) -> None:
        unsub = self.employee_subs.pop(employee_id, None)
        if unsub is not None:
            unsub()
        self.production_ready.discard(employee_id)

    def cancel(self) -> None:
        self.active = False
        for employee_id in list(self.employee_subs):
            self.cancel_employee(employee_id)
        for unsub in (self.unsub_items, self.unsub_employees):
            if unsub is not None:
                unsub()
        self.unsub_items = self.unsub_employees = None


class SubscriptionTree:
    def __init__(
        self,
        store: DocumentStore,
        aggregate: AggregateStore,
        errors: ErrorChannel,
        on_teams_changed: Optional[Callable[[List[Team]], None]] = None,
        on_settled: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.aggregate = aggregate
        self.errors = errors
        self.on_teams_changed = on_teams_changed
        self.on_settled = on_settled
        self.branches: Dict[str, TeamBranch] = {}
        self.loading = True
        self._unsub_teams: Optional[Callable[[], None]] = None
        self._team_ids: Optional[frozenset] = None

    @property
    def running(self) -> bool:
        return self._unsub_teams is not None

    @property
    def listener_count(self) -> int:
        return (self._unsub_teams is not None) + sum(b.listener_count for b in self.branches.values())

    def start(self) -> None:
        if self.running:
            return
        self.loading = True
        self._team_ids = None
        self._unsub_teams = self.store.subscribe(TEAMS, self._on_teams, self._on_teams_error)
        logger.info("subscription tree started")

    def stop(self) -> None:
        if self._unsub_teams is not None:
            self._unsub_teams()
            self._unsub_teams = None
        for branch in self.branches.values():
            branch.cancel()
        self.branches.clear()
        self._team_ids = None
        logger.info("subscription tree stopped")

    # teams

    def _on_teams(self, snap: QuerySnapshot) -> None:
        teams = [Team.from_document(d.id, d.data) for d in snap]
        team_ids = frozenset(t.id for t in teams)

        for team_id in [tid for tid in self.branches if tid not in team_ids]:
            self.branches.pop(team_id).cancel()
            self.aggregate.purge_team(team_id)
            logger.debug("closed branch for removed team %s", team_id)

        self.aggregate.replace_teams(teams)

        for team in teams:
            if team.id not in self.branches:
                self._open_branch(team.id)

        membership_changed = team_ids != self._team_ids
        self._team_ids = team_ids
        if membership_changed and self.on_teams_changed is not None:
            self.on_teams_changed(teams)
        self._update_loading()

    def _on_teams_error(self, error: DocumentStoreError) -> None:
        self.errors.emit(SnapshotError(TEAMS, "list", cause=error))
        self._unsub_teams = None
        self._settle()

    def _open_branch(self, team_id: str) -> None:
        branch = TeamBranch(team_id)
        self.branches[team_id] = branch
        ipath, epath = items_path(team_id), employees_path(team_id)
        branch.unsub_items = self.store.subscribe(
            ipath,
            lambda snap: self._on_items(branch, snap),
            lambda err: self._on_branch_error(branch, ipath, err, "items"),
        )
        branch.unsub_employees = self.store.subscribe(
            epath,
            lambda snap: self._on_employees(branch, snap),
            lambda err: self._on_branch_error(branch, epath, err, "employees"),
        )

    def _current(self, branch: TeamBranch) -> bool:
        # deliveries for a branch that has since been replaced are dropped
        return branch.active and self.branches.get(branch.team_id) is branch

    # items / employees

    def _on_items(self, branch: TeamBranch, snap: QuerySnapshot) -> None:
        if not self._current(branch):
            return
        items = [ProductionItem.from_document(d.id, d.data, branch.team_id) for d in snap]
        self.aggregate.replace_team_items(branch.team_id, items)
        branch.items_ready = True
        self._update_loading()

    def _on_employees(self, branch: TeamBranch, snap: QuerySnapshot) -> None:
        if not self._current(branch):
            return
        employees = [Employee.from_document(d.id, d.data, branch.team_id) for d in snap]
        current = {e.id for e in employees}

        for employee_id in [eid for eid in branch.employee_subs if eid not in current]:
            branch.cancel_employee(employee_id)
            self.aggregate.purge_employee_production(employee_id)

        self.aggregate.replace_team_employees(branch.team_id, employees)

        for employee in employees:
            if employee.id not in branch.employee_subs:
                self._open_production(branch, employee.id)

        branch.employees_ready = True
        self._update_loading()

    # production

    def _open_production(self, branch: TeamBranch, employee_id: str) -> None:
        path = production_path(branch.team_id, employee_id)
        branch.employee_subs[employee_id] = self.store.subscribe(
            path,
            lambda snap: self._on_production(branch, employee_id, snap),
            lambda err: self._on_branch_error(branch, path, err, "production", employee_id),
        )

    def _on_production(self, branch: TeamBranch, employee_id: str, snap: QuerySnapshot) -> None:
        if not self._current(branch) or employee_id not in branch.employee_subs:
            return
        entries = []
        for d in snap:
            try:
                entries.append(ProductionEntry.from_document(d.id, d.data, employee_id))
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping malformed production entry %s: %r", d.path, d.data)
        self.aggregate.replace_employee_production(employee_id, entries)
        branch.production_ready.add(employee_id)
        self._update_loading()

    # errors and loading

    def _on_branch_error(self, branch: TeamBranch, path: str, error: DocumentStoreError,
                         kind: str, employee_id: Optional[str] = None) -> None:
        self.errors.emit(SnapshotError(path, "list", cause=error))
        if not self._current(branch):
            return
        # the slice keeps its last value; it only stops updating
        if kind == "items":
            branch.items_ready = True
        elif kind == "employees":
            branch.employees_ready = True
        elif employee_id is not None:
            branch.production_ready.add(employee_id)
        self._update_loading()

    def _update_loading(self) -> None:
        if not self.loading or self._team_ids is None:
            return
        if all(b.settled for b in self.branches.values()):
            self._settle()

    def _settle(self) -> None:
        if not self.loading:
            return
        self.loading = False
        logger.info("initial sync settled: %d team(s), %d employee(s)",
                    len(self.aggregate.teams), len(self.aggregate.employees))
        if self.on_settled is not None:
            self.on_settled()
