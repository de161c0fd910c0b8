"""Write entry points used by the UI layer.

Awaited operations (adding/removing employees and teams) raise WriteRejected
on failure and mirror their result into the aggregate store at once; the
subscriptions confirm it later. Fire-and-forget operations return a task and
report failures only through the error channel.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from aggregate import AggregateStore
from docstore import DocumentStore, DocumentStoreError
from draft import DraftOverlay
from entities import (
    TEAMS, Employee, Team, employee_path, employees_path, entry_path, parse_quantity, parse_rate,
    item_path, items_path, production_path, team_path, week_dates,
)
from errors import ErrorChannel, WriteRejected

logger = logging.getLogger(__name__)


class MutationFacade:
    def __init__(self, store: DocumentStore, aggregate: AggregateStore, draft: DraftOverlay,
                 errors: ErrorChannel, today: Callable[[], date] = date.today):
        self.store = store
        self.aggregate = aggregate
        self.draft = draft
        self.errors = errors
        self.today = today
        self._tasks: Set[asyncio.Task] = set()

    def _rejected(self, e: Exception, path: str, operation: str, data: Any = None) -> WriteRejected:
        error = WriteRejected(getattr(e, "path", "") or path, operation, request_data=data, cause=e)
        self.errors.emit(error)
        return error

    def _fire(self, coro: Awaitable, path: str, operation: str, data: Any = None) -> asyncio.Task:
        async def run():
            try:
                return await coro
            # a malformed id surfaces as ValueError from the path check
            except (DocumentStoreError, ValueError) as e:
                self._rejected(e, path, operation, data)
                return None
        task = asyncio.ensure_future(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self):
        return list(self._tasks)

    # employees

    async def add_employee(self, name: str, team_id: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValueError("employee name is empty")
        path = employees_path(team_id)
        data = {"name": name, "teamId": team_id}
        try:
            employee_id = await self.store.add(path, data)
        except DocumentStoreError as e:
            raise self._rejected(e, path, "create", data) from e
        self.aggregate.upsert_employee(Employee(employee_id, name, team_id))
        await self._provision_week(employee_id, team_id)
        logger.info("added employee %s (%s) to team %s", name, employee_id, team_id)
        return employee_id

    async def _provision_week(self, employee_id: str, team_id: str) -> int:
        """One zero entry per (team item x Monday..Saturday); nothing when the team has no items."""
        items = self.aggregate.team_items(team_id)
        if not items:
            return 0
        path = production_path(team_id, employee_id)
        batch = self.store.batch()
        for item in items:
            for day in week_dates(self.today()):
                batch.create(path, {
                    "employeeId": employee_id,
                    "productionItemId": item.id,
                    "date": day.isoformat(),
                    "quantity": 0,
                })
        try:
            await batch.commit()
        except DocumentStoreError as e:
            raise self._rejected(e, path, "write", "initial production entries") from e
        return len(batch)

    async def delete_employee(self, employee_id: str, team_id: str) -> int:
        path = production_path(team_id, employee_id)
        try:
            entries = await self.store.get(path, source="server")
        except DocumentStoreError as e:
            raise self._rejected(e, path, "list") from e
        batch = self.store.batch()
        for doc in entries:
            batch.delete(entry_path(team_id, employee_id, doc.id))
        batch.delete(employee_path(team_id, employee_id))
        try:
            await batch.commit()
        except DocumentStoreError as e:
            raise self._rejected(e, employee_path(team_id, employee_id), "delete") from e
        self.aggregate.remove_employee(employee_id)
        logger.info("deleted employee %s with %d entries", employee_id, entries.size)
        return entries.size

    def rename_employee(self, employee_id: str, team_id: str, name: str) -> asyncio.Task:
        path = employee_path(team_id, employee_id)
        data = {"name": (name or "").strip()}
        return self._fire(self.store.update(path, data), path, "update", data)

    # teams

    async def add_team(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValueError("team name is empty")
        try:
            team_id = await self.store.add(TEAMS, {"name": name})
        except DocumentStoreError as e:
            raise self._rejected(e, TEAMS, "create", {"name": name}) from e
        self.aggregate.upsert_team(Team(team_id, name))
        logger.info("added team %s (%s)", name, team_id)
        return team_id

    def rename_team(self, team_id: str, name: str) -> asyncio.Task:
        path = team_path(team_id)
        data = {"name": (name or "").strip()}
        return self._fire(self.store.update(path, data), path, "update", data)

    async def delete_team(self, team_id: str) -> Dict[str, int]:
        """Cascade: items, employees and their entries, then the team, all in one batch."""
        counts = {"items": 0, "employees": 0, "entries": 0}
        batch = self.store.batch()
        try:
            for doc in await self.store.get(items_path(team_id), source="server"):
                batch.delete(item_path(team_id, doc.id))
                counts["items"] += 1
            for emp in await self.store.get(employees_path(team_id), source="server"):
                for doc in await self.store.get(production_path(team_id, emp.id), source="server"):
                    batch.delete(entry_path(team_id, emp.id, doc.id))
                    counts["entries"] += 1
                batch.delete(employee_path(team_id, emp.id))
                counts["employees"] += 1
        except DocumentStoreError as e:
            raise self._rejected(e, team_path(team_id), "list") from e
        batch.delete(team_path(team_id))
        try:
            await batch.commit()
        except DocumentStoreError as e:
            raise self._rejected(e, team_path(team_id), "delete", counts) from e
        self.aggregate.remove_team(team_id)
        logger.info("deleted team %s: %s", team_id, counts)
        return counts

    # items

    def add_item(self, team_id: str, name: str, pay_rate) -> asyncio.Task:
        path = items_path(team_id)
        data = {"name": (name or "").strip(), "payRate": parse_rate(pay_rate), "teamId": team_id}
        return self._fire(self.store.add(path, data), path, "create", data)

    def update_item(self, team_id: str, item_id: str, name: Optional[str] = None, pay_rate=None) -> asyncio.Task:
        path = item_path(team_id, item_id)
        data = {}
        if name is not None:
            data["name"] = name.strip()
        if pay_rate is not None:
            data["payRate"] = parse_rate(pay_rate)
        return self._fire(self.store.update(path, data), path, "update", data)

    def delete_item(self, team_id: str, item_id: str) -> asyncio.Task:
        path = item_path(team_id, item_id)
        return self._fire(self.store.delete(path), path, "delete")

    # single production entries

    def add_production_entry(self, employee_id: str, item_id: str, day: date, quantity) -> Optional[asyncio.Task]:
        team_id = self.aggregate.team_of_employee(employee_id)
        if team_id is None:
            logger.warning("add_production_entry: unknown employee %s", employee_id)
            return None
        path = production_path(team_id, employee_id)
        data = {"employeeId": employee_id, "productionItemId": item_id,
                "date": day.isoformat(), "quantity": parse_quantity(quantity)}
        return self._fire(self.store.add(path, data), path, "create", data)

    def update_production_entry(self, entry_id: str, team_id: str, employee_id: str, quantity) -> asyncio.Task:
        path = entry_path(team_id, employee_id, entry_id)
        data = {"quantity": parse_quantity(quantity)}
        return self._fire(self.store.update(path, data), path, "update", data)

    # draft

    def reset_production(self, team_id: Optional[str] = None) -> int:
        return self.draft.reset(team_id)
