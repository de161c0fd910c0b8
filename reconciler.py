import logging
from dataclasses import dataclass, field, replace
from typing import List, Tuple

from aggregate import AggregateStore
from docstore import DocumentStore, DocumentStoreError
from draft import DraftEntry, DraftOverlay
from entities import ProductionEntry, entry_path, item_path, production_path
from errors import ErrorChannel, WriteRejected

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    rate_updates: List[Tuple[str, str, float]] = field(default_factory=list)       # (team_id, item_id, rate)
    entry_updates: List[Tuple[str, DraftEntry]] = field(default_factory=list)      # (team_id, entry)
    entry_creates: List[Tuple[str, DraftEntry]] = field(default_factory=list)

    def __len__(self):
        return len(self.rate_updates) + len(self.entry_updates) + len(self.entry_creates)

    def summary(self) -> dict:
        return {"rates": len(self.rate_updates), "updates": len(self.entry_updates), "creates": len(self.entry_creates)}


class BatchCommitReconciler:
    def __init__(self, store: DocumentStore, aggregate: AggregateStore, draft: DraftOverlay, errors: ErrorChannel):
        self.store = store
        self.aggregate = aggregate
        self.draft = draft
        self.errors = errors

    def plan(self) -> ChangeSet:
        changes = ChangeSet()
        for item_id, rate in self.draft.rates.items():
            item = self.aggregate.items.get(item_id)
            if item is not None and item.pay_rate != rate:
                changes.rate_updates.append((item.team_id, item_id, rate))

        for entry in self.draft.entries.values():
            team_id = self.aggregate.team_of_employee(entry.employee_id)
            if team_id is None:
                continue
            if entry.provisional:
                # empty placeholders never become history rows
                if entry.quantity != 0:
                    changes.entry_creates.append((team_id, entry))
                continue
            original = self.aggregate.production.get(entry.id)
            if original is not None and original.quantity != entry.quantity:
                changes.entry_updates.append((team_id, entry))
        return changes

    async def save_all_changes(self) -> ChangeSet:
        # a rejected batch leaves the draft dirty; retrying is up to the caller
        if not self.draft.dirty:
            return ChangeSet()
        changes = self.plan()
        if not changes:
            self.draft.mark_clean()
            return changes

        batch = self.store.batch()
        saved = []
        for team_id, item_id, rate in changes.rate_updates:
            batch.update(item_path(team_id, item_id), {"payRate": rate})
        for team_id, entry in changes.entry_updates:
            batch.update(entry_path(team_id, entry.employee_id, entry.id), {"quantity": entry.quantity})
            saved.append(ProductionEntry(entry.id, entry.employee_id, entry.production_item_id,
                                         entry.date, entry.quantity))
        for team_id, entry in changes.entry_creates:
            entry_id = batch.create(production_path(team_id, entry.employee_id), {
                "employeeId": entry.employee_id,
                "productionItemId": entry.production_item_id,
                "date": entry.date.isoformat(),
                "quantity": entry.quantity,
            })
            saved.append(ProductionEntry(entry_id, entry.employee_id, entry.production_item_id,
                                         entry.date, entry.quantity))

        try:
            await batch.commit()
        except DocumentStoreError as e:
            error = WriteRejected(e.path or "batch-write", "write", request_data=changes.summary(), cause=e)
            self.errors.emit(error)
            raise error from e

        # committed values are the baseline until the listeners echo them back
        items = [replace(self.aggregate.items[item_id], pay_rate=rate)
                 for _, item_id, rate in changes.rate_updates if item_id in self.aggregate.items]
        self.draft.mark_clean()
        self.aggregate.apply_saved(items, saved)
        logger.info("saved draft: %s", changes.summary())
        return changes
