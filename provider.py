import asyncio
import logging
from datetime import date
from typing import Callable, Dict, List, Optional, Set

from aggregate import AggregateStore, ReadModel
from docstore import DocumentStore
from draft import DraftOverlay
from entities import Team
from errors import ErrorChannel
from mutations import MutationFacade
from reconciler import BatchCommitReconciler, ChangeSet
from seeder import BootstrapSeeder
from subscriptions import SubscriptionTree

logger = logging.getLogger(__name__)


class SyncProvider:

    def __init__(self, store: DocumentStore, catalog: Optional[Dict[str, List[dict]]] = None,
                 today: Callable[[], date] = date.today, errors: Optional[ErrorChannel] = None,
                 seed: bool = True):
        self.store = store
        self.errors = errors or ErrorChannel()
        self.seed = seed
        self.aggregate = AggregateStore()
        self.draft = DraftOverlay(self.aggregate, today=today)
        self.seeder = BootstrapSeeder(store, self.errors, catalog)
        self.tree = SubscriptionTree(store, self.aggregate, self.errors,
                                     on_teams_changed=self._on_teams_changed)
        self.reconciler = BatchCommitReconciler(store, self.aggregate, self.draft, self.errors)
        self.mutations = MutationFacade(store, self.aggregate, self.draft, self.errors, today=today)
        self._background: Set[asyncio.Task] = set()

    async def start(self) -> None:
        if self.seed:
            await self.seeder.run()
        self.tree.start()

    async def stop(self) -> None:
        self.tree.stop()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

    async def __aenter__(self) -> "SyncProvider":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    def _on_teams_changed(self, teams: List[Team]) -> None:
        # runs inside a snapshot callback, so the backfill is scheduled rather than awaited
        task = asyncio.ensure_future(self.seeder.backfill_items(teams))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def settle(self, max_rounds: int = 100) -> None:
        """Wait until background writes and snapshot deliveries have all landed."""
        for _ in range(max_rounds):
            await self.store.drain()
            pending = list(self._background) + self.mutations.pending
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
        raise RuntimeError("provider did not settle")

    # read model

    @property
    def loading(self) -> bool:
        return self.tree.loading

    @property
    def has_changes(self) -> bool:
        return self.draft.dirty

    def read_model(self) -> ReadModel:
        return self.aggregate.read_model()

    async def save_all_changes(self) -> ChangeSet:
        return await self.reconciler.save_all_changes()

    def state(self) -> dict:
        return {**self.aggregate.to_dict(), "loading": self.loading, "hasChanges": self.has_changes}
