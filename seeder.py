import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import config
from docstore import DocumentStore, DocumentStoreError
from entities import TEAMS, Team, items_path, team_path
from errors import ErrorChannel, SeedingFailure, WriteRejected

logger = logging.getLogger(__name__)

DEFAULT_CATALOG: Dict[str, List[dict]] = {
    "Corazones": [
        {"name": "Chico", "payRate": 10},
        {"name": "Mediano", "payRate": 12},
        {"name": "Grande", "payRate": 14},
        {"name": "Mini", "payRate": 10},
    ],
    "Hojas": [
        {"name": "Blanca", "payRate": 13},
        {"name": "Capote", "payRate": 8},
        {"name": "Tira", "payRate": 6},
    ],
}

# used for teams created later whose name has no catalog of its own
FALLBACK_CATALOG: List[dict] = [{"name": "General", "payRate": 0}]


def load_catalog(path: str = "") -> Dict[str, List[dict]]:
    """Read a {team: [{name, payRate}]} JSON file, or return the built-in catalog."""
    path = path or config.SEED_CATALOG_FILE
    if not path:
        return DEFAULT_CATALOG
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected an object of team name -> item list")
    catalog = {}
    for team_name, items in raw.items():
        catalog[str(team_name)] = [
            {"name": str(it["name"]), "payRate": max(0.0, float(it.get("payRate") or 0))}
            for it in items
        ]
    return catalog


class BootstrapSeeder:
    def __init__(self, store: DocumentStore, errors: ErrorChannel, catalog: Optional[Dict[str, List[dict]]] = None):
        self.store = store
        self.errors = errors
        self.catalog = DEFAULT_CATALOG if catalog is None else catalog
        self._backfilling: Set[str] = set()

    def catalog_for(self, team_name: str) -> List[dict]:
        return self.catalog.get(team_name, FALLBACK_CATALOG)

    async def run(self) -> bool:
        """Seed teams and catalogs if the team collection is empty on the server.

        Two clients starting at once can both see an empty collection and both
        seed; that is tolerated rather than locked against. Returns True when
        this call wrote the seed batch.
        """
        try:
            snap = await self.store.get(TEAMS, source="server")
        except DocumentStoreError as e:
            self.errors.emit(SeedingFailure(TEAMS, "list", cause=e))
            return False
        if not snap.empty:
            return False

        batch = self.store.batch()
        written = []
        for team_name, items in self.catalog.items():
            team_id = batch.create(TEAMS, {"name": team_name})
            for item in items:
                batch.create(items_path(team_id), {**item, "teamId": team_id})
            written.append(team_name)
        try:
            await batch.commit()
        except DocumentStoreError as e:
            self.errors.emit(SeedingFailure(TEAMS, "write", request_data={"teams": written}, cause=e))
            return False
        logger.info("seeded %d team(s): %s", len(written), ", ".join(written))
        return True

    async def backfill_items(self, teams: Iterable[Team]) -> List[str]:
        """Give every team with an empty item collection a default catalog.

        Best effort: failures go to the error channel. Returns the ids of the
        teams that were filled.
        """
        filled = []
        for team in teams:
            if team.id in self._backfilling:
                continue
            self._backfilling.add(team.id)
            try:
                if await self._backfill_one(team):
                    filled.append(team.id)
            finally:
                self._backfilling.discard(team.id)
        return filled

    async def _backfill_one(self, team: Team) -> bool:
        path = items_path(team.id)
        try:
            snap = await self.store.get(path, source="server")
            if not snap.empty:
                return False
            # the team may have been deleted while we were looking
            if await self.store.get_document(team_path(team.id)) is None:
                return False
            batch = self.store.batch()
            for item in self.catalog_for(team.name):
                batch.create(path, {**item, "teamId": team.id})
            await batch.commit()
        except DocumentStoreError as e:
            self.errors.emit(WriteRejected(path, e.operation or "write", request_data={"team": team.name}, cause=e))
            return False
        logger.info("backfilled item catalog for team %s (%s)", team.name, team.id)
        return True
