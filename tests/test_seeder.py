import json

import pytest

from entities import Team, items_path
from errors import ErrorChannel, SeedingFailure, WriteRejected
from seeder import DEFAULT_CATALOG, FALLBACK_CATALOG, BootstrapSeeder, load_catalog
from conftest import CATALOG, run


def test_seeds_empty_collection_once(store):
    seeder = BootstrapSeeder(store, ErrorChannel(), CATALOG)

    async def scenario():
        assert await seeder.run() is True
        assert await seeder.run() is False
        teams = await store.get("teams")
        assert sorted(d.data["name"] for d in teams) == ["Corazones", "Hojas"]
        for team in teams:
            items = await store.get(items_path(team.id))
            names = [d.data["name"] for d in items]
            assert sorted(names) == sorted(i["name"] for i in CATALOG[team.data["name"]])
            assert all(d.data["teamId"] == team.id for d in items)
    run(scenario())


def test_existing_teams_are_left_alone(store):
    seeder = BootstrapSeeder(store, ErrorChannel(), CATALOG)

    async def scenario():
        await store.add("teams", {"name": "Propio"})
        assert await seeder.run() is False
        assert (await store.get("teams")).size == 1
    run(scenario())


def test_rejected_seed_is_reported_not_raised(store):
    errors = ErrorChannel()
    heard = []
    errors.subscribe(heard.append)
    store.deny("teams", ["create"])

    assert run(BootstrapSeeder(store, errors, CATALOG).run()) is False
    assert len(heard) == 1
    assert isinstance(heard[0], SeedingFailure)
    assert heard[0].path == "teams"
    assert heard[0].operation == "write"


def test_backfill_fills_only_empty_catalogs(store):
    seeder = BootstrapSeeder(store, ErrorChannel(), CATALOG)

    async def scenario():
        hojas = await store.add("teams", {"name": "Hojas"})
        nuevo = await store.add("teams", {"name": "Nuevo"})
        full = await store.add("teams", {"name": "Corazones"})
        await store.add(items_path(full), {"name": "Especial", "payRate": 3, "teamId": full})

        filled = await seeder.backfill_items([Team(hojas, "Hojas"), Team(nuevo, "Nuevo"), Team(full, "Corazones")])

        assert sorted(filled) == sorted([hojas, nuevo])
        assert [d.data["name"] for d in await store.get(items_path(hojas))] == ["Blanca"]
        assert [d.data["name"] for d in await store.get(items_path(nuevo))] == [i["name"] for i in FALLBACK_CATALOG]
        assert [d.data["name"] for d in await store.get(items_path(full))] == ["Especial"]
    run(scenario())


def test_backfill_skips_deleted_team(store):
    seeder = BootstrapSeeder(store, ErrorChannel(), CATALOG)
    assert run(seeder.backfill_items([Team("gone", "Hojas")])) == []


def test_backfill_failure_goes_to_channel(store):
    errors = ErrorChannel()
    heard = []
    errors.subscribe(heard.append)
    seeder = BootstrapSeeder(store, errors, CATALOG)

    async def scenario():
        team_id = await store.add("teams", {"name": "Hojas"})
        store.deny(items_path(team_id), ["create"])
        return await seeder.backfill_items([Team(team_id, "Hojas")])

    assert run(scenario()) == []
    assert len(heard) == 1 and isinstance(heard[0], WriteRejected)


def test_load_catalog_from_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"Tallos": [{"name": "Largo", "payRate": "4.5"}, {"name": "Corto"}]}), encoding="utf-8")
    assert load_catalog(str(path)) == {"Tallos": [{"name": "Largo", "payRate": 4.5}, {"name": "Corto", "payRate": 0.0}]}


def test_load_catalog_default(monkeypatch):
    monkeypatch.setattr("config.SEED_CATALOG_FILE", "")
    assert load_catalog() is DEFAULT_CATALOG


def test_load_catalog_rejects_non_object(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_catalog(str(path))
