import pytest

from errors import WriteRejected
from entities import production_path
from provider import SyncProvider
from conftest import CATALOG, fixed_today, item_id_by_name, run, team_id_by_name


async def started(store):
    provider = SyncProvider(store, catalog=CATALOG, today=fixed_today)
    await provider.start()
    await provider.settle()
    return provider


def test_clean_overlay_saves_nothing(store):
    async def scenario():
        p = await started(store)
        hojas = team_id_by_name(p.aggregate, "Hojas")
        await p.mutations.add_employee("Maria", hojas)
        await p.settle()
        writes = store.write_count
        changes = await p.save_all_changes()
        assert len(changes) == 0
        assert store.write_count == writes
    run(scenario())


def test_zero_placeholders_never_create_rows(store):
    async def scenario():
        p = await started(store)
        hojas = team_id_by_name(p.aggregate, "Hojas")
        # no placeholders in the store: the employee doc is written directly
        emp_id = await store.add(f"teams/{hojas}/employees", {"name": "Rosa", "teamId": hojas})
        await p.settle()
        assert any(e.provisional for e in p.draft.entries.values())

        p.draft.set_rate(item_id_by_name(p.aggregate, "Blanca"), "13")
        plan = p.reconciler.plan()
        assert plan.entry_creates == []

        p.draft.set_production_quantity(emp_id, item_id_by_name(p.aggregate, "Blanca"), 4, "3")
        plan = p.reconciler.plan()
        assert len(plan.entry_creates) == 1
        team_id, entry = plan.entry_creates[0]
        assert team_id == hojas and entry.quantity == 3

        await p.save_all_changes()
        await p.settle()
        snap = await store.get(production_path(hojas, emp_id))
        assert snap.size == 1
        assert snap.docs[0].data["quantity"] == 3
        assert not any(e.provisional and e.quantity for e in p.draft.entries.values())
    run(scenario())


def test_rate_change_is_one_update(store):
    async def scenario():
        p = await started(store)
        blanca = item_id_by_name(p.aggregate, "Blanca")
        p.draft.set_rate(blanca, "15")
        writes = store.write_count
        changes = await p.save_all_changes()
        assert [(r[1], r[2]) for r in changes.rate_updates] == [(blanca, 15.0)]
        assert store.write_count == writes + 1
        assert not p.has_changes
        await p.settle()
        assert p.aggregate.items[blanca].pay_rate == 15.0
    run(scenario())


def test_saving_twice_writes_once(store):
    async def scenario():
        p = await started(store)
        blanca = item_id_by_name(p.aggregate, "Blanca")
        p.draft.set_rate(blanca, "15")
        await p.save_all_changes()
        writes = store.write_count
        second = await p.save_all_changes()
        assert len(second) == 0
        assert store.write_count == writes
        await p.settle()
        third = await p.save_all_changes()
        assert len(third) == 0
        assert store.write_count == writes
    run(scenario())


def test_rejected_save_keeps_draft_dirty(store):
    async def scenario():
        p = await started(store)
        hojas = team_id_by_name(p.aggregate, "Hojas")
        blanca = item_id_by_name(p.aggregate, "Blanca")
        heard = []
        p.errors.subscribe(heard.append)
        store.deny(f"teams/{hojas}/productionItems", ["update"])

        p.draft.set_rate(blanca, "50")
        writes = store.write_count
        with pytest.raises(WriteRejected) as exc:
            await p.save_all_changes()

        assert p.has_changes
        assert store.write_count == writes
        assert heard == [exc.value]
        assert exc.value.operation == "write"
        assert exc.value.path == f"teams/{hojas}/productionItems/{blanca}"
        assert exc.value.request_data == {"rates": 1, "updates": 0, "creates": 0}

        # explicit retry once access is back
        store.allow_all()
        await p.save_all_changes()
        assert not p.has_changes
    run(scenario())


def test_second_save_before_listeners_catch_up(store):
    async def scenario():
        p = await started(store)
        hojas = team_id_by_name(p.aggregate, "Hojas")
        blanca = item_id_by_name(p.aggregate, "Blanca")
        emp_id = await store.add(f"teams/{hojas}/employees", {"name": "Rosa", "teamId": hojas})
        await p.settle()

        p.draft.set_production_quantity(emp_id, blanca, 0, "3")
        first = await p.save_all_changes()
        assert first.summary() == {"rates": 0, "updates": 0, "creates": 1}
        monday = p.draft.entry_for(emp_id, blanca, 0)
        assert not monday.provisional and monday.quantity == 3

        # no yield to the loop: the listeners have not redelivered yet
        p.draft.set_production_quantity(emp_id, blanca, 1, "4")
        second = await p.save_all_changes()
        assert second.summary() == {"rates": 0, "updates": 0, "creates": 1}

        await p.settle()
        rows = [d.data for d in await store.get(production_path(hojas, emp_id))]
        assert sorted((r["date"], r["quantity"]) for r in rows) == [("2026-10-12", 3), ("2026-10-13", 4)]
        assert not p.has_changes
    run(scenario())


def test_saved_rate_is_not_sent_again(store):
    async def scenario():
        p = await started(store)
        blanca = item_id_by_name(p.aggregate, "Blanca")
        chico = item_id_by_name(p.aggregate, "Chico")
        p.draft.set_rate(blanca, "15")
        await p.save_all_changes()
        p.draft.set_rate(chico, "11")
        second = await p.save_all_changes()
        assert [r[1] for r in second.rate_updates] == [chico]
    run(scenario())
