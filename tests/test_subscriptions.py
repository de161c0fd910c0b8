import asyncio

from aggregate import AggregateStore
from entities import employees_path, items_path
from errors import ErrorChannel, SnapshotError
from provider import SyncProvider
from subscriptions import SubscriptionTree
from conftest import CATALOG, fixed_today, run, team_id_by_name


def test_tree_shape_follows_data(store):
    async def scenario():
        p = SyncProvider(store, catalog=CATALOG, today=fixed_today)
        await p.start()
        assert p.loading
        await p.settle()
        assert not p.loading
        # teams + (items, employees) per team
        assert store.listener_count == p.tree.listener_count == 5

        hojas = team_id_by_name(p.aggregate, "Hojas")
        emp_id = await p.mutations.add_employee("Maria", hojas)
        await p.settle()
        assert store.listener_count == 6
        assert emp_id in p.tree.branches[hojas].employee_subs

        await p.mutations.delete_employee(emp_id, hojas)
        await p.settle()
        assert store.listener_count == 5
        assert p.aggregate.employee_production(emp_id) == []

        await p.stop()
        assert store.listener_count == 0
        assert p.tree.branches == {}
    run(scenario())


def test_employee_appearing_later_gets_a_production_listener(store):
    async def scenario():
        p = SyncProvider(store, catalog=CATALOG, today=fixed_today)
        await p.start()
        await p.settle()
        hojas = team_id_by_name(p.aggregate, "Hojas")
        # written by "another client", bypassing the facade
        emp_id = await store.add(employees_path(hojas), {"name": "Luz", "teamId": hojas})
        await store.add(f"{employees_path(hojas)}/{emp_id}/dailyProduction",
                        {"employeeId": emp_id, "productionItemId": "x", "date": "2026-10-12", "quantity": 4})
        await p.settle()
        assert [e.quantity for e in p.aggregate.employee_production(emp_id)] == [4]
    run(scenario())


def test_new_team_gets_branch_and_backfilled_catalog(store):
    async def scenario():
        p = SyncProvider(store, catalog=CATALOG, today=fixed_today)
        await p.start()
        await p.settle()
        team_id = await p.mutations.add_team("Tallos")
        await p.settle()
        assert team_id in p.tree.branches
        assert [i.name for i in p.aggregate.team_items(team_id)] == ["General"]
        assert store.listener_count == 7
    run(scenario())


def test_zero_teams_settles_immediately(store):
    async def scenario():
        p = SyncProvider(store, seed=False, today=fixed_today)
        await p.start()
        await p.settle()
        assert not p.loading
        assert p.aggregate.teams == {}
    run(scenario())


def test_denied_branch_reports_and_others_keep_running(store):
    errors = ErrorChannel()
    heard = []
    errors.subscribe(heard.append)

    async def scenario():
        a = await store.add("teams", {"name": "A"})
        b = await store.add("teams", {"name": "B"})
        await store.add(items_path(b), {"name": "Blanca", "payRate": 13, "teamId": b})
        store.deny(employees_path(a), ["list"])

        agg = AggregateStore()
        tree = SubscriptionTree(store, agg, errors)
        tree.start()
        await store.drain()

        assert not tree.loading
        assert [type(e) for e in heard] == [SnapshotError]
        assert heard[0].path == employees_path(a)
        assert heard[0].operation == "list"

        await store.add(employees_path(b), {"name": "Maria", "teamId": b})
        await store.drain()
        assert [e.name for e in agg.team_employees(b)] == ["Maria"]
        tree.stop()
    run(scenario())


def test_callbacks_for_closed_branches_are_ignored(store):
    async def scenario():
        team_id = await store.add("teams", {"name": "A"})
        agg = AggregateStore()
        tree = SubscriptionTree(store, agg, ErrorChannel())
        tree.start()
        await store.drain()
        branch = tree.branches[team_id]

        await store.delete(f"teams/{team_id}")
        await store.drain()
        assert team_id not in tree.branches
        assert not branch.active

        # a late delivery for the dead branch changes nothing
        await store.add(employees_path(team_id), {"name": "Fantasma", "teamId": team_id})
        await store.drain()
        assert agg.employees == {}
        tree.stop()
    run(scenario())


def test_renaming_a_team_keeps_its_branch(store):
    async def scenario():
        team_id = await store.add("teams", {"name": "A"})
        changes = []
        agg = AggregateStore()
        tree = SubscriptionTree(store, agg, ErrorChannel(), on_teams_changed=changes.append)
        tree.start()
        await store.drain()
        branch = tree.branches[team_id]

        await store.update(f"teams/{team_id}", {"name": "B"})
        await store.drain()

        assert tree.branches[team_id] is branch
        assert agg.teams[team_id].name == "B"
        assert len(changes) == 1
        tree.stop()
    run(scenario())


def test_stored_garbage_rate_reads_as_zero(store):
    async def scenario():
        team_id = await store.add("teams", {"name": "A"})
        await store.add(items_path(team_id), {"name": "Rota", "payRate": "abc", "teamId": team_id})
        agg = AggregateStore()
        tree = SubscriptionTree(store, agg, ErrorChannel())
        tree.start()
        await store.drain()
        assert not tree.loading
        assert [(i.name, i.pay_rate) for i in agg.team_items(team_id)] == [("Rota", 0.0)]
        tree.stop()
    run(scenario())


def test_loading_waits_for_every_production_listener(store):
    async def scenario():
        team_id = await store.add("teams", {"name": "A"})
        await store.add(items_path(team_id), {"name": "Blanca", "payRate": 13, "teamId": team_id})
        emp_id = await store.add(employees_path(team_id), {"name": "Maria", "teamId": team_id})
        agg = AggregateStore()
        tree = SubscriptionTree(store, agg, ErrorChannel())
        tree.start()

        # each sleep(0) runs one loop turn, i.e. one level of the tree
        await asyncio.sleep(0)
        branch = tree.branches[team_id]
        assert tree.loading and not branch.items_ready

        await asyncio.sleep(0)
        assert branch.items_ready and branch.employees_ready
        assert emp_id in branch.employee_subs and emp_id not in branch.production_ready
        assert tree.loading

        await asyncio.sleep(0)
        assert emp_id in branch.production_ready
        assert not tree.loading
        tree.stop()
    run(scenario())
