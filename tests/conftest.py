import asyncio
from datetime import date

import pytest

from database import init_db, make_engine, make_session_factory
from docstore import DocumentStore

# a Wednesday; the pay week runs 2026-10-12 .. 2026-10-17
TODAY = date(2026, 10, 14)

CATALOG = {
    "Corazones": [
        {"name": "Chico", "payRate": 10},
        {"name": "Mediano", "payRate": 12},
    ],
    "Hojas": [
        {"name": "Blanca", "payRate": 13},
    ],
}


def fixed_today():
    return TODAY


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    engine = make_engine("sqlite://")
    init_db(engine)
    return DocumentStore(make_session_factory(engine))


def team_id_by_name(aggregate, name):
    return next(t.id for t in aggregate.teams.values() if t.name == name)


def item_id_by_name(aggregate, name):
    return next(i.id for i in aggregate.items.values() if i.name == name)
