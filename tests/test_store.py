"""Tests for the entity store: units of work and compare-and-set."""

import uuid

import pytest
from sqlalchemy import select

from brokerage.core.errors import ConflictError, NotFoundError
from brokerage.db.enums import Role
from brokerage.db.models import Client, User
from brokerage.services.store import exists


def test_unit_of_work_commits(db, store):
    with store.unit_of_work():
        store.add(Client(name="Delta Air"))
    db.rollback()
    assert store.first(select(Client).where(Client.name == "Delta Air")) is not None


def test_unit_of_work_rolls_back_on_error(db, store):
    with pytest.raises(RuntimeError):
        with store.unit_of_work():
            store.add(Client(name="Delta Air"))
            store.flush()
            raise RuntimeError("boom")
    assert store.first(select(Client).where(Client.name == "Delta Air")) is None


def test_nested_unit_of_work_joins_outer(store):
    with pytest.raises(RuntimeError):
        with store.unit_of_work():
            with store.unit_of_work():
                store.add(Client(name="Inner Co"))
            store.flush()
            raise RuntimeError("outer fails")
    assert store.first(select(Client).where(Client.name == "Inner Co")) is None


def test_integrity_error_becomes_conflict(store):
    with store.unit_of_work():
        store.add(User(email="dup@brokerage-staff.com", role=Role.AGENT))
    with pytest.raises(ConflictError):
        with store.unit_of_work():
            store.add(User(email="dup@brokerage-staff.com", role=Role.AGENT))
            store.flush()


def test_compare_and_set(store):
    with store.unit_of_work():
        client = store.add(Client(name="Echo"))
        store.flush()

    with store.unit_of_work():
        assert store.compare_and_set(Client, client.id, "name", "Echo", "Echo Group") is True
        assert store.compare_and_set(Client, client.id, "name", "Echo", "Echo Ltd") is False
    assert client.name == "Echo Group"


def test_require_and_exists(store):
    with pytest.raises(NotFoundError) as exc:
        store.require(Client, uuid.uuid4(), "Client")
    assert exc.value.code == "client_not_found"
    assert store.get(Client, None) is None
    assert exists(store, select(Client)) is False
