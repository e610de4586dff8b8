"""Fake 구현체로 레포지터리/UnitOfWork 계약을 검증합니다."""
from __future__ import annotations

import pytest

from fastrepo.core import EntityNotFoundError, EntityState, TransactionError
from fastrepo.test.unit import FakeRepository, FakeTransaction, FakeUnitOfWork
from tests.app.domain.models import Order, Warehouse


def abc_orders() -> list[Order]:
    return [Order(1, "A"), Order(2, "B"), Order(3, "C")]


def names(orders) -> list[str]:
    return [it.name for it in orders]


def test_get_many_filters_then_orders() -> None:
    uow = FakeUnitOfWork(abc_orders())

    assert names(uow[Order].get_many(filters=[lambda e: e.id > 1])) == ["B", "C"]
    assert names(
        uow[Order].get_many(
            filters=[lambda e: e.id > 1],
            order_by=lambda items: sorted(items, key=lambda e: e.id, reverse=True),
        )
    ) == ["C", "B"]
    assert names(uow[Order].get_many(filters=lambda e: e.id > 100)) == []


def test_get_many_reads_store_when_enumerated() -> None:
    uow = FakeUnitOfWork()
    orders = uow[Order].get_many()

    uow[Order].add_many(abc_orders(), save=True)
    assert names(orders) == ["A", "B", "C"]


def test_get_one() -> None:
    uow = FakeUnitOfWork(abc_orders())

    assert uow[Order].get_one(filters=lambda e: e.id > 1).name == "B"
    assert uow[Order].get_one(filters=lambda e: e.id > 100) is None


def test_repository_cache() -> None:
    uow = FakeUnitOfWork()

    assert uow[Order] is uow.repository(Order)
    assert uow[Order] is not uow[Warehouse]
    assert isinstance(uow[Warehouse], FakeRepository)


def test_add_is_staged_until_save() -> None:
    uow = FakeUnitOfWork()
    order = uow[Order].add_one(Order(1, "A"))

    assert uow.context.entry_state(order) is EntityState.ADDED
    assert list(uow[Order]) == []

    assert uow.save() == 1
    assert uow.context.entry_state(order) is EntityState.UNCHANGED
    assert list(uow[Order]) == [order]
    assert uow.save() == 0


def test_update_and_remove() -> None:
    uow = FakeUnitOfWork(abc_orders())

    updated = uow[Order].update_one(Order(1, "Z"))
    assert uow.context.entry_state(updated) is EntityState.MODIFIED
    assert uow[Order].save() == 1

    removed = uow[Order].remove_one(lambda e: e.id == 2, save=True)
    assert removed.name == "B"
    assert names(uow[Order]) == ["Z", "C"]
    assert uow.context.entry_state(removed) is EntityState.DETACHED


def test_remove_not_found_policies() -> None:
    uow = FakeUnitOfWork(abc_orders())

    with pytest.raises(EntityNotFoundError, match="Order not found"):
        uow[Order].remove_one(lambda e: e.id == 100)

    assert uow[Order].remove_many(lambda e: e.id == 100, save=True) == []
    assert uow.context.pending_count() == 0

    assert len(uow[Order].remove_many([lambda e: e.id > 1], save=True)) == 2
    assert names(uow[Order]) == ["A"]


def test_commit_and_rollback() -> None:
    with FakeUnitOfWork() as uow:
        uow.begin_transaction()
        transaction = uow.transaction
        uow[Order].add_one(Order(1, "A"), save=True)
        uow.commit()

        assert uow.committed
        assert transaction.committed and transaction.closed
        assert not uow.in_transaction

        uow.begin_transaction()
        uow[Order].add_one(Order(2, "B"), save=True)
        uow.rollback()

        assert names(uow[Order]) == ["A"]


def test_close_rolls_back_unresolved_transaction() -> None:
    uow = FakeUnitOfWork()
    with uow:
        uow.begin_transaction()
        transaction = uow.transaction
        uow[Order].add_one(Order(1, "A"), save=True)

    assert transaction.rolled_back
    assert uow.context.closed
    assert not uow.in_transaction
    assert list(uow[Order]) == []


def test_begin_transaction_twice() -> None:
    uow = FakeUnitOfWork()
    uow.begin_transaction()
    first = uow.transaction

    with pytest.raises(TransactionError, match="already in progress"):
        uow.begin_transaction()
    assert uow.transaction is first

    uow.begin_transaction(force=True)
    assert isinstance(uow.transaction, FakeTransaction)
    assert uow.transaction is not first
    assert not (first.rolled_back or first.committed or first.closed)


@pytest.mark.parametrize(
    "action, message",
    [
        ("commit", "Cannot commit."),
        ("rollback", "Cannot roll back."),
        ("create_savepoint", "Cannot create a save point."),
        ("rollback_to_savepoint", "Cannot roll back."),
        ("release_savepoint", "Cannot release a save point."),
    ],
)
def test_operations_without_transaction(action: str, message: str) -> None:
    uow = FakeUnitOfWork()
    args = ("sp",) if "savepoint" in action else ()

    with pytest.raises(TransactionError) as excinfo:
        getattr(uow, action)(*args)

    assert excinfo.value.message == f"{message} No active transaction exists."
    assert not uow.committed


def test_savepoints_on_transaction() -> None:
    uow = FakeUnitOfWork()
    uow.begin_transaction()
    transaction = uow.transaction

    uow[Order].add_one(Order(1, "A"), save=True)
    uow.create_savepoint("a")
    uow[Order].add_one(Order(2, "B"), save=True)
    uow.create_savepoint("b")
    uow[Order].add_one(Order(3, "C"), save=True)

    transaction.rollback_to_savepoint("a")
    assert names(uow[Order]) == ["A"]
    assert transaction.savepoints == {}

    with pytest.raises(TransactionError, match="'b' does not exist"):
        transaction.release_savepoint("b")

    uow.commit()
    assert names(uow[Order]) == ["A"]


def test_savepoint_operations_on_uow_end_transaction() -> None:
    uow = FakeUnitOfWork()
    uow.begin_transaction()
    uow.create_savepoint("sp")
    uow.release_savepoint("sp")
    assert not uow.in_transaction

    uow.begin_transaction()
    uow[Order].add_one(Order(1, "A"), save=True)
    uow.create_savepoint("sp")
    uow.rollback_to_savepoint("sp")
    assert not uow.in_transaction
    assert list(uow[Order]) == []


def test_savepoint_errors() -> None:
    uow = FakeUnitOfWork()
    uow.begin_transaction()
    uow.create_savepoint("sp")

    with pytest.raises(TransactionError, match="already exists"):
        uow.create_savepoint("sp")
    with pytest.raises(TransactionError, match="does not exist"):
        uow.rollback_to_savepoint("nope")
    assert uow.in_transaction

    uow = FakeUnitOfWork(supports_savepoints=False)
    assert not uow.supports_savepoints
    uow.begin_transaction()
    assert not uow.supports_savepoints
    with pytest.raises(TransactionError, match="does not support save points"):
        uow.create_savepoint("sp")


class OrderRepository(FakeRepository[Order]):
    def get_by_name(self, name: str):
        return self.get_one(filters=lambda e: e.name == name)


def test_repo_maker() -> None:
    uow = FakeUnitOfWork(
        abc_orders(), repo_maker={Order: lambda ctx: OrderRepository(Order, ctx)}
    )

    assert uow[Order].get_by_name("B").id == 2
