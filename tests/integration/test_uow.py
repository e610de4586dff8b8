from __future__ import annotations

import pytest

from fastrepo.config import FastRepo, set_config
from fastrepo.core import TransactionError
from fastrepo.orm import SessionMaker
from fastrepo.uow import SqlAlchemyTransaction, SqlAlchemyUnitOfWork
from tests.app.domain.models import Order
from tests.integration import fetch_orders, insert_orders


def test_uow_commits_work_done_in_transaction(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        assert uow.in_transaction
        assert isinstance(uow.transaction, SqlAlchemyTransaction)

        uow[Order].add_one(Order(1, "A"), save=True)
        uow[Order].add_many([Order(2, "B"), Order(3, "C")])
        assert uow.save() == 2

        # 커밋 전에는 다른 커넥션에서 보이지 않습니다.
        assert fetch_orders(get_session) == []

        uow.commit()
        assert not uow.in_transaction

    assert fetch_orders(get_session) == [(1, "A"), (2, "B"), (3, "C")]


def test_uow_rolls_back_work_done_in_transaction(get_session: SessionMaker) -> None:
    insert_orders(get_session, [(1, "A")])

    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow[Order].add_one(Order(2, "B"), save=True)
        uow[Order].remove_one(lambda e: e.id == 1, save=True)
        uow.rollback()
        assert not uow.in_transaction

    assert fetch_orders(get_session) == [(1, "A")]


def test_save_outside_transaction_commits_immediately(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow[Order].add_one(Order(1, "A"))
        assert uow.save() == 1
        assert not uow.in_transaction
        assert fetch_orders(get_session) == [(1, "A")]


def test_rolls_back_uncommitted_work_by_default(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow[Order].add_one(Order(1, "A"), save=True)

    # Commit 을 안한 경우 실제 DB에 데이터가 반영되지 않습니다.
    assert fetch_orders(get_session) == []


def test_rolls_back_on_error(get_session: SessionMaker) -> None:
    class MyException(Exception):
        pass

    with pytest.raises(MyException):
        with SqlAlchemyUnitOfWork(get_session) as uow:
            uow.begin_transaction()
            uow[Order].add_one(Order(1, "A"), save=True)
            raise MyException()

    assert fetch_orders(get_session) == []


def test_close_is_safe_to_repeat(get_session: SessionMaker) -> None:
    uow = SqlAlchemyUnitOfWork(get_session)
    uow.close()
    uow.close()

    uow = SqlAlchemyUnitOfWork(get_session)
    uow.begin_transaction()
    uow.close()
    assert not uow.in_transaction
    uow.close()


def test_begin_twice_fails_and_keeps_transaction(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        first = uow.transaction

        with pytest.raises(TransactionError, match="already in progress"):
            uow.begin_transaction()

        assert uow.transaction is first
        assert uow.in_transaction


def test_begin_with_force_replaces_transaction(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        first = uow.transaction
        uow[Order].add_one(Order(1, "A"), save=True)
        uow.create_savepoint("sp")

        uow.begin_transaction(force=True)
        assert uow.in_transaction
        assert uow.transaction is not first
        assert uow.transaction.savepoints == {}
        # 버려진 핸들은 커밋도 롤백도 되지 않습니다.
        assert first.is_active

        uow[Order].add_one(Order(2, "B"), save=True)
        uow.commit()

    assert fetch_orders(get_session) == [(1, "A"), (2, "B")]


def test_begin_with_force_leaves_work_to_caller(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow[Order].add_one(Order(1, "A"), save=True)

        uow.begin_transaction(force=True)
        uow[Order].add_one(Order(2, "B"), save=True)
        uow.rollback()

    assert fetch_orders(get_session) == []


@pytest.mark.parametrize(
    "action",
    ["commit", "rollback", "create_savepoint", "rollback_to_savepoint", "release_savepoint"],
)
def test_transaction_operations_require_transaction(
    get_session: SessionMaker, action: str
) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        method = getattr(uow, action)
        args = ("sp",) if "savepoint" in action else ()

        with pytest.raises(TransactionError, match="No active transaction"):
            method(*args)

        assert not uow.in_transaction


def test_supports_savepoints(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        assert not uow.supports_savepoints
        uow.begin_transaction()
        assert uow.supports_savepoints

    with SqlAlchemyUnitOfWork(get_session, supports_savepoints=False) as uow:
        uow.begin_transaction()
        assert not uow.supports_savepoints

        with pytest.raises(TransactionError, match="does not support"):
            uow.create_savepoint("sp")


def test_savepoint_support_follows_config(get_session: SessionMaker, tmp_path) -> None:
    (tmp_path / "setup.cfg").write_text("[fastrepo]\nsavepoints = false\n")
    set_config(FastRepo.load_from_config(tmp_path))

    try:
        with SqlAlchemyUnitOfWork(get_session) as uow:
            uow.begin_transaction()
            assert not uow.supports_savepoints

            with pytest.raises(TransactionError, match="does not support"):
                uow.create_savepoint("sp")

        # 생성자 인자가 설정보다 우선합니다.
        with SqlAlchemyUnitOfWork(get_session, supports_savepoints=True) as uow:
            uow.begin_transaction()
            assert uow.supports_savepoints
    finally:
        set_config(None)


def test_rollback_to_savepoint_ends_transaction(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow.create_savepoint("sp")
        assert uow.in_transaction

        uow.rollback_to_savepoint("sp")
        assert not uow.in_transaction


def test_release_savepoint_ends_transaction(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow.create_savepoint("sp")

        uow.release_savepoint("sp")
        assert not uow.in_transaction


def test_savepoint_undoes_only_later_work(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow[Order].add_one(Order(1, "A"), save=True)
        uow.create_savepoint("before_b")
        uow[Order].add_one(Order(2, "B"), save=True)

        uow.transaction.rollback_to_savepoint("before_b")
        assert uow.in_transaction

        uow[Order].add_one(Order(3, "C"), save=True)
        uow.commit()

    assert fetch_orders(get_session) == [(1, "A"), (3, "C")]


def test_releasing_savepoint_releases_later_ones(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow.create_savepoint("a")
        uow[Order].add_one(Order(1, "A"), save=True)
        uow.create_savepoint("b")
        uow[Order].add_one(Order(2, "B"), save=True)

        transaction = uow.transaction
        transaction.release_savepoint("a")
        assert transaction.savepoints == {}

        with pytest.raises(TransactionError, match="does not exist"):
            transaction.rollback_to_savepoint("b")

        uow.commit()

    assert fetch_orders(get_session) == [(1, "A"), (2, "B")]


def test_unknown_savepoint_keeps_transaction(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()

        with pytest.raises(TransactionError, match="'nope' does not exist"):
            uow.rollback_to_savepoint("nope")

        assert uow.in_transaction


def test_duplicate_savepoint_name_fails(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow.create_savepoint("sp")

        with pytest.raises(TransactionError, match="already exists"):
            uow.create_savepoint("sp")


def test_uow_uses_default_sessionmaker(get_session: SessionMaker) -> None:
    with SqlAlchemyUnitOfWork() as uow:
        uow[Order].add_one(Order(1, "A"), save=True)

    assert fetch_orders(get_session) == [(1, "A")]
