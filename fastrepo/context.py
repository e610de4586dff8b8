"""데이터 컨텍스트 모듈.

엔티티와 저장소 사이를 중개하는 SqlAlchemy 세션 어댑터입니다. 레포지터리는 이
컨텍스트를 빌려 쓰고, UnitOfWork 가 컨텍스트를 소유합니다.
"""
from __future__ import annotations

from typing import Any, Optional, Type, TypeVar

from sqlalchemy import Select, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm import Session, SessionTransaction
from sqlalchemy.orm.attributes import flag_modified

from fastrepo.core import EntityState, get_logger

T = TypeVar("T")

logger = get_logger("fastrepo.context")


class _ChangeTracker:
    """세션의 변경 추적 정보를 :class:`EntityState` 로 보여줍니다.

    동기/비동기 세션 모두 ``new``, ``dirty``, ``deleted``, ``is_modified`` 를
    제공하므로 두 컨텍스트가 같이 사용합니다.
    """

    session: Any

    def query(self, entity_class: Type[T]) -> Select:
        return select(entity_class)

    def entry_state(self, entity: Any) -> EntityState:
        state = inspect(entity, raiseerr=False)
        if state is None:
            return EntityState.DETACHED
        if state.deleted:
            return EntityState.DELETED
        if entity not in self.session:
            return EntityState.DETACHED
        if state.pending:
            return EntityState.ADDED
        if entity in self.session.deleted:
            return EntityState.DELETED
        if self.session.is_modified(entity):
            return EntityState.MODIFIED
        return EntityState.UNCHANGED

    def pending_count(self) -> int:
        """저장시 반영될 엔티티 수."""
        session = self.session
        modified = sum(1 for it in session.dirty if session.is_modified(it))
        return len(session.new) + len(session.deleted) + modified

    @staticmethod
    def _flag_columns(entity: Any) -> None:
        # 값이 같아도 UPDATE 가 나가도록 키가 아닌 컬럼들을 수정됨으로 표시합니다.
        state = inspect(entity)
        for prop in state.mapper.column_attrs:
            if prop.key in state.dict and not any(c.primary_key for c in prop.columns):
                flag_modified(entity, prop.key)


class DataContext(_ChangeTracker):
    """SqlAlchemy :class:`~sqlalchemy.orm.Session` 을 감싸는 데이터 컨텍스트.

    스테이징된 변경사항은 :meth:`save_changes` 가 호출될 때까지 메모리에만
    남아있도록 세션의 ``autoflush`` 를 끕니다. 또 저장 후에도 로딩된 엔티티를
    그대로 읽을 수 있도록 ``expire_on_commit`` 을 끕니다.

    명시적 트랜잭션(:meth:`begin_transaction`)이 없을 때 저장하면 바로 커밋하고,
    있을 때는 flush 만 하여 커밋/롤백을 트랜잭션 소유자에게 맡깁니다.
    """

    def __init__(self, session: Session, supports_savepoints: bool = True):
        self.session = session
        self.session.autoflush = False
        self.session.expire_on_commit = False
        self.supports_savepoints = supports_savepoints
        self._transaction: Optional[SessionTransaction] = None

    def __repr__(self) -> str:
        return f"DataContext[{self.session}]"

    @property
    def current_transaction(self) -> Optional[SessionTransaction]:
        transaction = self._transaction
        if transaction is not None and transaction.is_active:
            return transaction
        return None

    def open_connection(self) -> Connection:
        """세션의 커넥션을 확보합니다. 세션 트랜잭션이 없다면 이때 시작됩니다."""
        return self.session.connection()

    def begin_transaction(self) -> SessionTransaction:
        """커넥션을 연 뒤 세션 트랜잭션을 명시적 트랜잭션으로 삼습니다.

        세션 트랜잭션이 이미 진행중이면 그 트랜잭션을 그대로 이어받습니다.
        """
        self.open_connection()
        transaction = self.session.get_transaction()
        assert transaction is not None
        self._transaction = transaction
        return transaction

    def add(self, entity: Any) -> None:
        self.session.add(entity)

    def update(self, entity: T) -> T:
        merged = self.session.merge(entity)
        self._flag_columns(merged)
        return merged

    def remove(self, entity: Any) -> None:
        if inspect(entity).transient:
            entity = self.session.merge(entity)
        self.session.delete(entity)

    def save_changes(self) -> int:
        """스테이징된 변경사항을 저장하고 반영된 엔티티 수를 리턴합니다."""
        count = self.pending_count()
        if not count:
            return 0

        self.session.flush()
        if self.current_transaction is None:
            self.session.commit()

        logger.debug("%d entries saved", count)
        return count

    def close(self) -> None:
        self._transaction = None
        self.session.close()


class AsyncDataContext(_ChangeTracker):
    """:class:`DataContext` 의 비동기 버전. :class:`AsyncSession` 을 감쌉니다."""

    def __init__(self, session: AsyncSession, supports_savepoints: bool = True):
        self.session = session
        self.session.autoflush = False
        self.session.sync_session.expire_on_commit = False
        self.supports_savepoints = supports_savepoints
        self._transaction: Optional[AsyncSessionTransaction] = None

    def __repr__(self) -> str:
        return f"AsyncDataContext[{self.session}]"

    @property
    def current_transaction(self) -> Optional[AsyncSessionTransaction]:
        transaction = self._transaction
        if transaction is not None and transaction.is_active:
            return transaction
        return None

    async def open_connection(self) -> AsyncConnection:
        return await self.session.connection()

    async def begin_transaction(self) -> AsyncSessionTransaction:
        await self.open_connection()
        transaction = self.session.get_transaction()
        assert transaction is not None
        self._transaction = transaction
        return transaction

    def add(self, entity: Any) -> None:
        self.session.add(entity)

    async def update(self, entity: T) -> T:
        merged = await self.session.merge(entity)
        self._flag_columns(merged)
        return merged

    async def remove(self, entity: Any) -> None:
        if inspect(entity).transient:
            entity = await self.session.merge(entity)
        await self.session.delete(entity)

    async def save_changes(self) -> int:
        count = self.pending_count()
        if not count:
            return 0

        await self.session.flush()
        if self.current_transaction is None:
            await self.session.commit()

        logger.debug("%d entries saved", count)
        return count

    async def close(self) -> None:
        self._transaction = None
        await self.session.close()
