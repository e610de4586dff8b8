"""UnitOfWork 패턴 모듈.

SqlAlchemy를 이용한 기본 구현체를 제공합니다.

Example: ::

    with SqlAlchemyUnitOfWork(get_session) as uow:
        uow.begin_transaction()
        uow[Order].add_one(Order(1, "A"), save=True)
        uow.create_savepoint("before_lines")
        ...
        uow.commit()
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSessionTransaction
from sqlalchemy.orm import SessionTransaction

from fastrepo.config import get_config
from fastrepo.context import AsyncDataContext, DataContext
from fastrepo.core import (
    AbstractAsyncRepository,
    AbstractAsyncTransaction,
    AbstractAsyncUnitOfWork,
    AbstractRepository,
    AbstractTransaction,
    AbstractUnitOfWork,
    TransactionError,
    get_logger,
)
from fastrepo.orm import (
    AsyncSessionMaker,
    SessionMaker,
    get_async_sessionmaker,
    get_sessionmaker,
)
from fastrepo.repo import AsyncSqlAlchemyRepository, SqlAlchemyRepository

RepoMakerFunc = Callable[[DataContext], AbstractRepository]
RepoMakerDict = dict[Type[Any], RepoMakerFunc]
AsyncRepoMakerFunc = Callable[[AsyncDataContext], AbstractAsyncRepository]
AsyncRepoMakerDict = dict[Type[Any], AsyncRepoMakerFunc]


logger = get_logger("fastrepo.uow")


def pop_savepoints(savepoints: dict[str, Any], name: str) -> Any:
    """``name`` 세이브포인트와 그 뒤에 만들어진 세이브포인트들을 꺼냅니다."""
    if name not in savepoints:
        raise TransactionError(f"Save point '{name}' does not exist.")
    names = list(savepoints)
    for later in names[names.index(name) + 1 :]:
        del savepoints[later]
    return savepoints.pop(name)


def check_new_savepoint(transaction: Any, name: str) -> None:
    if not transaction.supports_savepoints:
        raise TransactionError("The underlying store does not support save points.")
    if name in transaction.savepoints:
        raise TransactionError(f"Save point '{name}' already exists.")


class SqlAlchemyTransaction(AbstractTransaction):
    """:class:`~sqlalchemy.orm.SessionTransaction` 을 감싸는 트랜잭션 핸들.

    이름 있는 세이브포인트는 ``begin_nested()`` 로 만든 중첩 트랜잭션이며 생성
    순서대로 보관합니다.
    """

    def __init__(self, context: DataContext, transaction: SessionTransaction):
        self.context = context
        self.transaction = transaction
        self.supports_savepoints = context.supports_savepoints
        self.savepoints: dict[str, SessionTransaction] = {}

    def __repr__(self) -> str:
        return f"SqlAlchemyTransaction[{', '.join(self.savepoints)}]"

    @property
    def is_active(self) -> bool:
        return self.transaction.is_active

    def commit(self) -> None:
        self.savepoints.clear()
        self.transaction.commit()

    def rollback(self) -> None:
        self.savepoints.clear()
        self.transaction.rollback()

    def create_savepoint(self, name: str) -> None:
        check_new_savepoint(self, name)
        self.savepoints[name] = self.context.session.begin_nested()
        logger.debug("save point created: %s", name)

    def rollback_to_savepoint(self, name: str) -> None:
        pop_savepoints(self.savepoints, name).rollback()
        logger.debug("rolled back to save point: %s", name)

    def release_savepoint(self, name: str) -> None:
        pop_savepoints(self.savepoints, name).commit()
        logger.debug("save point released: %s", name)

    def close(self) -> None:
        self.savepoints.clear()
        if self.transaction.is_active:
            self.transaction.rollback()


class AsyncSqlAlchemyTransaction(AbstractAsyncTransaction):
    """:class:`SqlAlchemyTransaction` 의 비동기 버전."""

    def __init__(self, context: AsyncDataContext, transaction: AsyncSessionTransaction):
        self.context = context
        self.transaction = transaction
        self.supports_savepoints = context.supports_savepoints
        self.savepoints: dict[str, AsyncSessionTransaction] = {}

    def __repr__(self) -> str:
        return f"AsyncSqlAlchemyTransaction[{', '.join(self.savepoints)}]"

    @property
    def is_active(self) -> bool:
        return self.transaction.is_active

    async def commit(self) -> None:
        self.savepoints.clear()
        await self.transaction.commit()

    async def rollback(self) -> None:
        self.savepoints.clear()
        await self.transaction.rollback()

    async def create_savepoint(self, name: str) -> None:
        check_new_savepoint(self, name)
        self.savepoints[name] = await self.context.session.begin_nested()
        logger.debug("save point created: %s", name)

    async def rollback_to_savepoint(self, name: str) -> None:
        await pop_savepoints(self.savepoints, name).rollback()
        logger.debug("rolled back to save point: %s", name)

    async def release_savepoint(self, name: str) -> None:
        await pop_savepoints(self.savepoints, name).commit()
        logger.debug("save point released: %s", name)

    async def close(self) -> None:
        self.savepoints.clear()
        if self.transaction.is_active:
            await self.transaction.rollback()


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """``SqlAlchemy`` ORM을 이용한 UnitOfWork 패턴 구현입니다.

    Args:
        get_session: 세션 팩토리. 없으면 :func:`fastrepo.orm.get_sessionmaker` 의
            기본 팩토리를 사용합니다.
        repo_maker: 엔티티 클래스별 레포지터리 팩토리. 등록되지 않은 엔티티는
            ``repository_class`` 로 만듭니다.
        repository_class: 기본 레포지터리 클래스.
        supports_savepoints: 저장소가 세이브포인트를 지원하는지 여부. 없으면
            설정(:func:`fastrepo.config.get_config`)의 ``savepoints`` 값을 따릅니다.
        context: 이미 만들어진 데이터 컨텍스트. 주어지면 ``get_session`` 은
            무시됩니다.
    """

    def __init__(
        self,
        get_session: Optional[SessionMaker] = None,
        repo_maker: Optional[RepoMakerDict] = None,
        repository_class: Type[AbstractRepository] = SqlAlchemyRepository,
        supports_savepoints: Optional[bool] = None,
        context: Optional[DataContext] = None,
    ) -> None:
        """``SqlAlchemy`` 기반의 UoW를 초기화합니다."""
        super().__init__()
        self.repo_maker = repo_maker or {}
        self.repository_class = repository_class

        if context is None:
            if supports_savepoints is None:
                supports_savepoints = get_config().savepoints
            session = (get_session or get_sessionmaker())()
            context = DataContext(session, supports_savepoints)
        self.context = context

    def __repr__(self) -> str:
        return f"SqlAlchemyUnitOfWork[{self.context}]"

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        return self

    def _make_repository(self, entity_class: Type[Any]) -> AbstractRepository:
        repo_maker = self.repo_maker.get(entity_class)
        if repo_maker:
            return repo_maker(self.context)
        return self.repository_class(entity_class, self.context)

    def _begin_transaction(self) -> SqlAlchemyTransaction:
        return SqlAlchemyTransaction(self.context, self.context.begin_transaction())

    def _save(self) -> int:
        return self.context.save_changes()

    def _close(self) -> None:
        self.context.close()


class AsyncSqlAlchemyUnitOfWork(AbstractAsyncUnitOfWork):
    """``AsyncSession`` 을 이용한 :class:`SqlAlchemyUnitOfWork` 의 비동기 버전."""

    def __init__(
        self,
        get_session: Optional[AsyncSessionMaker] = None,
        repo_maker: Optional[AsyncRepoMakerDict] = None,
        repository_class: Type[AbstractAsyncRepository] = AsyncSqlAlchemyRepository,
        supports_savepoints: Optional[bool] = None,
        context: Optional[AsyncDataContext] = None,
    ) -> None:
        super().__init__()
        self.repo_maker = repo_maker or {}
        self.repository_class = repository_class

        if context is None:
            if supports_savepoints is None:
                supports_savepoints = get_config().savepoints
            session = (get_session or get_async_sessionmaker())()
            context = AsyncDataContext(session, supports_savepoints)
        self.context = context

    def __repr__(self) -> str:
        return f"AsyncSqlAlchemyUnitOfWork[{self.context}]"

    async def __aenter__(self) -> AsyncSqlAlchemyUnitOfWork:
        return self

    def _make_repository(self, entity_class: Type[Any]) -> AbstractAsyncRepository:
        repo_maker = self.repo_maker.get(entity_class)
        if repo_maker:
            return repo_maker(self.context)
        return self.repository_class(entity_class, self.context)

    async def _begin_transaction(self) -> AsyncSqlAlchemyTransaction:
        transaction = await self.context.begin_transaction()
        return AsyncSqlAlchemyTransaction(self.context, transaction)

    async def _save(self) -> int:
        return await self.context.save_changes()

    async def _close(self) -> None:
        await self.context.close()
