"""레포지터리 패턴 구현."""
from __future__ import annotations

from typing import Iterator, Optional, Sequence, Type, TypeVar

from fastrepo.context import AsyncDataContext, DataContext
from fastrepo.core import (
    AbstractAsyncRepository,
    AbstractRepository,
    Entity,
    Filters,
    Include,
    OrderBy,
)
from fastrepo.query import AsyncQuery, Query, compose_query

E = TypeVar("E", bound=Entity)


class SqlAlchemyRepository(AbstractRepository[E]):
    """SqlAlchemy ORM을 저장소로 하는 :class:`AbstractRepository` 구현입니다.

    레포지터리는 데이터 컨텍스트를 빌려 쓸 뿐이며 닫지 않습니다. 컨텍스트의
    수명은 이를 소유한 UnitOfWork 가 관리합니다.
    """

    def __init__(self, entity_class: Type[E], context: DataContext):
        """임의의 엔티티 E 를 받아 E에 대한 Repository를 초기화합니다."""
        super().__init__()
        self.entity_class = entity_class
        self.context = context

    def __iter__(self) -> Iterator[E]:
        return iter(self.query())

    @property
    def session(self):
        return self.context.session

    def query(self) -> Query[E]:
        """필터 없는 기본 조회를 리턴합니다."""
        return Query(self.session, self.context.query(self.entity_class))

    def get_many(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        order_by: Optional[OrderBy] = None,
        filters: Filters = None,
    ) -> Query[E]:
        statement = compose_query(
            self.entity_class, includes, disable_tracking, order_by, filters
        )
        return Query(self.session, statement)

    def get_one(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        filters: Filters = None,
    ) -> Optional[E]:
        statement = compose_query(
            self.entity_class, includes, disable_tracking, filters=filters
        )
        return Query[E](self.session, statement).first()

    def save(self) -> int:
        return self.context.save_changes()

    def _add(self, entity: E) -> None:
        self.context.add(entity)

    def _update(self, entity: E) -> E:
        return self.context.update(entity)

    def _remove(self, entity: E) -> None:
        self.context.remove(entity)


class AsyncSqlAlchemyRepository(AbstractAsyncRepository[E]):
    """:class:`SqlAlchemyRepository` 의 비동기(``AsyncSession``) 버전입니다."""

    def __init__(self, entity_class: Type[E], context: AsyncDataContext):
        super().__init__()
        self.entity_class = entity_class
        self.context = context

    def __aiter__(self):
        return self.query().__aiter__()

    @property
    def session(self):
        return self.context.session

    def query(self) -> AsyncQuery[E]:
        return AsyncQuery(self.session, self.context.query(self.entity_class))

    def get_many(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        order_by: Optional[OrderBy] = None,
        filters: Filters = None,
    ) -> AsyncQuery[E]:
        statement = compose_query(
            self.entity_class, includes, disable_tracking, order_by, filters
        )
        return AsyncQuery(self.session, statement)

    async def get_one(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        filters: Filters = None,
    ) -> Optional[E]:
        statement = compose_query(
            self.entity_class, includes, disable_tracking, filters=filters
        )
        return await AsyncQuery[E](self.session, statement).first()

    async def save(self) -> int:
        return await self.context.save_changes()

    async def _add(self, entity: E) -> None:
        self.context.add(entity)

    async def _update(self, entity: E) -> E:
        return await self.context.update(entity)

    async def _remove(self, entity: E) -> None:
        await self.context.remove(entity)
