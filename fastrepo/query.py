"""조회 파이프라인 모듈.

기본 ``SELECT`` 문에 다음 변환을 정해진 순서대로 적용합니다.

1. 변경 추적 옵션 (:func:`with_tracking_option`)
2. 연관 엔티티 즉시 로딩 (:func:`with_included_properties`)
3. 필터 (:func:`apply_filtering`)
4. 정렬 (:func:`apply_ordering`)

모든 단계는 :class:`~sqlalchemy.Select` 에 대한 순수 변환이며, 실제 실행은
:class:`Query` / :class:`AsyncQuery` 를 순회할 때까지 미뤄집니다.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Generic, Iterator, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.interfaces import LoaderOption

from fastrepo.core import Filters, Include, OrderBy, as_filters, is_batch

T = TypeVar("T")

NO_TRACKING_OPTION = "fastrepo_no_tracking"
"""변경 추적을 끈 조회임을 표시하는 실행 옵션 키."""


def _is_clause(obj: Any) -> bool:
    return bool(getattr(obj, "is_clause_element", False)) or hasattr(
        obj, "__clause_element__"
    )


def with_tracking_option(statement: Select, disable_tracking: bool = False) -> Select:
    """변경 추적을 끄도록 표시합니다. 표시된 조회의 결과는 세션에서 분리됩니다."""
    if not disable_tracking:
        return statement
    return statement.execution_options(**{NO_TRACKING_OPTION: True})


def include_option(entity_class: Type[Any], include: Include) -> LoaderOption:
    """include 경로를 ``selectinload`` 로더 옵션으로 바꿉니다.

    다음 형태를 모두 받습니다. ::

        "lines"                     # 속성 이름
        "lines.warehouse"           # 점으로 이어진 중첩 경로
        Order.lines                 # 매핑된 속성
        (Order.lines, Line.warehouse)
        selectinload(Order.lines)   # 이미 만들어진 로더 옵션
    """
    if isinstance(include, LoaderOption):
        return include

    if isinstance(include, str):
        path: list[Any] = include.split(".")
    elif isinstance(include, (list, tuple)):
        path = list(include)
    else:
        path = [include]

    option: Any = None
    owner = entity_class
    for step in path:
        attr = getattr(owner, step) if isinstance(step, str) else step
        option = selectinload(attr) if option is None else option.selectinload(attr)
        owner = attr.property.mapper.class_

    return option


def with_included_properties(
    statement: Select,
    entity_class: Type[Any],
    includes: Optional[Sequence[Include]] = None,
) -> Select:
    """연관 엔티티들을 함께 로딩합니다. 결과 행의 집합과 순서는 바뀌지 않습니다."""
    if not includes:
        return statement
    return statement.options(*(include_option(entity_class, it) for it in includes))


def resolve_filter(entity_class: Type[Any], condition: Any) -> Any:
    """함수 형태의 필터(``lambda e: e.id > 1``)를 SQL 조건식으로 바꿉니다."""
    if callable(condition) and not _is_clause(condition):
        return condition(entity_class)
    return condition


def apply_filtering(
    statement: Select, entity_class: Type[Any], filters: Filters = None
) -> Select:
    """필터를 순서대로 적용합니다. 각 필터는 결과를 더 좁힙니다 (AND)."""
    for condition in as_filters(filters):
        statement = statement.where(resolve_filter(entity_class, condition))
    return statement


def apply_ordering(statement: Select, order_by: Optional[OrderBy] = None) -> Select:
    """정렬 변환 함수를 적용하거나, 정렬 조건들을 ``ORDER BY`` 에 추가합니다."""
    if order_by is None:
        return statement
    if callable(order_by) and not _is_clause(order_by):
        return order_by(statement)
    clauses = list(order_by) if is_batch(order_by) else [order_by]
    return statement.order_by(*clauses)


def compose_query(
    entity_class: Type[Any],
    includes: Optional[Sequence[Include]] = None,
    disable_tracking: bool = False,
    order_by: Optional[OrderBy] = None,
    filters: Filters = None,
) -> Select:
    statement = select(entity_class)
    statement = with_tracking_option(statement, disable_tracking)
    statement = with_included_properties(statement, entity_class, includes)
    statement = apply_filtering(statement, entity_class, filters)
    return apply_ordering(statement, order_by)


def is_tracking(statement: Select) -> bool:
    return not statement.get_execution_options().get(NO_TRACKING_OPTION, False)


def _count_statement(statement: Select) -> Select:
    return select(func.count()).select_from(statement.order_by(None).subquery())


def _detach(session: Any, items: Sequence[Any], tracked: set[Any]) -> None:
    # 조회 전부터 추적중이던 엔티티는 그대로 둡니다.
    for item in items:
        if inspect(item).key not in tracked and item in session:
            session.expunge(item)


class Query(Generic[T]):
    """지연 실행되는 조회 결과.

    순회하거나 ``all()``, ``first()``, ``count()``, ``exists()`` 를 호출하기 전에는 저장소에
    접근하지 않습니다.
    """

    def __init__(self, session: Session, statement: Select):
        self.session = session
        self.statement = statement

    def __repr__(self) -> str:
        return f"Query[{self.statement}]"

    def __iter__(self) -> Iterator[T]:
        return iter(self.all())

    def all(self) -> list[T]:
        return self._execute(self.statement)

    def first(self) -> Optional[T]:
        items = self._execute(self.statement.limit(1))
        return items[0] if items else None

    def count(self) -> int:
        return self.session.scalar(_count_statement(self.statement)) or 0

    def exists(self) -> bool:
        return self.first() is not None

    def _execute(self, statement: Select) -> list[T]:
        if is_tracking(statement):
            return list(self.session.scalars(statement).all())

        tracked = set(self.session.identity_map.keys())
        items = list(self.session.scalars(statement).all())
        _detach(self.session, items, tracked)
        return items


class AsyncQuery(Generic[T]):
    """:class:`Query` 의 비동기 버전. ``async for`` 로 순회합니다."""

    def __init__(self, session: AsyncSession, statement: Select):
        self.session = session
        self.statement = statement

    def __repr__(self) -> str:
        return f"AsyncQuery[{self.statement}]"

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        for item in await self.all():
            yield item

    async def all(self) -> list[T]:
        return await self._execute(self.statement)

    async def first(self) -> Optional[T]:
        items = await self._execute(self.statement.limit(1))
        return items[0] if items else None

    async def count(self) -> int:
        return (await self.session.scalar(_count_statement(self.statement))) or 0

    async def exists(self) -> bool:
        return await self.first() is not None

    async def _execute(self, statement: Select) -> list[T]:
        if is_tracking(statement):
            return list((await self.session.scalars(statement)).all())

        tracked = set(self.session.identity_map.keys())
        items = list((await self.session.scalars(statement)).all())
        _detach(self.session, items, tracked)
        return items
