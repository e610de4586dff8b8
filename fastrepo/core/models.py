from __future__ import annotations

import abc
import enum
from collections.abc import Iterable as IterableABC
from contextlib import AbstractAsyncContextManager, AbstractContextManager
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Generic,
    Iterable,
    Optional,
    Protocol,
    Sequence,
    Type,
    TypeVar,
    Union,
)

from fastrepo.core._logging import get_logger
from fastrepo.core.errors import EntityNotFoundError, TransactionError

logger = get_logger("fastrepo.core")


class Entity(Protocol):
    """Entity 프로토콜 명세."""

    id: Any  # 식별자로 id 라는 필드를 제공해야 합니다.


E = TypeVar("E", bound=Entity)


class EntityState(enum.Enum):
    """데이터 컨텍스트의 변경 추적기가 바라보는 엔티티 상태."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    DETACHED = "detached"


Filter = Union[Callable[[Any], Any], Any]
"""필터 조건. 저장소가 이해하는 조건식이나, 엔티티(혹은 엔티티 클래스)를 받아
조건식을 리턴하는 함수."""

Include = Any
"""함께 로딩할 연관 엔티티의 경로."""

OrderBy = Any
"""정렬 변환 함수 혹은 정렬 조건."""

Filters = Union[Filter, Sequence[Filter], None]


def is_batch(obj: Any) -> bool:
    """여러 항목을 담은 컬렉션인지 확인합니다. SQL 조건식은 컬렉션으로 보지 않습니다."""
    if getattr(obj, "is_clause_element", False) or hasattr(obj, "__clause_element__"):
        return False
    return isinstance(obj, IterableABC) and not isinstance(obj, (str, bytes))


def as_filters(filters: Filters) -> list[Filter]:
    """``None``, 단일 필터, 필터 시퀀스를 필터 리스트로 정규화합니다."""
    if filters is None:
        return []
    if is_batch(filters):
        return list(filters)
    return [filters]


class AbstractRepository(Generic[E], abc.ABC):
    """Repository 패턴의 추상 인터페이스 입니다.

    저장(``save``) 플래그 처리, 배치 작업, 엔티티/필터 구분, 삭제 대상을 못 찾았을
    때의 정책은 여기서 구현하고 실제 저장소 작업은 하위 클래스의 훅 메소드
    (``_add``, ``_update``, ``_remove``)에 맡깁니다.
    """

    entity_class: Type[E]

    def __repr__(self) -> str:
        return f"{type(self).__name__}[{self.entity_class.__name__}]"

    @abc.abstractmethod
    def get_many(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        order_by: Optional[OrderBy] = None,
        filters: Filters = None,
    ) -> Iterable[E]:
        """조건에 맞는 엔티티들을 지연 실행되는 컬렉션으로 리턴합니다.

        결과가 없어도 에러가 아니며 빈 컬렉션이 됩니다.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def get_one(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        filters: Filters = None,
    ) -> Optional[E]:
        """조건에 맞는 첫 엔티티를 리턴합니다. 못 찾을 경우 ``None`` 을 리턴합니다."""
        raise NotImplementedError

    def add_one(self, entity: E, save: bool = False) -> E:
        """엔티티 추가를 스테이징 합니다. ``save`` 가 참이면 바로 저장합니다."""
        self._add(entity)
        if save:
            self.save()
        return entity

    def add_many(self, entities: Iterable[E], save: bool = False) -> list[E]:
        items = list(entities)
        for item in items:
            self._add(item)
        if save:
            self.save()
        return items

    def update_one(self, entity: E, save: bool = False) -> E:
        """엔티티를 수정됨 상태로 표시합니다.

        저장소에 따라 세션에 연결된 다른 인스턴스가 리턴될 수 있습니다.
        """
        updated = self._update(entity)
        if save:
            self.save()
        return updated

    def update_many(self, entities: Iterable[E], save: bool = False) -> list[E]:
        updated = [self._update(item) for item in list(entities)]
        if save:
            self.save()
        return updated

    def remove_one(self, target: Union[E, Filters], save: bool = False) -> E:
        """엔티티 혹은 필터 조건에 해당하는 첫 엔티티의 삭제를 스테이징 합니다.

        Raises:
            EntityNotFoundError: 필터 조건에 해당하는 엔티티가 없을 경우.
        """
        if isinstance(target, self.entity_class):
            entity = target
        else:
            found = self.get_one(filters=target)
            if found is None:
                raise EntityNotFoundError(self.entity_class.__name__, "filters")
            entity = found

        self._remove(entity)
        if save:
            self.save()
        return entity

    def remove_many(self, target: Union[Iterable[E], Filters], save: bool = False) -> list[E]:
        """여러 엔티티의 삭제를 스테이징 합니다.

        필터 조건으로 호출했는데 해당하는 엔티티가 없으면 아무 일도 하지 않습니다.
        """
        items = list(target) if is_batch(target) else [target]
        if all(isinstance(it, self.entity_class) for it in items):
            entities = items
        else:
            entities = list(self.get_many(filters=items))

        if not entities:
            return []

        for entity in entities:
            self._remove(entity)
        if save:
            self.save()
        return entities

    @abc.abstractmethod
    def save(self) -> int:
        """스테이징된 변경사항을 저장소에 반영하고 반영된 엔티티 수를 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def _add(self, entity: E) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _update(self, entity: E) -> E:
        raise NotImplementedError

    @abc.abstractmethod
    def _remove(self, entity: E) -> None:
        raise NotImplementedError


class AbstractAsyncRepository(Generic[E], abc.ABC):
    """:class:`AbstractRepository` 의 비동기 버전입니다."""

    entity_class: Type[E]

    def __repr__(self) -> str:
        return f"{type(self).__name__}[{self.entity_class.__name__}]"

    @abc.abstractmethod
    def get_many(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        order_by: Optional[OrderBy] = None,
        filters: Filters = None,
    ) -> AsyncIterable[E]:
        """조건에 맞는 엔티티들을 지연 실행되는 비동기 컬렉션으로 리턴합니다.

        이 메소드 자체는 코루틴이 아니며, 순회(``async for``)하거나 ``all()`` 을
        await 할 때 저장소에 접근합니다.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def get_one(
        self,
        includes: Optional[Sequence[Include]] = None,
        disable_tracking: bool = False,
        filters: Filters = None,
    ) -> Optional[E]:
        raise NotImplementedError

    async def add_one(self, entity: E, save: bool = False) -> E:
        await self._add(entity)
        if save:
            await self.save()
        return entity

    async def add_many(self, entities: Iterable[E], save: bool = False) -> list[E]:
        items = list(entities)
        for item in items:
            await self._add(item)
        if save:
            await self.save()
        return items

    async def update_one(self, entity: E, save: bool = False) -> E:
        updated = await self._update(entity)
        if save:
            await self.save()
        return updated

    async def update_many(self, entities: Iterable[E], save: bool = False) -> list[E]:
        updated = [await self._update(item) for item in list(entities)]
        if save:
            await self.save()
        return updated

    async def remove_one(self, target: Union[E, Filters], save: bool = False) -> E:
        if isinstance(target, self.entity_class):
            entity = target
        else:
            found = await self.get_one(filters=target)
            if found is None:
                raise EntityNotFoundError(self.entity_class.__name__, "filters")
            entity = found

        await self._remove(entity)
        if save:
            await self.save()
        return entity

    async def remove_many(
        self, target: Union[Iterable[E], Filters], save: bool = False
    ) -> list[E]:
        items = list(target) if is_batch(target) else [target]
        if all(isinstance(it, self.entity_class) for it in items):
            entities = items
        else:
            entities = [it async for it in self.get_many(filters=items)]

        if not entities:
            return []

        for entity in entities:
            await self._remove(entity)
        if save:
            await self.save()
        return entities

    @abc.abstractmethod
    async def save(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def _add(self, entity: E) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def _update(self, entity: E) -> E:
        raise NotImplementedError

    @abc.abstractmethod
    async def _remove(self, entity: E) -> None:
        raise NotImplementedError


class AbstractTransaction(abc.ABC):
    """저장소 트랜잭션 핸들의 추상 인터페이스."""

    supports_savepoints: bool = False

    @abc.abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def create_savepoint(self, name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback_to_savepoint(self, name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def release_savepoint(self, name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:
        """핸들을 해제합니다. 커밋되지 않은 작업은 롤백됩니다."""
        raise NotImplementedError


class AbstractAsyncTransaction(abc.ABC):
    """:class:`AbstractTransaction` 의 비동기 버전."""

    supports_savepoints: bool = False

    @abc.abstractmethod
    async def commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def rollback(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_savepoint(self, name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def rollback_to_savepoint(self, name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def release_savepoint(self, name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


RepositoryMap = dict[Type[Any], Any]
"""엔티티 클래스를 키로 하는 레포지터리 캐시 타입."""


def _no_transaction(action: str) -> TransactionError:
    return TransactionError(f"Cannot {action}. No active transaction exists.")


class AbstractUnitOfWork(AbstractContextManager["AbstractUnitOfWork"]):
    """UnitOfWork 패턴의 추상 인터페이스입니다.

    하나의 데이터 컨텍스트를 소유하고, 엔티티 타입별 레포지터리를 한 번만 만들어
    캐시하며, 트랜잭션/세이브포인트 상태 머신을 관리합니다.

    상태는 ``transaction`` 이 ``None`` 인지(트랜잭션 없음) 아닌지(트랜잭션 진행중)
    로만 구분합니다. 스레드 안전하지 않으므로 인스턴스 하나는 한 호출자만
    사용해야 합니다.
    """

    repos: RepositoryMap
    transaction: Optional[AbstractTransaction] = None

    def __init__(self) -> None:
        self.repos = {}
        self.transaction = None

    def __exit__(self, *args: Any) -> None:
        """``with`` 블록에서 빠져나갈 때 트랜잭션과 컨텍스트를 정리합니다."""
        self.close()

    def __getitem__(self, key: Type[E]) -> AbstractRepository[E]:
        return self.repository(key)

    def repository(self, entity_class: Type[E]) -> AbstractRepository[E]:
        """엔티티 타입의 레포지터리를 리턴합니다. 처음 요청될 때 한 번만 생성됩니다."""
        repo = self.repos.get(entity_class)
        if repo is None:
            repo = self.repos[entity_class] = self._make_repository(entity_class)
        return repo

    @property
    def in_transaction(self) -> bool:
        return self.transaction is not None

    @property
    def supports_savepoints(self) -> bool:
        return self.transaction is not None and self.transaction.supports_savepoints

    def begin_transaction(self, force: bool = False) -> None:
        """새 트랜잭션을 시작합니다.

        Args:
            force: 진행중인 트랜잭션이 있어도 그 핸들을 버리고 새로 시작할지 여부.
                버려진 핸들은 커밋도 롤백도 하지 않으므로 그 작업의 처리는
                호출자의 몫입니다.

        Raises:
            TransactionError: 트랜잭션이 진행중인데 ``force`` 가 거짓일 경우.
        """
        if self.transaction is not None:
            if not force:
                raise TransactionError(
                    "Cannot begin transaction. A transaction is already in progress."
                )
            logger.warning("discarding an unresolved transaction of %r", self)
            self.transaction = None

        self.transaction = self._begin_transaction()
        logger.debug("transaction begun: %r", self.transaction)

    def commit(self) -> None:
        """트랜잭션을 커밋하고 핸들을 해제합니다."""
        if self.transaction is None:
            raise _no_transaction("commit")
        self.transaction.commit()
        self._dispose_transaction()

    def rollback(self) -> None:
        """트랜잭션을 롤백하고 핸들을 해제합니다."""
        if self.transaction is None:
            raise _no_transaction("roll back")
        self.transaction.rollback()
        self._dispose_transaction()

    def create_savepoint(self, name: str) -> None:
        if self.transaction is None:
            raise _no_transaction("create a save point")
        self.transaction.create_savepoint(name)

    def rollback_to_savepoint(self, name: str) -> None:
        """세이브포인트로 롤백한 뒤 트랜잭션 핸들을 해제합니다."""
        if self.transaction is None:
            raise _no_transaction("roll back")
        self.transaction.rollback_to_savepoint(name)
        self._dispose_transaction()

    def release_savepoint(self, name: str) -> None:
        """세이브포인트를 해제한 뒤 트랜잭션 핸들을 해제합니다."""
        if self.transaction is None:
            raise _no_transaction("release a save point")
        self.transaction.release_savepoint(name)
        self._dispose_transaction()

    def save(self) -> int:
        """스테이징된 변경사항을 저장합니다. 트랜잭션 상태와 무관하게 호출할 수 있습니다."""
        return self._save()

    def close(self) -> None:
        """진행중인 트랜잭션 핸들을 먼저 해제하고 데이터 컨텍스트를 닫습니다."""
        self._dispose_transaction()
        self._close()

    def _dispose_transaction(self) -> None:
        transaction, self.transaction = self.transaction, None
        if transaction is not None:
            transaction.close()

    @abc.abstractmethod
    def _make_repository(self, entity_class: Type[E]) -> AbstractRepository[E]:
        raise NotImplementedError

    @abc.abstractmethod
    def _begin_transaction(self) -> AbstractTransaction:
        raise NotImplementedError

    @abc.abstractmethod
    def _save(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def _close(self) -> None:
        raise NotImplementedError


class AbstractAsyncUnitOfWork(AbstractAsyncContextManager["AbstractAsyncUnitOfWork"]):
    """:class:`AbstractUnitOfWork` 의 비동기 버전입니다.

    상태 전이는 동기 버전과 같고, 저장소 왕복 구간에서만 실행이 중단될 수 있습니다.
    작업이 취소되면 :class:`asyncio.CancelledError` 가 그대로 전파되며, 이때의
    트랜잭션 상태는 신뢰할 수 없습니다.
    """

    repos: RepositoryMap
    transaction: Optional[AbstractAsyncTransaction] = None

    def __init__(self) -> None:
        self.repos = {}
        self.transaction = None

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __getitem__(self, key: Type[E]) -> AbstractAsyncRepository[E]:
        return self.repository(key)

    def repository(self, entity_class: Type[E]) -> AbstractAsyncRepository[E]:
        repo = self.repos.get(entity_class)
        if repo is None:
            repo = self.repos[entity_class] = self._make_repository(entity_class)
        return repo

    @property
    def in_transaction(self) -> bool:
        return self.transaction is not None

    @property
    def supports_savepoints(self) -> bool:
        return self.transaction is not None and self.transaction.supports_savepoints

    async def begin_transaction(self, force: bool = False) -> None:
        if self.transaction is not None:
            if not force:
                raise TransactionError(
                    "Cannot begin transaction. A transaction is already in progress."
                )
            logger.warning("discarding an unresolved transaction of %r", self)
            self.transaction = None

        self.transaction = await self._begin_transaction()
        logger.debug("transaction begun: %r", self.transaction)

    async def commit(self) -> None:
        if self.transaction is None:
            raise _no_transaction("commit")
        await self.transaction.commit()
        await self._dispose_transaction()

    async def rollback(self) -> None:
        if self.transaction is None:
            raise _no_transaction("roll back")
        await self.transaction.rollback()
        await self._dispose_transaction()

    async def create_savepoint(self, name: str) -> None:
        if self.transaction is None:
            raise _no_transaction("create a save point")
        await self.transaction.create_savepoint(name)

    async def rollback_to_savepoint(self, name: str) -> None:
        if self.transaction is None:
            raise _no_transaction("roll back")
        await self.transaction.rollback_to_savepoint(name)
        await self._dispose_transaction()

    async def release_savepoint(self, name: str) -> None:
        if self.transaction is None:
            raise _no_transaction("release a save point")
        await self.transaction.release_savepoint(name)
        await self._dispose_transaction()

    async def save(self) -> int:
        return await self._save()

    async def close(self) -> None:
        await self._dispose_transaction()
        await self._close()

    async def _dispose_transaction(self) -> None:
        transaction, self.transaction = self.transaction, None
        if transaction is not None:
            await transaction.close()

    @abc.abstractmethod
    def _make_repository(self, entity_class: Type[E]) -> AbstractAsyncRepository[E]:
        raise NotImplementedError

    @abc.abstractmethod
    async def _begin_transaction(self) -> AbstractAsyncTransaction:
        raise NotImplementedError

    @abc.abstractmethod
    async def _save(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def _close(self) -> None:
        raise NotImplementedError
