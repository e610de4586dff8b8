"""레포지터리/UnitOfWork 구현체 등록 모듈.

애플리케이션은 사용할 구현 클래스와 수명(lifetime)을 빌더로 설정하고,
:class:`ServiceProvider` 에서 UnitOfWork 와 레포지터리를 받아 씁니다. ::

    provider = add_repository_pattern(
        lambda builder: builder.use_sqlalchemy(Lifetime.SCOPED),
        get_session,
    )

    with provider.scope() as scope:
        uow = scope.unit_of_work()
        scope.repository(Order).add_one(order, save=True)
"""
from __future__ import annotations

import enum
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncGenerator, Callable, Generator, Optional, Type

from fastrepo.core import (
    AbstractAsyncRepository,
    AbstractAsyncUnitOfWork,
    AbstractRepository,
    AbstractUnitOfWork,
    ConfigurationError,
    get_logger,
)
from fastrepo.repo import AsyncSqlAlchemyRepository, SqlAlchemyRepository
from fastrepo.uow import AsyncSqlAlchemyUnitOfWork, SqlAlchemyUnitOfWork

logger = get_logger("fastrepo.registry")


class Lifetime(enum.Enum):
    """등록된 서비스 인스턴스의 수명."""

    SINGLETON = "singleton"
    """프로바이더 하나에 인스턴스 하나."""
    SCOPED = "scoped"
    """스코프 하나에 인스턴스 하나. 스코프가 끝나면 정리됩니다."""
    TRANSIENT = "transient"
    """요청할 때마다 새 인스턴스."""


_LIFETIME_RANK = {Lifetime.TRANSIENT: 0, Lifetime.SCOPED: 1, Lifetime.SINGLETON: 2}


def _is_subclass(cls: Any, bases: tuple[type, ...]) -> bool:
    return isinstance(cls, type) and issubclass(cls, bases)


class RepositoryOptions:
    """레포지터리 구현 클래스와 수명 설정.

    Raises:
        ConfigurationError: 구현 클래스가 레포지터리 계약을 따르지 않을 경우.
    """

    def __init__(self, implementation_type: Type[Any]):
        if not _is_subclass(
            implementation_type, (AbstractRepository, AbstractAsyncRepository)
        ):
            raise ConfigurationError(
                "The provided type must be a class that implements AbstractRepository"
            )
        self.implementation_type = implementation_type
        self.lifetime = Lifetime.SCOPED

    def __repr__(self) -> str:
        return f"RepositoryOptions[{self.implementation_type.__name__}, {self.lifetime.name}]"

    @property
    def is_async(self) -> bool:
        return issubclass(self.implementation_type, AbstractAsyncRepository)

    def use_lifetime(self, lifetime: Lifetime) -> RepositoryOptions:
        self.lifetime = lifetime
        return self


class UnitOfWorkOptions:
    """UnitOfWork 구현 클래스와 수명 설정.

    구현 클래스는 ``get_session`` 과 ``repository_class`` 키워드 인자를 받아야
    합니다.

    Raises:
        ConfigurationError: 구현 클래스가 UnitOfWork 계약을 따르지 않을 경우.
    """

    def __init__(self, implementation_type: Type[Any]):
        if not _is_subclass(
            implementation_type, (AbstractUnitOfWork, AbstractAsyncUnitOfWork)
        ):
            raise ConfigurationError(
                "The provided type must be a class that implements AbstractUnitOfWork"
            )
        self.implementation_type = implementation_type
        self.lifetime = Lifetime.SCOPED

    def __repr__(self) -> str:
        return f"UnitOfWorkOptions[{self.implementation_type.__name__}, {self.lifetime.name}]"

    @property
    def is_async(self) -> bool:
        return issubclass(self.implementation_type, AbstractAsyncUnitOfWork)

    def use_lifetime(self, lifetime: Lifetime) -> UnitOfWorkOptions:
        self.lifetime = lifetime
        return self


class RepositoryPatternBuilder:
    """레포지터리와 UnitOfWork 의 구현 클래스를 설정하는 빌더."""

    def __init__(self) -> None:
        self.repository: Optional[RepositoryOptions] = None
        self.unit_of_work: Optional[UnitOfWorkOptions] = None

    def use_repository_implementation(
        self, implementation_type: Type[Any]
    ) -> RepositoryOptions:
        self.repository = RepositoryOptions(implementation_type)
        return self.repository

    def use_unit_of_work_implementation(
        self, implementation_type: Type[Any]
    ) -> UnitOfWorkOptions:
        self.unit_of_work = UnitOfWorkOptions(implementation_type)
        return self.unit_of_work

    def use_sqlalchemy(
        self,
        lifetime: Optional[Lifetime] = None,
        unit_of_work_lifetime: Optional[Lifetime] = None,
    ) -> RepositoryPatternBuilder:
        """SqlAlchemy 기본 구현체를 사용합니다.

        Args:
            lifetime: 레포지터리 수명. ``unit_of_work_lifetime`` 이 없으면
                UnitOfWork 에도 적용됩니다.
            unit_of_work_lifetime: UnitOfWork 수명.
        """
        return self._use(
            SqlAlchemyRepository, SqlAlchemyUnitOfWork, lifetime, unit_of_work_lifetime
        )

    def use_async_sqlalchemy(
        self,
        lifetime: Optional[Lifetime] = None,
        unit_of_work_lifetime: Optional[Lifetime] = None,
    ) -> RepositoryPatternBuilder:
        """:meth:`use_sqlalchemy` 의 비동기(``AsyncSession``) 버전."""
        return self._use(
            AsyncSqlAlchemyRepository,
            AsyncSqlAlchemyUnitOfWork,
            lifetime,
            unit_of_work_lifetime,
        )

    def _use(
        self,
        repository_type: Type[Any],
        unit_of_work_type: Type[Any],
        lifetime: Optional[Lifetime],
        unit_of_work_lifetime: Optional[Lifetime],
    ) -> RepositoryPatternBuilder:
        repository = self.use_repository_implementation(repository_type)
        unit_of_work = self.use_unit_of_work_implementation(unit_of_work_type)
        if lifetime:
            repository.use_lifetime(lifetime)
        if unit_of_work_lifetime or lifetime:
            unit_of_work.use_lifetime(unit_of_work_lifetime or lifetime)  # type: ignore
        return self

    def validate(self) -> None:
        """설정이 끝났는지 확인합니다.

        Raises:
            ConfigurationError: 구현 클래스가 설정되지 않았거나 동기/비동기
                구현이 섞여 있을 경우. 레포지터리가 UnitOfWork 보다 오래
                살도록 설정된 경우에도 발생합니다.
        """
        if self.repository is None:
            raise ConfigurationError("The repository options has not been configured")
        if self.unit_of_work is None:
            raise ConfigurationError("The unit of work options has not been configured")
        if self.repository.is_async != self.unit_of_work.is_async:
            raise ConfigurationError(
                "The repository and unit of work implementations must be both "
                "synchronous or both asynchronous"
            )
        repository_rank = _LIFETIME_RANK[self.repository.lifetime]
        if repository_rank > _LIFETIME_RANK[self.unit_of_work.lifetime]:
            raise ConfigurationError(
                f"A {self.repository.lifetime.name} repository cannot outlive its "
                f"{self.unit_of_work.lifetime.name} unit of work"
            )


class ServiceScope:
    """스코프 수명 서비스들의 캐시. :meth:`ServiceProvider.scope` 가 만듭니다."""

    def __init__(self, provider: ServiceProvider):
        self.provider = provider
        self.instances: dict[Any, Any] = {}

    def unit_of_work(self) -> Any:
        return self.provider._unit_of_work(self)

    def repository(self, entity_class: Type[Any]) -> Any:
        return self.provider._repository(entity_class, self)

    def close(self) -> None:
        for uow in self._owned_units_of_work():
            uow.close()
        self.instances.clear()

    async def aclose(self) -> None:
        for uow in self._owned_units_of_work():
            await uow.close()
        self.instances.clear()

    def _owned_units_of_work(self) -> list[Any]:
        return [
            it
            for it in self.instances.values()
            if isinstance(it, (AbstractUnitOfWork, AbstractAsyncUnitOfWork))
        ]


class ServiceProvider:
    """설정된 수명에 따라 UnitOfWork 와 레포지터리 인스턴스를 만들어 줍니다.

    - ``SINGLETON`` 인스턴스는 프로바이더가 보관합니다.
    - ``SCOPED`` 인스턴스는 :meth:`scope` / :meth:`async_scope` 안에서만 얻을
      수 있고, 스코프가 끝날 때 UnitOfWork 가 닫힙니다.
    - ``TRANSIENT`` 인스턴스는 매번 새로 만들며, 정리는 호출자가 합니다.
    """

    def __init__(
        self,
        builder: RepositoryPatternBuilder,
        get_session: Optional[Callable[[], Any]] = None,
    ):
        builder.validate()
        assert builder.repository and builder.unit_of_work
        self.repository_options = builder.repository
        self.unit_of_work_options = builder.unit_of_work
        self.get_session = get_session
        self._singletons: dict[Any, Any] = {}

    def __repr__(self) -> str:
        return f"ServiceProvider[{self.repository_options}, {self.unit_of_work_options}]"

    @property
    def is_async(self) -> bool:
        return self.unit_of_work_options.is_async

    def unit_of_work(self) -> Any:
        """스코프 밖에서 UnitOfWork 를 얻습니다. ``SCOPED`` 수명이면 실패합니다."""
        return self._unit_of_work(None)

    def repository(self, entity_class: Type[Any]) -> Any:
        return self._repository(entity_class, None)

    @contextmanager
    def scope(self) -> Generator[ServiceScope, None, None]:
        scope = ServiceScope(self)
        try:
            yield scope
        finally:
            scope.close()

    @asynccontextmanager
    async def async_scope(self) -> AsyncGenerator[ServiceScope, None]:
        scope = ServiceScope(self)
        try:
            yield scope
        finally:
            await scope.aclose()

    def close(self) -> None:
        """싱글톤 UnitOfWork 를 닫습니다."""
        for it in self._singletons.values():
            if isinstance(it, AbstractUnitOfWork):
                it.close()
        self._singletons.clear()

    async def aclose(self) -> None:
        for it in self._singletons.values():
            if isinstance(it, AbstractAsyncUnitOfWork):
                await it.close()
        self._singletons.clear()

    def _resolve(
        self,
        key: Any,
        lifetime: Lifetime,
        factory: Callable[[], Any],
        scope: Optional[ServiceScope],
    ) -> Any:
        if lifetime is Lifetime.TRANSIENT:
            return factory()

        if lifetime is Lifetime.SINGLETON:
            cache = self._singletons
        elif scope is None:
            raise ConfigurationError(
                f"Scoped service {key!r} cannot be resolved outside of a scope"
            )
        else:
            cache = scope.instances

        if key not in cache:
            cache[key] = factory()
            logger.debug("%s instance created: %r", lifetime.name, cache[key])
        return cache[key]

    def _unit_of_work(self, scope: Optional[ServiceScope]) -> Any:
        options = self.unit_of_work_options
        return self._resolve(
            options.implementation_type,
            options.lifetime,
            lambda: options.implementation_type(
                get_session=self.get_session,
                repository_class=self.repository_options.implementation_type,
            ),
            scope,
        )

    def _repository(self, entity_class: Type[Any], scope: Optional[ServiceScope]) -> Any:
        options = self.repository_options
        uow = self._unit_of_work(scope)
        if options.lifetime is Lifetime.SCOPED:
            factory = lambda: uow.repository(entity_class)  # noqa: E731
        else:
            factory = lambda: options.implementation_type(entity_class, uow.context)  # noqa: E731
        return self._resolve(
            (options.implementation_type, entity_class), options.lifetime, factory, scope
        )


def add_repository_pattern(
    configure: Callable[[RepositoryPatternBuilder], Any],
    get_session: Optional[Callable[[], Any]] = None,
) -> ServiceProvider:
    """빌더를 설정하고 검증한 뒤 :class:`ServiceProvider` 를 만듭니다.

    Raises:
        ConfigurationError: 설정이 완전하지 않을 경우.
    """
    builder = RepositoryPatternBuilder()
    configure(builder)
    return ServiceProvider(builder, get_session)
