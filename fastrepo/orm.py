"""ORM 어댑터 모듈"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Optional, Type, cast

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import clear_mappers as _clear_mappers
from sqlalchemy.orm import registry, sessionmaker
from sqlalchemy.orm.session import Session
from sqlalchemy.pool import Pool

from fastrepo.config import FastRepo, get_config
from fastrepo.core import ConfigurationError, get_logger

SessionMaker = Callable[[], Session]
"""Session 팩토리 타입."""
AsyncSessionMaker = Callable[[], AsyncSession]
"""AsyncSession 팩토리 타입."""
MapperHook = Callable[[registry], Any]
"""도메인 클래스를 매핑하는 사용자 함수 타입."""

mapper_registry: Optional[registry] = None

_get_session: Optional[SessionMaker] = None  # pylint: disable=invalid-name
_get_async_session: Optional[AsyncSessionMaker] = None  # pylint: disable=invalid-name

logger = get_logger("fastrepo.orm")


def start_mappers(
    use_exist: bool = True, init_hooks: Optional[list[MapperHook]] = None
) -> MetaData:
    """도메인 객체들을 SqlAlchemy ORM 매퍼에 등록합니다.

    각 훅은 :class:`~sqlalchemy.orm.registry` 를 받아 ``map_imperatively`` 로
    도메인 클래스를 매핑합니다. ::

        def init_mappers(reg: registry):
            orders = Table("orders", reg.metadata, ...)
            reg.map_imperatively(Order, orders)

        metadata = start_mappers(init_hooks=[init_mappers])
    """
    global mapper_registry  # pylint: disable=global-statement,invalid-name
    if use_exist and mapper_registry:
        return mapper_registry.metadata

    mapper_registry = registry()

    # 사용자 매핑 함수 추가.
    if init_hooks:
        for hook in init_hooks:
            hook(mapper_registry)

    return mapper_registry.metadata


def clear_mappers() -> None:
    """ORM 매핑을 초기화 합니다."""
    global mapper_registry  # pylint: disable=global-statement,invalid-name
    _clear_mappers()
    mapper_registry = None


def enable_sqlite_savepoints(engine: Engine) -> None:
    """SQLite 드라이버의 자체 트랜잭션 관리를 끄고 ``BEGIN`` 을 직접 보냅니다.

    pysqlite/aiosqlite 는 기본 설정에서 ``SAVEPOINT`` 가 제대로 동작하지 않습니다.
    비동기 엔진은 ``engine.sync_engine`` 을 넘겨야 합니다.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def _engine_kwargs(
    connect_args: Optional[dict[str, Any]],
    poolclass: Optional[Type[Pool]],
    show_log: bool,
    isolation_level: Optional[str],
) -> dict[str, Any]:
    kwargs: dict[str, Any] = dict(connect_args=connect_args or {}, echo=show_log)
    if poolclass:
        kwargs["poolclass"] = poolclass
    if isolation_level:
        kwargs["isolation_level"] = isolation_level
    return kwargs


def init_engine(
    meta: MetaData,
    url: str,
    connect_args: Optional[dict[str, Any]] = None,
    poolclass: Optional[Type[Pool]] = None,
    show_log: bool = False,
    isolation_level: Optional[str] = None,
    drop_all: bool = False,
) -> Engine:
    """ORM Engine을 초기화 하고 매핑된 테이블들을 생성합니다."""
    engine = create_engine(
        url, **_engine_kwargs(connect_args, poolclass, show_log, isolation_level)
    )
    if engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine)

    if drop_all:
        meta.drop_all(engine)
    meta.create_all(engine)

    logger.debug("engine initialized: %s", engine.url)
    return engine


async def init_async_engine(
    meta: MetaData,
    url: str,
    connect_args: Optional[dict[str, Any]] = None,
    poolclass: Optional[Type[Pool]] = None,
    show_log: bool = False,
    isolation_level: Optional[str] = None,
    drop_all: bool = False,
) -> AsyncEngine:
    """:func:`init_engine` 의 비동기 버전. ``sqlite+aiosqlite://`` 등의 URL 을 받습니다."""
    engine = create_async_engine(
        url, **_engine_kwargs(connect_args, poolclass, show_log, isolation_level)
    )
    if engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine.sync_engine)

    async with engine.begin() as conn:
        if drop_all:
            await conn.run_sync(meta.drop_all)
        await conn.run_sync(meta.create_all)

    logger.debug("async engine initialized: %s", engine.url)
    return engine


def init_db(
    db_url: Optional[str] = None,
    drop_all: bool = False,
    show_log: bool = False,
    init_hooks: Optional[list[MapperHook]] = None,
    config: Optional[FastRepo] = None,
) -> SessionMaker:
    """DB 엔진을 초기화하고 기본 세션 팩토리로 등록합니다."""
    global _get_session

    config = config or FastRepo()
    if db_url:
        config = replace(config, db_url=db_url)
    metadata = start_mappers(init_hooks=init_hooks)

    engine = init_engine(
        metadata,
        config.get_db_url(),
        connect_args=config.get_db_connect_args(),
        poolclass=config.get_db_poolclass(),
        drop_all=drop_all,
        show_log=show_log or config.echo,
    )
    _get_session = cast(
        SessionMaker, sessionmaker(engine, autoflush=False, expire_on_commit=False)
    )
    return _get_session


async def init_async_db(
    db_url: Optional[str] = None,
    drop_all: bool = False,
    show_log: bool = False,
    init_hooks: Optional[list[MapperHook]] = None,
    config: Optional[FastRepo] = None,
) -> AsyncSessionMaker:
    """:func:`init_db` 의 비동기 버전."""
    global _get_async_session

    config = config or FastRepo()
    if db_url:
        config = replace(config, db_url=db_url)
    metadata = start_mappers(init_hooks=init_hooks)

    engine = await init_async_engine(
        metadata,
        config.get_db_url(),
        connect_args=config.get_db_connect_args(),
        poolclass=config.get_db_poolclass(),
        drop_all=drop_all,
        show_log=show_log or config.echo,
    )
    _get_async_session = cast(
        AsyncSessionMaker,
        async_sessionmaker(engine, autoflush=False, expire_on_commit=False),
    )
    return _get_async_session


def set_default_sessionmaker(
    get_session: Optional[SessionMaker] = None,
    get_async_session: Optional[AsyncSessionMaker] = None,
) -> None:
    """기본 세션 팩토리를 지정합니다. ``None`` 을 넘기면 초기화됩니다."""
    global _get_session, _get_async_session
    _get_session = get_session
    _get_async_session = get_async_session


def get_sessionmaker() -> SessionMaker:
    """기본 SqlAlchemy Session 팩토리를 리턴합니다.

    등록된 팩토리가 없으면 현재 설정(:func:`fastrepo.config.get_config`)으로
    DB 를 초기화합니다.
    """
    if not _get_session:
        return init_db(config=get_config())
    return _get_session


def get_async_sessionmaker() -> AsyncSessionMaker:
    """기본 AsyncSession 팩토리를 리턴합니다.

    비동기 초기화는 :func:`init_async_db` 를 먼저 await 해야 합니다.
    """
    if not _get_async_session:
        raise ConfigurationError(
            "Async session factory is not initialized. Call init_async_db()."
        )
    return _get_async_session
