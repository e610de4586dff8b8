# pylint: disable=redefined-outer-name
"""pytest 에서 사용될 전역 Fixture들을 정의합니다."""
from __future__ import annotations

from typing import Generator

import pytest
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from fastrepo.orm import (
    AsyncSessionMaker,
    SessionMaker,
    clear_mappers,
    enable_sqlite_savepoints,
    init_db,
    set_default_sessionmaker,
    start_mappers,
)
from tests.app.adapters.orm import init_mappers


@pytest.fixture(scope="session", autouse=True)
def metadata() -> Generator[MetaData, None, None]:
    """테스트 세션 동안 도메인 모델을 한 번만 매핑합니다."""
    clear_mappers()
    yield start_mappers(use_exist=False, init_hooks=[init_mappers])
    clear_mappers()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "fastrepo.db")


@pytest.fixture
def get_session(db_path: str) -> Generator[SessionMaker, None, None]:
    """테스트마다 새 SQLite 파일 DB 를 만들고 :class:`.Session` 팩토리를 리턴합니다.

    서로 다른 커넥션에서 저장소의 실제 상태를 확인할 수 있도록 파일 DB 를
    사용합니다.
    """
    yield init_db(f"sqlite:///{db_path}")
    set_default_sessionmaker(None)


@pytest.fixture
def get_async_session(db_path: str, get_session: SessionMaker) -> AsyncSessionMaker:
    """같은 파일 DB 를 가리키는 ``AsyncSession`` 팩토리.

    테이블은 ``get_session`` 픽스쳐가 동기 엔진으로 만들어 둡니다.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    enable_sqlite_savepoints(engine.sync_engine)
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)
