"""FastRepo - SqlAlchemy 기반 레포지터리/UnitOfWork 패턴 라이브러리."""
from fastrepo.config import FastRepo  # noqa
from fastrepo.context import AsyncDataContext, DataContext  # noqa
from fastrepo.core import (  # noqa
    AbstractAsyncRepository,
    AbstractAsyncUnitOfWork,
    AbstractRepository,
    AbstractUnitOfWork,
    ConfigurationError,
    EntityNotFoundError,
    EntityState,
    FastRepoError,
    TransactionError,
)
from fastrepo.orm import init_async_db, init_db, start_mappers  # noqa
from fastrepo.query import AsyncQuery, Query  # noqa
from fastrepo.registry import (  # noqa
    Lifetime,
    RepositoryPatternBuilder,
    ServiceProvider,
    add_repository_pattern,
)
from fastrepo.repo import AsyncSqlAlchemyRepository, SqlAlchemyRepository  # noqa
from fastrepo.uow import AsyncSqlAlchemyUnitOfWork, SqlAlchemyUnitOfWork  # noqa
