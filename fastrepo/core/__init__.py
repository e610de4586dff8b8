"""레포지터리/UnitOfWork 패턴의 저장소 독립적인 계약 모듈.

애플리케이션 코드는 이 모듈의 추상 인터페이스에만 의존하고, 실제 저장소 작업은
구현체(:mod:`fastrepo.repo`, :mod:`fastrepo.uow`)가 담당합니다.

- :class:`AbstractRepository` 는 엔티티 타입별 CRUD 와 조회를 제공합니다.
- :class:`AbstractUnitOfWork` 는 하나의 데이터 컨텍스트 위에서 레포지터리들을
  묶고 트랜잭션/세이브포인트를 관리합니다.
"""
from ._logging import get_logger  # noqa
from .errors import (  # noqa
    ConfigurationError,
    EntityNotFoundError,
    FastRepoError,
    TransactionError,
)
from .models import (  # noqa
    AbstractAsyncRepository,
    AbstractAsyncTransaction,
    AbstractAsyncUnitOfWork,
    AbstractRepository,
    AbstractTransaction,
    AbstractUnitOfWork,
    Entity,
    EntityState,
    Filter,
    Filters,
    Include,
    OrderBy,
    RepositoryMap,
    as_filters,
    is_batch,
)
