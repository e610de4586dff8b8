class FastRepoError(Exception):
    """``FastRepo`` 와 관련된 모든 에러의 기본 클래스."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    ...


class TransactionError(FastRepoError):
    """트랜잭션 상태와 맞지 않는 작업을 요청했을 때 발생하는 에러.

    활성 트랜잭션 없이 커밋/롤백/세이브포인트 작업을 하거나, 트랜잭션이
    진행중일 때 ``force`` 없이 새 트랜잭션을 시작하려 할 때 발생합니다.
    """

    ...


class EntityNotFoundError(FastRepoError, ValueError):
    """필터 조건에 해당하는 엔티티를 찾지 못했을 때 발생하는 에러."""

    def __init__(self, entity_name: str, param_name: str):
        super().__init__(f"{entity_name} not found (parameter: {param_name})")
        self.entity_name = entity_name
        self.param_name = param_name


class ConfigurationError(FastRepoError, ValueError):
    """레포지터리 패턴 등록 설정이 잘못되었을 때 발생하는 에러."""

    ...
