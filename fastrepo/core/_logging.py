"""FastRepo 로거 설정."""
import logging
import os
from typing import Union

from uvicorn.logging import DefaultFormatter

LOG_LEVEL_ENV = "FASTREPO_LOG_LEVEL"


def get_logger(name: str, log_level: Union[int, str, None] = None) -> logging.Logger:
    """``uvicorn`` 과 같은 형식으로 출력하는 모듈 로거를 리턴합니다.

    로그 레벨은 ``log_level`` 인자, ``FASTREPO_LOG_LEVEL`` 환경변수, ``INFO``
    순서로 정해집니다.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        level = log_level or os.environ.get(LOG_LEVEL_ENV, "INFO")
        logger.setLevel(level.upper() if isinstance(level, str) else level)
        handler = logging.StreamHandler()
        handler.setFormatter(DefaultFormatter(fmt="%(levelprefix)s %(name)s: %(message)s"))
        logger.addHandler(handler)

    return logger
