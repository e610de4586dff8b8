"""Test 헬퍼를 제공하는 모듈.

- DB 없이 쓸 수 있는 FakeUnitOfWork, FakeRepository 를 :mod:`.unit` 에서 제공합니다.
"""
