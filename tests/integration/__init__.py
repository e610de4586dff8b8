from sqlalchemy import text

from fastrepo.orm import SessionMaker


def insert_order(get_session: SessionMaker, id: int, name: str) -> None:
    session = get_session()
    try:
        session.execute(
            text("INSERT INTO orders (id, name) VALUES (:id, :name)"),
            dict(id=id, name=name),
        )
        session.commit()
    finally:
        session.close()


def insert_orders(get_session: SessionMaker, rows: list[tuple[int, str]]) -> None:
    for id, name in rows:
        insert_order(get_session, id, name)


def fetch_orders(get_session: SessionMaker) -> list[tuple[int, str]]:
    """레포지터리를 거치지 않고 저장소에 실제로 저장된 주문들을 읽습니다."""
    session = get_session()
    try:
        rows = session.execute(text("SELECT id, name FROM orders ORDER BY id"))
        return [(id, name) for id, name in rows]
    finally:
        session.close()
