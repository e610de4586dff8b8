"""도메인 모델."""

from __future__ import annotations

from typing import Optional


class Warehouse:
    """주문선의 상품이 출고되는 창고."""

    def __init__(self, id: int, name: str):  # pylint: disable=redefined-builtin
        self.id = id  # pylint: disable=invalid-name
        self.name = name

    def __repr__(self) -> str:
        return f"<Warehouse {self.id}:{self.name}>"


class OrderLine:
    """주문(:class:`Order`)에 대한 여러 주문선을 나타냅니다."""

    def __init__(
        self,
        id: int,  # pylint: disable=redefined-builtin
        sku: str,
        qty: int,
        warehouse: Optional[Warehouse] = None,
    ):
        self.id = id  # pylint: disable=invalid-name
        self.sku = sku
        self.qty = qty
        self.warehouse = warehouse

    def __repr__(self) -> str:
        return f"<OrderLine {self.id}:{self.sku}x{self.qty}>"


class Order:
    """고객이 발주하는 주문(Order) 모델입니다."""

    def __init__(
        self,
        id: int,  # pylint: disable=redefined-builtin
        name: str,
        description: Optional[str] = None,
        lines: Optional[list[OrderLine]] = None,
    ):
        self.id = id  # pylint: disable=invalid-name
        self.name = name
        self.description = description
        self.lines = lines or []

    def __repr__(self) -> str:
        return f"<Order {self.id}:{self.name}>"
