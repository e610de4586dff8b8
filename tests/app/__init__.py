"""테스트용 주문 관리 앱."""
