"""
Sales Service — エラー定義

分類:
  入力エラー       : InvalidLineItem, InvalidDateRange  (変更前に検出)
  ドメインエラー   : CustomerNotFound, OrderRejected     (トランザクション内で検出)
  インフラエラー   : TransactionAborted, StoreUnavailable (自動リトライしない)

どのエラーも呼び出し側が再問い合わせせずに対処できるだけの
コンテキスト(ID・フィールド・行番号)を持つ。
"""

from .models import StockIssue


class SalesServiceError(Exception):
    code = "sales_service_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class CustomerNotFound(SalesServiceError):
    code = "customer_not_found"

    def __init__(self, customer_id: str) -> None:
        super().__init__(f"Customer not found: {customer_id}")
        self.customer_id = customer_id

    def to_dict(self) -> dict:
        return {**super().to_dict(), "customer_id": self.customer_id}


class InvalidLineItem(SalesServiceError):
    code = "invalid_line_item"

    def __init__(self, line_index: int | None, reason: str) -> None:
        where = "order" if line_index is None else f"line {line_index}"
        super().__init__(f"Invalid line item ({where}): {reason}")
        self.line_index = line_index
        self.reason = reason

    def to_dict(self) -> dict:
        return {**super().to_dict(), "line_index": self.line_index, "reason": self.reason}


class OrderRejected(SalesServiceError):
    """在庫問題で注文全体を中止した。issues に全行分の問題が入る。"""

    code = "order_rejected"

    def __init__(self, issues: list[StockIssue]) -> None:
        summary = ", ".join(issue.describe() for issue in issues)
        super().__init__(f"Order failed due to inventory issues: {summary}")
        self.issues = issues

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "issues": [issue.model_dump() for issue in self.issues],
        }


class InvalidDateRange(SalesServiceError):
    code = "invalid_date_range"

    def __init__(self, field: str, value: str) -> None:
        super().__init__(
            f"Invalid {field}: {value!r}. Use ISO format (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ)"
        )
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field": self.field, "value": self.value}


class StoreUnavailable(SalesServiceError):
    code = "store_unavailable"


class TransactionAborted(StoreUnavailable):
    """ストアがトランザクションを完了できなかった（ロック待ちタイムアウト・接続断など）。

    変更はすべてロールバック済みなので、呼び出し側は注文全体を再実行してよい。
    """

    code = "transaction_aborted"
