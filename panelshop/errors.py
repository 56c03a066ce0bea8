from __future__ import annotations


class AppError(Exception):
    code = "UNEXPECTED"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(AppError):
    code = "NOT_FOUND"

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class ValidationError(AppError):
    code = "VALIDATION_ERROR"


class InsufficientBalanceError(AppError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, message: str = "Insufficient balance") -> None:
        super().__init__(message)


class PanelError(AppError):
    code = "PANEL_ERROR"

    def __init__(self, message: str, vendor: str = "Unknown") -> None:
        super().__init__(f"Panel error ({vendor}): {message}")
        self.vendor = vendor
        self.detail = message


class PaymentError(AppError):
    code = "PAYMENT_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"Payment error: {message}")


USER_MESSAGES = {
    NotFoundError.code: "سرویس یا حساب موردنظر پیدا نشد.",
    ValidationError.code: "این محصول در حال حاضر قابل خرید نیست.",
    InsufficientBalanceError.code: "موجودی کیف پول شما کافی نیست.",
    PanelError.code: "ساخت سرویس روی سرور انجام نشد. کمی بعد دوباره تلاش کن.",
    PaymentError.code: "پرداخت انجام نشد.",
}
GENERIC_MESSAGE = "خطای غیرمنتظره رخ داد. لطفاً با پشتیبانی تماس بگیر."


def error_code(exc: BaseException) -> str:
    if isinstance(exc, AppError):
        return exc.code
    return AppError.code


def user_message(exc: BaseException) -> str:
    return USER_MESSAGES.get(error_code(exc), GENERIC_MESSAGE)
