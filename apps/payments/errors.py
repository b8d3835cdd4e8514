# apps/payments/errors.py
from __future__ import annotations


class PaymentsError(Exception):
    """База для всех ошибок платёжного контура."""


class ApiError(PaymentsError):
    """Ошибка исходящего HTTP-вызова к провайдеру (ProviderApiClient)."""

    retryable = False


class TransportError(ApiError):
    """Сеть/таймаут. Ретраится клиентом ограниченное число раз, потом всплывает."""

    retryable = True


class ProviderError(ApiError):
    """Авторитетный отказ провайдера (4xx/5xx с телом ошибки). Не ретраим."""

    def __init__(self, code: str, message: str, *, status_code: int | None = None, body=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class AuthError(ApiError):
    """Не удалось получить bearer token. Фатально для текущего запроса."""


class GatewayError(PaymentsError):
    """
    Ошибка уровня адаптера.
    retryable=True  -> заказ остаётся pending_payment, можно повторить на том же заказе;
    retryable=False -> отказ провайдера, заказ уходит в failed.
    """

    def __init__(self, message: str, *, retryable: bool = False, code: str = ""):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.code = code

    @classmethod
    def from_api_error(cls, exc: ApiError) -> "GatewayError":
        if isinstance(exc, ProviderError):
            return cls(exc.message, retryable=False, code=exc.code)
        if isinstance(exc, AuthError):
            return cls("Payment provider authentication failed.", retryable=False, code="auth_error")
        return cls("Payment provider is temporarily unavailable.", retryable=True, code="transport_error")


class PaymentDataInvalid(PaymentsError):
    """Кривые платёжные данные (IBAN, держатель и т.п.). Отклоняем до любого вызова провайдера."""

    def __init__(self, errors: dict[str, list[str]]):
        super().__init__("Invalid payment data.")
        self.errors = errors


class SignatureError(PaymentsError):
    """Webhook не прошёл проверку подлинности."""


class WebhookConfigurationError(SignatureError):
    """Секрет/webhook id/api key не настроен. Это ошибка конфигурации, а не bypass."""
