# apps/payments/api_client.py
"""
Исходящий HTTP к платёжным провайдерам.

- собирает аутентифицированный запрос (static bearer / OAuth2 client credentials)
- кэширует bearer token на (expires_in - margin) секунд в Django cache
- ретраит ТОЛЬКО транспортные ошибки (tenacity), 4xx/5xx не ретраим
- нормализует error envelope провайдера в ProviderError(code, message)
- логирует пару request/response только после redaction
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

import requests
import structlog
from django.core.cache import caches
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from apps.payments.config import PaymentsConfig, ProviderSettings
from apps.payments.errors import AuthError, ProviderError, TransportError
from core.logging import redact_payload

logger = structlog.get_logger(__name__)

TOKEN_CACHE_PREFIX = "payments:token:"


@dataclass(frozen=True)
class ApiResponse:
    status_code: int
    body: Any
    headers: Mapping[str, str] = field(default_factory=dict)


def encode_form(params: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """
    Плоское form-кодирование со скобками (metadata[order_id]=..., payment_method_types[]=card).
    None пропускаем, bool -> "true"/"false".
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, Mapping):
                    pairs.extend(encode_form(item, f"{name}[]"))
                else:
                    pairs.append((f"{name}[]", _scalar(item)))
        else:
            pairs.append((name, _scalar(value)))
    return pairs


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def extract_error(body: Any, status_code: int) -> tuple[str, str]:
    """(code, message) из тела ошибки провайдера; форматы card/wallet/OAuth."""
    if isinstance(body, Mapping):
        err = body.get("error")
        if isinstance(err, Mapping):
            return str(err.get("code") or err.get("type") or status_code), str(err.get("message") or "Provider error")
        if body.get("message"):
            details = body.get("details") or []
            code = body.get("name") or status_code
            if details and isinstance(details[0], Mapping) and details[0].get("issue"):
                code = details[0]["issue"]
            return str(code), str(body["message"])
        if body.get("error_description"):
            return str(body.get("error") or status_code), str(body["error_description"])
        if isinstance(err, str):
            return err, err
    return str(status_code), f"Provider returned HTTP {status_code}"


class ProviderApiClient:
    def __init__(
        self,
        config: PaymentsConfig,
        *,
        session: requests.Session | None = None,
        cache=None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.cache = cache if cache is not None else caches["default"]
        self.timeout = config.http_timeout
        self.max_attempts = max(1, int(config.http_max_attempts))
        self.retry_wait = config.http_retry_wait

    def request(
        self,
        provider: str,
        endpoint: str,
        method: str = "GET",
        body: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        settings = self._settings(provider)
        url = self._url(settings, endpoint)
        method = method.upper()

        req_headers = {"Accept": "application/json", **dict(settings.extra_headers), **dict(headers or {})}
        req_headers.update(self._auth_headers(settings))
        if method == "POST":
            # один ключ на все попытки: ретрай после обрыва не создаст второй платёж
            req_headers.setdefault("Idempotency-Key", idempotency_key or str(uuid.uuid4()))

        kwargs: dict[str, Any] = {"headers": req_headers, "timeout": self.timeout}
        if body is not None:
            if method == "GET":
                kwargs["params"] = encode_form(body)
            elif settings.body_format == "form":
                kwargs["data"] = encode_form(body)
            else:
                kwargs["json"] = body

        if self.config.capabilities.transaction_logs:
            logger.info(
                "provider_request",
                provider=provider,
                method=method,
                endpoint=endpoint,
                body=redact_payload(body),
            )

        response = self._send_with_retry(method, url, **kwargs)
        payload = self._decode(response)

        if self.config.capabilities.transaction_logs:
            logger.info(
                "provider_response",
                provider=provider,
                endpoint=endpoint,
                status_code=response.status_code,
                body=redact_payload(payload),
            )

        if 200 <= response.status_code < 300:
            return ApiResponse(status_code=response.status_code, body=payload, headers=dict(response.headers))

        if response.status_code == 401 and settings.auth == "oauth":
            # протухший/отозванный токен: следующий запрос возьмёт новый
            self.cache.delete(self._token_cache_key(settings.name))

        code, message = extract_error(payload, response.status_code)
        logger.warning(
            "provider_error",
            provider=provider,
            endpoint=endpoint,
            status_code=response.status_code,
            code=code,
            message=message,
        )
        raise ProviderError(code, message, status_code=response.status_code, body=payload)

    def get_access_token(self, provider: str) -> str:
        settings = self._settings(provider)
        cache_key = self._token_cache_key(settings.name)

        token = self.cache.get(cache_key)
        if token:
            return token

        if not settings.client_id or not settings.client_secret:
            raise AuthError(f"Missing OAuth credentials for provider '{provider}'.")

        try:
            response = self._send_with_retry(
                "POST",
                self._url(settings, settings.token_endpoint),
                auth=(settings.client_id, settings.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except TransportError as exc:
            raise AuthError(f"Token request failed: {exc}") from exc

        payload = self._decode(response)
        if response.status_code != 200 or not isinstance(payload, Mapping) or not payload.get("access_token"):
            _code, message = extract_error(payload, response.status_code)
            logger.error("provider_token_failed", provider=provider, status_code=response.status_code, message=message)
            raise AuthError(f"Could not obtain access token: {message}")

        token = payload["access_token"]
        ttl = int(payload.get("expires_in") or 0) - int(self.config.token_expiry_margin)
        if ttl > 0:
            self.cache.set(cache_key, token, timeout=ttl)
        logger.info("provider_token_fetched", provider=provider, cached_for=max(ttl, 0))
        return token

    def _auth_headers(self, settings: ProviderSettings) -> dict[str, str]:
        if settings.auth == "bearer":
            if not settings.secret_key:
                raise AuthError(f"Missing secret key for provider '{settings.name}'.")
            return {"Authorization": f"Bearer {settings.secret_key}"}
        if settings.auth == "oauth":
            return {"Authorization": f"Bearer {self.get_access_token(settings.name)}"}
        return {}

    def _send_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        retrying = Retrying(
            retry=retry_if_exception_type(TransportError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "provider_transport_retry",
                url=url,
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception()),
            ),
        )
        return retrying(self._send, method, url, **kwargs)

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            raise TransportError(f"Timeout calling {url}") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Transport error calling {url}: {exc.__class__.__name__}") from exc

    def _settings(self, provider: str) -> ProviderSettings:
        return self.config.provider(provider)

    @staticmethod
    def _url(settings: ProviderSettings, endpoint: str) -> str:
        return settings.base_url.rstrip("/") + "/" + endpoint.lstrip("/")

    @staticmethod
    def _token_cache_key(provider: str) -> str:
        return f"{TOKEN_CACHE_PREFIX}{provider}"

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}
