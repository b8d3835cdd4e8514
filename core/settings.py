"""
Django settings for core project.

Всё, что зависит от окружения, читаем из переменных окружения один раз здесь.
Платёжная конфигурация собрана в один dict PAYMENTS и дальше превращается
в типизированный PaymentsConfig (apps/payments/config.py).
"""
import os
from datetime import timedelta
from pathlib import Path

from core.logging import build_logging_config, configure_structlog

BASE_DIR = Path(__file__).resolve().parent.parent


def env(name: str, default: str = "") -> str:
    return os.environ.get(name, default)


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = env("DJANGO_SECRET_KEY", "django-insecure-dev-only-change-me")
DEBUG = env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in env("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "rest_framework_simplejwt.token_blacklist",
    "apps.products",
    "apps.orders",
    "apps.payments",
    "apps.checkout",
    "apps.webhooks",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "core.urls"
WSGI_APPLICATION = "core.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": ["django.template.context_processors.request"]},
    },
]

if env("DB_ENGINE", "sqlite") == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "checkout"),
            "USER": env("DB_USER", "checkout"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST", "localhost"),
            "PORT": env("DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / env("DB_NAME", "db.sqlite3"),
        }
    }

# токены провайдеров живут в этом кэше (см. ProviderApiClient)
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "checkout-reconciler",
    }
}

# checkout state хранится в сессии, webhook должен уметь очистить её по ключу
SESSION_ENGINE = "django.contrib.sessions.backends.db"
CSRF_COOKIE_HTTPONLY = False

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

EMAIL_BACKEND = env("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", "shop@example.com")

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "EXCEPTION_HANDLER": "core.exceptions.exception_handler",
    "UNAUTHENTICATED_USER": "django.contrib.auth.models.AnonymousUser",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=1),
    "ROTATE_REFRESH_TOKENS": False,
    "BLACKLIST_AFTER_ROTATION": True,
}

PAYMENTS = {
    "CURRENCY": env("PAYMENTS_CURRENCY", "EUR"),
    "SHIPPING_FLAT_RATE": env("PAYMENTS_SHIPPING_FLAT_RATE", "0.00"),
    "HTTP_TIMEOUT": int(env("PAYMENTS_HTTP_TIMEOUT", "30")),
    "HTTP_MAX_ATTEMPTS": int(env("PAYMENTS_HTTP_MAX_ATTEMPTS", "3")),
    "HTTP_RETRY_WAIT": float(env("PAYMENTS_HTTP_RETRY_WAIT", "0.5")),
    "TOKEN_EXPIRY_MARGIN": 60,
    "WEBHOOK_TOLERANCE": 300,
    "PENDING_ORDER_TTL_MINUTES": int(env("PAYMENTS_PENDING_ORDER_TTL_MINUTES", "60")),
    "REFERENCE_PREFIX": env("PAYMENTS_REFERENCE_PREFIX", "REF-"),
    "MANDATE_PREFIX": env("PAYMENTS_MANDATE_PREFIX", "MNDT-"),
    "RETURN_URL": env("PAYMENTS_RETURN_URL", "http://localhost:8000/api/v1/checkout/return/"),
    "CANCEL_URL": env("PAYMENTS_CANCEL_URL", "http://localhost:8000/checkout/"),
    "THANK_YOU_URL": env("PAYMENTS_THANK_YOU_URL", "/checkout/thank-you/{order_id}/"),
    "CHECKOUT_URL": env("PAYMENTS_CHECKOUT_URL", "/checkout/"),
    "BANK_WEBHOOK_API_KEY": env("PAYMENTS_BANK_WEBHOOK_API_KEY"),
    "BANK": {
        "ACCOUNT_NAME": env("PAYMENTS_BANK_ACCOUNT_NAME", "Example Shop GmbH"),
        "IBAN": env("PAYMENTS_BANK_IBAN"),
        "BIC": env("PAYMENTS_BANK_BIC"),
        "BANK_NAME": env("PAYMENTS_BANK_NAME"),
    },
    "CAPABILITIES": {
        "card_enabled": env_bool("PAYMENTS_CARD_ENABLED", True),
        "card_sca_support": env_bool("PAYMENTS_CARD_SCA_SUPPORT", True),
        "card_automatic_payment_methods": env_bool("PAYMENTS_CARD_AUTOMATIC_PAYMENT_METHODS", False),
        "card_webhooks": env_bool("PAYMENTS_CARD_WEBHOOKS", True),
        "wallet_enabled": env_bool("PAYMENTS_WALLET_ENABLED", True),
        "wallet_webhooks": env_bool("PAYMENTS_WALLET_WEBHOOKS", True),
        "direct_debit_enabled": env_bool("PAYMENTS_DIRECT_DEBIT_ENABLED", True),
        "bank_transfer_enabled": env_bool("PAYMENTS_BANK_TRANSFER_ENABLED", True),
        "transaction_logs": env_bool("PAYMENTS_TRANSACTION_LOGS", True),
        "debug_mode": env_bool("PAYMENTS_DEBUG_MODE", False),
        # операционный риск: работает только вместе с debug_mode
        "skip_webhook_signature_verification": env_bool("PAYMENTS_SKIP_WEBHOOK_SIGNATURE_VERIFICATION", False),
    },
    "PROVIDERS": {
        "card": {
            "BASE_URL": env("PAYMENTS_CARD_BASE_URL", "https://api.stripe.com/v1/"),
            "AUTH": "bearer",
            "SECRET_KEY": env("PAYMENTS_CARD_SECRET_KEY"),
            "PUBLISHABLE_KEY": env("PAYMENTS_CARD_PUBLISHABLE_KEY"),
            "WEBHOOK_SECRET": env("PAYMENTS_CARD_WEBHOOK_SECRET"),
            "BODY_FORMAT": "form",
            "EXTRA_HEADERS": {"Stripe-Version": "2023-10-16"},
        },
        "wallet": {
            "BASE_URL": env("PAYMENTS_WALLET_BASE_URL", "https://api-m.sandbox.paypal.com/"),
            "AUTH": "oauth",
            "CLIENT_ID": env("PAYMENTS_WALLET_CLIENT_ID"),
            "CLIENT_SECRET": env("PAYMENTS_WALLET_CLIENT_SECRET"),
            "TOKEN_ENDPOINT": "v1/oauth2/token",
            "WEBHOOK_ID": env("PAYMENTS_WALLET_WEBHOOK_ID"),
            "BODY_FORMAT": "json",
        },
    },
}

LOG_LEVEL = env("LOG_LEVEL", "INFO")
LOG_FORMAT = env("LOG_FORMAT", "console" if DEBUG else "json")

LOGGING = build_logging_config(level=LOG_LEVEL, renderer=LOG_FORMAT)
configure_structlog()
