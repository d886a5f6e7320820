import os
from pathlib import Path
from dotenv import load_dotenv

from reconciler.errors import ConfigurationError

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

PUSHINPAY_API_URL = "https://api.pushinpay.com.br"
MERCADOPAGO_API_URL = "https://api.mercadopago.com"

# Credential env var per provider kind value
CREDENTIAL_VARS = {
    "pix": "PUSHINPAY_API_KEY",
    "pix_brasil": "MERCADOPAGO_BRASIL_ACCESS_TOKEN",
    "mercadopago": "MERCADOPAGO_ACCESS_TOKEN",
}


def env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_float(name: str, default: float) -> float:
    raw = env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def env_flag(name: str, default: bool = False) -> bool:
    raw = env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def get_credential(provider_kind: str) -> str:
    """Return the secret for a provider or raise ConfigurationError."""
    var = CREDENTIAL_VARS.get(provider_kind)
    if var is None:
        raise ConfigurationError(f"Unknown provider {provider_kind!r}", provider=provider_kind)
    value = env(var)
    if not value:
        raise ConfigurationError(f"{var} not configured", provider=provider_kind)
    return value


def credential_status() -> dict:
    return {kind: bool(env(var)) for kind, var in CREDENTIAL_VARS.items()}


def public_base_url() -> str:
    return (env("PUBLIC_BASE_URL") or "http://localhost:8000").rstrip("/")


def webhook_url(path: str) -> str:
    return f"{public_base_url()}/webhooks/{path}"


def app_url() -> str:
    return (env("APP_URL") or "http://localhost:3000").rstrip("/")


def provider_timeout() -> float:
    return env_float("PROVIDER_TIMEOUT_SECONDS", 25.0)


def poll_interval() -> float:
    return env_float("POLL_INTERVAL_SECONDS", 5.0)


def server_polling_enabled() -> bool:
    return env_flag("RECONCILER_SERVER_POLLING")
