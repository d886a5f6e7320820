from __future__ import annotations

from dataclasses import dataclass, field

import requests
import structlog

from reconciler.config import get_credential, provider_timeout
from reconciler.errors import ConfigurationError, NotFound, ProviderUnavailable, ValidationError
from reconciler.status import ProviderKind

logger = structlog.get_logger(__name__)


@dataclass
class CreatedPayment:
    provider_reference: str
    display_payload: dict
    raw: dict | None = None


@dataclass
class StatusSnapshot:
    provider_reference: str
    raw_status: str | None
    value: int | None = None               # minor units
    payer_name: str | None = None
    end_to_end_id: str | None = None
    order_id: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class PaymentRequest:
    order_id: str
    amount_minor_units: int
    payer_email: str | None = None
    payer_name: str | None = None
    description: str | None = None


def shorten(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else f"{text[:limit - 3]}..."


class ProviderAdapter:
    kind: ProviderKind
    minimum_amount = 1
    base_url = ""

    def __init__(self, credential: str | None = None, base_url: str | None = None):
        self._credential = credential
        if base_url:
            self.base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def credential(self) -> str:
        self.ensure_configured()
        return self._credential

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when the provider has no credential."""
        if self._credential is None:
            self._credential = get_credential(self.kind.value)

    def validate(self, request: PaymentRequest) -> None:
        if not request.order_id or not str(request.order_id).strip():
            raise ValidationError("order_id is required", provider=self.name)
        amount = request.amount_minor_units
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("amount_minor_units must be a positive integer", provider=self.name)
        if amount < self.minimum_amount:
            raise ValidationError(
                f"Minimum amount for {self.name} is {self.minimum_amount} minor units",
                provider=self.name,
            )

    def create(self, request: PaymentRequest) -> CreatedPayment:
        """Validate, then open the payment with the provider."""
        self.validate(request)
        return self._create(request)

    def _create(self, request: PaymentRequest) -> CreatedPayment:
        raise NotImplementedError

    def query_status(self, provider_reference: str) -> StatusSnapshot:
        raise NotImplementedError

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.credential}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _call(self, method: str, path: str, *, json: dict | None = None, params: dict | None = None,
              headers: dict | None = None) -> dict:
        """
        Send one request to the provider and decode its JSON body.

        Transport errors, timeouts, 5xx and undecodable bodies become
        ProviderUnavailable; 401/403 ConfigurationError; 404 NotFound; any
        other 4xx ValidationError.
        """
        url = f"{self.base_url}{path}"
        all_headers = self._headers()
        if headers:
            all_headers.update(headers)
        try:
            r = requests.request(method, url, headers=all_headers, json=json, params=params,
                                 timeout=provider_timeout())
        except requests.RequestException as e:
            logger.warning("provider_request_failed", provider=self.name, method=method, path=path, error=str(e))
            raise ProviderUnavailable(f"{self.name} unreachable: {e}", provider=self.name)

        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = None

        status = r.status_code
        if 200 <= status < 300 and isinstance(body, dict):
            return body

        detail = body.get("message") if isinstance(body, dict) else None
        msg = str(detail).strip() if detail else f"HTTP {status}"
        logger.warning("provider_request_rejected", provider=self.name, method=method, path=path,
                       status_code=status, detail=msg)
        if status >= 500 or 200 <= status < 300:
            raise ProviderUnavailable(f"{self.name} error: {msg}", provider=self.name)
        if status in (401, 403):
            raise ConfigurationError(f"{self.name} rejected credentials: {msg}", provider=self.name)
        if status == 404:
            raise NotFound(f"{self.name} payment not found: {msg}", provider=self.name)
        raise ValidationError(f"{self.name} rejected request: {msg}", provider=self.name)
