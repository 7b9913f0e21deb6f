"""
Transactional email delivery.

Messages go to Brevo first. Any non-success answer from Brevo (HTTP error,
timeout, missing key, open circuit) sends the same content once through
Web3Forms; only when that fails too does ``EmailSender.send`` raise
``EmailDeliveryError``.
"""

from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel

from rmadesk.errors import EmailDeliveryError
from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger
from rmadesk.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError


BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
WEB3FORMS_API_URL = "https://api.web3forms.com/submit"


class EmailMessage(BaseModel):
    to_email: str
    to_name: str
    subject: str
    text: str
    html: str


class ProviderError(Exception):
    """One provider did not accept the message."""

    def __init__(self, provider: str, message: str, details: Any = None):
        self.provider = provider
        self.details = details
        super().__init__(f"{provider}: {message}")


def _response_payload(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class BrevoProvider:
    name = "brevo"

    def __init__(self, api_key: str, sender_email: str, sender_name: str,
                 api_url: str = BREVO_API_URL, timeout: float = 10.0):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.api_url = api_url
        self.timeout = timeout

    def send(self, message: EmailMessage) -> Optional[str]:
        """Send ``message`` and return Brevo's message id."""
        if not self.api_key:
            raise ProviderError(self.name, "API key not configured")
        payload = {
            "sender": {"email": self.sender_email, "name": self.sender_name},
            "to": [{"email": message.to_email, "name": message.to_name or message.to_email.split("@")[0]}],
            "subject": message.subject,
            "htmlContent": message.html,
            "textContent": message.text,
        }
        try:
            with metrics_collector.timer("email_send_duration_seconds", {"provider": self.name}):
                response = requests.post(
                    self.api_url,
                    json=payload,
                    headers={"api-key": self.api_key, "Content-Type": "application/json"},
                    timeout=self.timeout,
                )
        except requests.RequestException as e:
            raise ProviderError(self.name, "request failed", str(e))
        if not response.ok:
            raise ProviderError(self.name, f"HTTP {response.status_code}", _response_payload(response))
        data = _response_payload(response)
        return data.get("messageId") if isinstance(data, dict) else None


class Web3FormsProvider:
    name = "web3forms"

    def __init__(self, access_key: str, from_name: str = "RMA System",
                 api_url: str = WEB3FORMS_API_URL, timeout: float = 10.0):
        self.access_key = access_key
        self.from_name = from_name
        self.api_url = api_url
        self.timeout = timeout

    def send(self, message: EmailMessage) -> Optional[str]:
        if not self.access_key:
            raise ProviderError(self.name, "access key not configured")
        payload = {
            "access_key": self.access_key,
            "subject": message.subject,
            "from_name": self.from_name,
            "to_email": message.to_email,
            "message": message.text,
            "html": message.html,
        }
        try:
            with metrics_collector.timer("email_send_duration_seconds", {"provider": self.name}):
                response = requests.post(
                    self.api_url,
                    json=payload,
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
        except requests.RequestException as e:
            raise ProviderError(self.name, "request failed", str(e))
        data = _response_payload(response)
        if not (isinstance(data, dict) and data.get("success")):
            raise ProviderError(self.name, f"HTTP {response.status_code}", data)
        return data.get("data", {}).get("id") if isinstance(data.get("data"), dict) else None


class EmailSender:
    """Primary provider guarded by a circuit breaker, then one fallback attempt."""

    def __init__(self, primary, fallback, breaker: Optional[CircuitBreaker] = None):
        self.primary = primary
        self.fallback = fallback
        self.breaker = breaker or CircuitBreaker(name=f"email_{primary.name}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EmailSender":
        timeout = float(config.get("EMAIL_TIMEOUT_SECONDS", 10))
        primary = BrevoProvider(
            api_key=config.get("BREVO_API_KEY", ""),
            sender_email=config.get("EMAIL_SENDER_ADDRESS", "no-reply@example.com"),
            sender_name=config.get("EMAIL_SENDER_NAME", "RMA Desk"),
            api_url=config.get("BREVO_API_URL", BREVO_API_URL),
            timeout=timeout,
        )
        fallback = Web3FormsProvider(
            access_key=config.get("WEB3FORMS_ACCESS_KEY", ""),
            from_name=config.get("EMAIL_SENDER_NAME", "RMA Desk"),
            api_url=config.get("WEB3FORMS_API_URL", WEB3FORMS_API_URL),
            timeout=timeout,
        )
        return cls(primary, fallback)

    def send(self, message: EmailMessage) -> Dict[str, Any]:
        """Deliver ``message``; returns ``{"success", "provider", "message_id"}``."""
        try:
            message_id = self.breaker.call(self.primary.send, message)
            return self._delivered(self.primary.name, message_id, message)
        except (ProviderError, CircuitBreakerOpenError) as e:
            primary_error = e
            app_logger.warning(
                "Primary email provider failed, trying fallback",
                provider=self.primary.name,
                error=str(e),
                details=getattr(e, "details", None),
                to=message.to_email,
            )

        try:
            message_id = self.fallback.send(message)
        except ProviderError as e:
            metrics_collector.increment_counter('email_failures_total')
            app_logger.error(
                "Email sending failed with both providers",
                to=message.to_email,
                subject=message.subject,
                primary_error=str(primary_error),
                fallback_error=str(e),
            )
            raise EmailDeliveryError(
                "Email sending failed with both providers",
                details={"primary": str(primary_error), "fallback": e.details},
            )
        return self._delivered(self.fallback.name, message_id, message)

    def _delivered(self, provider: str, message_id: Optional[str], message: EmailMessage) -> Dict[str, Any]:
        metrics_collector.increment_counter('emails_sent_total', labels={'provider': provider})
        app_logger.info("Email sent", provider=provider, to=message.to_email, subject=message.subject)
        return {"success": True, "provider": provider, "message_id": message_id}
