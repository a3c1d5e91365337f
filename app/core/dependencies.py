"""FastAPI dependencies."""
from datetime import timedelta
from functools import lru_cache

from app.core.config import settings
from app.services.call_session.orchestrator import CallOrchestrator
from app.services.telephony.twilio_provider import TwilioTelephonyProvider


@lru_cache
def get_orchestrator() -> CallOrchestrator:
    """Get the process-wide call orchestrator."""
    provider = TwilioTelephonyProvider.from_credentials(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        timeout=settings.provider_timeout_seconds,
    )
    return CallOrchestrator(
        provider=provider,
        webhook_base_url=settings.webhook_base_url,
        operator_number=settings.operator_phone_number,
        session_ttl=timedelta(seconds=settings.session_ttl_seconds),
    )
