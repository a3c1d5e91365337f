"""TwiML control document generation."""
import logging
from typing import Optional
from urllib.parse import urlencode

from twilio.twiml.voice_response import Dial, VoiceResponse

from app.services.call_session.models import DEFAULT_GREETING, VoiceModulation

logger = logging.getLogger(__name__)

# Returned when even the fallback document cannot be built
MINIMAL_TWIML = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<Response><Say voice="alice">Please hold.</Say></Response>'
)


class ResponseDocumentBuilder:
    """
    Builds TwiML documents that steer a live call.

    Twilio drops the call when a control request is answered with an empty
    or malformed document, so none of the public methods raise. Any fault
    falls back to a greeting-only document.
    """

    def build_call_document(
        self,
        message: Optional[str] = None,
        voice_modulation: Optional[VoiceModulation] = None,
        dial_number: Optional[str] = None,
        caller_id: Optional[str] = None,
        conference_name: Optional[str] = None,
        record: bool = False,
        recording_callback: Optional[str] = None,
    ) -> str:
        """
        Generate the control document for one call leg.

        The document speaks the greeting, then joins the named conference or
        bridges to dial_number, with recording directives when requested.
        A conference takes precedence over a direct dial.

        Args:
            message: Greeting spoken before connecting
            voice_modulation: Voice and language for the greeting
            dial_number: Number to bridge to in direct mode
            caller_id: Caller ID presented on the bridged leg
            conference_name: Conference to join
            record: Whether to record the bridged audio
            recording_callback: URL notified when a recording is ready

        Returns:
            TwiML XML string
        """
        try:
            response = VoiceResponse()
            self._say(response, message, voice_modulation)

            if conference_name:
                dial = Dial()
                conference_kwargs = {
                    "start_conference_on_enter": True,
                    "end_conference_on_exit": True,
                }
                if record:
                    conference_kwargs["record"] = "record-from-start"
                    if recording_callback:
                        conference_kwargs["recording_status_callback"] = _with_query(
                            recording_callback, conference=conference_name
                        )
                        conference_kwargs["recording_status_callback_event"] = "completed"
                dial.conference(conference_name, **conference_kwargs)
                response.append(dial)
            elif dial_number:
                dial_kwargs = {}
                if caller_id:
                    dial_kwargs["caller_id"] = caller_id
                if record:
                    dial_kwargs["record"] = "record-from-answer"
                    if recording_callback:
                        dial_kwargs["recording_status_callback"] = recording_callback
                        dial_kwargs["recording_status_callback_event"] = "completed"
                dial = Dial(**dial_kwargs)
                dial.number(dial_number)
                response.append(dial)

            return str(response)
        except Exception as e:
            logger.error(
                f"[TWIML] Failed to build call document, falling back to greeting - "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return self.build_greeting_document(message, voice_modulation)

    def build_greeting_document(
        self,
        message: Optional[str] = None,
        voice_modulation: Optional[VoiceModulation] = None,
    ) -> str:
        """Generate a document that only speaks a message."""
        try:
            response = VoiceResponse()
            self._say(response, message, voice_modulation)
            return str(response)
        except Exception as e:
            logger.error(
                f"[TWIML] Failed to build greeting document - "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return MINIMAL_TWIML

    def _say(
        self,
        response: VoiceResponse,
        message: Optional[str],
        voice_modulation: Optional[VoiceModulation],
    ) -> None:
        text = message.strip() if isinstance(message, str) else ""
        if not text:
            text = DEFAULT_GREETING
        voice = voice_modulation or VoiceModulation()
        # VoiceResponse escapes the text itself
        response.say(text, voice=voice.voice, language=voice.language)


def _with_query(url: str, **params: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"
