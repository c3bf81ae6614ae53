"""Speech-to-text service."""
import logging
from typing import Optional
import httpx
from openai import AsyncOpenAI, OpenAIError

from tutorline.core.config import settings
from tutorline.core.errors import TranscriptionUnavailable

logger = logging.getLogger(__name__)


class SpeechToTextService:
    """Service for converting recorded speech to text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        api_key = api_key if api_key is not None else settings.openai_api_key
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key)
        else:
            self.client = None
            logger.warning("[STT] OPENAI_API_KEY not set - transcription disabled")
        self.http_client = http_client
        self.model = settings.transcription_model

    @property
    def available(self) -> bool:
        return self.client is not None

    async def transcribe_audio(
        self, audio_data: bytes, format: str = "wav", language: Optional[str] = None
    ) -> str:
        """
        Transcribe audio to text using OpenAI Whisper.

        Args:
            audio_data: Raw audio bytes
            format: Audio format (wav, mp3, etc.)
            language: Optional ISO-639-1 hint

        Returns:
            Transcribed text
        """
        if self.client is None:
            raise TranscriptionUnavailable("transcription client is not configured")
        kwargs = {"language": language} if language else {}
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(f"audio.{format}", audio_data, f"audio/{format}"),
                **kwargs,
            )
        except OpenAIError as e:
            raise TranscriptionUnavailable(f"{type(e).__name__}: {e}") from e

        text = (transcript.text or "").strip()
        if not text:
            raise TranscriptionUnavailable("transcription returned no text")
        return text

    async def _fetch_recording(self, recording_url: str) -> bytes:
        auth = None
        if settings.twilio_account_sid and settings.twilio_auth_token:
            auth = (settings.twilio_account_sid, settings.twilio_auth_token)

        if self.http_client is not None:
            response = await self.http_client.get(recording_url, auth=auth)
        else:
            async with httpx.AsyncClient(follow_redirects=True, timeout=15.0) as client:
                response = await client.get(recording_url, auth=auth)
        response.raise_for_status()
        return response.content

    async def transcribe(self, audio_ref: str, language: Optional[str] = None) -> str:
        """
        Transcribe a Twilio recording URL.

        Args:
            audio_ref: URL to the Twilio recording
            language: Optional ISO-639-1 hint

        Returns:
            Transcribed text
        """
        if self.client is None:
            raise TranscriptionUnavailable("transcription client is not configured")

        # Twilio serves WAV when the extension is explicit
        url = audio_ref if audio_ref.endswith((".wav", ".mp3")) else f"{audio_ref}.wav"
        try:
            audio = await self._fetch_recording(url)
        except httpx.HTTPError as e:
            raise TranscriptionUnavailable(f"could not fetch recording: {e}") from e

        logger.info(f"[STT] Fetched recording ({len(audio)} bytes) from {url}")
        text = await self.transcribe_audio(audio, format=url.rsplit(".", 1)[-1], language=language)
        logger.info(f"[STT] Transcription: '{text[:200]}'")
        return text
