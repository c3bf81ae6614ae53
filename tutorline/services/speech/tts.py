"""Text-to-speech service."""
import asyncio
import logging
import time
from pathlib import Path
from typing import Optional
from openai import AsyncOpenAI, OpenAIError

from tutorline.core.config import settings
from tutorline.core.errors import SynthesisUnavailable

logger = logging.getLogger(__name__)

# Generated audio older than this is removed on the next synthesis
AUDIO_MAX_AGE_SECONDS = 3600


class TextToSpeechService:
    """Service for converting text to speech files served under /audio."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        audio_dir: Optional[str] = None,
    ):
        api_key = api_key if api_key is not None else settings.openai_api_key
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key)
        else:
            self.client = None
            logger.warning("[TTS] OPENAI_API_KEY not set - using gateway voice fallback")
        self.audio_dir = Path(audio_dir or settings.audio_dir)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def synthesize_speech(
        self,
        text: str,
        voice: Optional[str] = None,
        model: Optional[str] = None,
    ) -> bytes:
        """
        Synthesize speech from text using OpenAI TTS.

        Args:
            text: Text to convert to speech
            voice: Voice to use (alloy, echo, fable, onyx, nova, shimmer)
            model: Model to use (tts-1 or tts-1-hd)

        Returns:
            Audio bytes (MP3 format)
        """
        if self.client is None:
            raise SynthesisUnavailable("synthesis client is not configured")
        try:
            response = await self.client.audio.speech.create(
                model=model or settings.tts_model,
                voice=voice or settings.tts_voice,
                input=text,
            )
        except OpenAIError as e:
            raise SynthesisUnavailable(f"{type(e).__name__}: {e}") from e
        return response.content

    async def synthesize(self, text: str, call_sid: str) -> Optional[str]:
        """
        Synthesize text into an MP3 file for the gateway to play.

        Returns:
            The audio file name, or None when synthesis is not configured and
            the gateway's built-in voice should be used instead.
        """
        if self.client is None:
            logger.info("[TTS] Using gateway voice fallback")
            return None

        audio = await self.synthesize_speech(text)
        file_name = f"answer_{call_sid}_{int(time.time() * 1000)}.mp3"
        await asyncio.to_thread(self._write_audio, file_name, audio)
        logger.info(f"[TTS] Audio written: {file_name} ({len(audio)} bytes)")

        await asyncio.to_thread(self.cleanup_old_files)
        return file_name

    def _write_audio(self, file_name: str, audio: bytes) -> None:
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        (self.audio_dir / file_name).write_bytes(audio)

    def cleanup_old_files(self, max_age: float = AUDIO_MAX_AGE_SECONDS) -> int:
        """Remove generated audio older than max_age seconds."""
        if not self.audio_dir.exists():
            return 0
        cutoff = time.time() - max_age
        removed = 0
        for path in self.audio_dir.glob("*.mp3"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"[TTS] Could not remove {path.name}: {e}")
        return removed
