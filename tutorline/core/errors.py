"""Error types raised by provider clients."""


class TutorLineError(Exception):
    """Base class for application errors."""


class ProviderUnavailable(TutorLineError):
    """An external provider is unreachable, misconfigured or timed out."""

    provider = "provider"

    def __init__(self, message: str = ""):
        super().__init__(message or f"{self.provider} unavailable")


class TranscriptionUnavailable(ProviderUnavailable):
    """Speech-to-text failed."""

    provider = "transcription"


class GenerationUnavailable(ProviderUnavailable):
    """LLM answer, classification or summary generation failed."""

    provider = "llm"


class SynthesisUnavailable(ProviderUnavailable):
    """Text-to-speech failed."""

    provider = "synthesis"


class StoreUnavailable(ProviderUnavailable):
    """History store is unreachable."""

    provider = "history"
