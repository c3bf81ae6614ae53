"""LLM client for answers, subject classification and summaries."""
import logging
from typing import Iterable, List, Optional, Sequence
from openai import AsyncOpenAI, OpenAIError

from tutorline.core.config import settings
from tutorline.core.errors import GenerationUnavailable
from tutorline.services.history.repository import HistoryEntry
from tutorline.services.llm.subjects import SUBJECT_LABELS, normalize_subject

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {"en": "English", "hi": "Hindi"}

ANSWER_PROMPT = (
    "You are an educational assistant answering a student over the phone. "
    "Answer clearly and concisely in 2-3 sentences suitable for a voice response. "
    "Reply in {language}."
)

CLASSIFY_PROMPT = """You are an educational subject classifier. Identify the specific school-level subject this question belongs to.

Question: "{question}"

Allowed subjects:
{labels}

Instructions:
1. Return ONLY one subject name from the list, nothing else
2. Be specific ("World History" rather than "History" when it clearly fits)
3. If it is a general knowledge question, return "General Knowledge"

Subject:"""

SUMMARY_PROMPT = """Here are the student's previous {subject} questions and answers:
{pairs}

Give a short and simple summary of what the student has learned so far in {subject}. Keep it under 100 words and suitable for a voice response."""


class LLMClient:
    """Async wrapper around the chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.llm_model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key)
        else:
            self.client = None
            logger.warning("[LLM] OPENAI_API_KEY not set - answers and summaries disabled")

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _complete(self, messages: List[dict], temperature: float = 0.4) -> str:
        if self.client is None:
            raise GenerationUnavailable("LLM client is not configured")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
            )
        except OpenAIError as e:
            raise GenerationUnavailable(f"{type(e).__name__}: {e}") from e

        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise GenerationUnavailable("empty completion")
        return content

    async def answer(self, question: str, language: str = "en") -> str:
        """Generate a short spoken answer for a question."""
        logger.info(f"[LLM] Answering question: '{question[:100]}'")
        return await self._complete(
            [
                {
                    "role": "system",
                    "content": ANSWER_PROMPT.format(
                        language=LANGUAGE_NAMES.get(language, "English")
                    ),
                },
                {"role": "user", "content": question},
            ]
        )

    async def classify(
        self, question: str, labels: Optional[Iterable[str]] = None
    ) -> str:
        """
        Classify a question into one label of a closed set.

        The raw completion is normalized onto the label set, falling back to
        the general-knowledge label when nothing matches.
        """
        label_list = list(labels) if labels is not None else SUBJECT_LABELS
        raw = await self._complete(
            [
                {
                    "role": "user",
                    "content": CLASSIFY_PROMPT.format(
                        question=question,
                        labels="\n".join(f"- {label}" for label in label_list),
                    ),
                }
            ],
            temperature=0.0,
        )
        subject = normalize_subject(raw, labels=label_list)
        logger.info(f"[LLM] Classified subject: raw='{raw}', normalized='{subject}'")
        return subject

    async def summarize(self, subject: str, records: Sequence[HistoryEntry]) -> str:
        """Summarize what a caller has learned from their stored Q&A pairs."""
        pairs = "\n\n".join(
            f"{i}. Q: {record.question}\nA: {record.answer}"
            for i, record in enumerate(records, start=1)
        )
        logger.info(f"[LLM] Summarizing {len(records)} records for subject '{subject}'")
        return await self._complete(
            [
                {
                    "role": "user",
                    "content": SUMMARY_PROMPT.format(subject=subject, pairs=pairs),
                }
            ]
        )
