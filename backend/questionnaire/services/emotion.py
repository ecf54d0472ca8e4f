# questionnaire/services/emotion.py
import asyncio
import json
import logging
import re
from typing import Any, Callable, Dict, Optional

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError, ResourceExhausted

from questionnaire.config import Settings, get_settings
from questionnaire.errors import UpstreamError

logger = logging.getLogger(__name__)

EMOTIONS = ("anger", "disgust", "fear", "joy", "sadness")

PROMPT = """Classify the emotions expressed in the text below.
Reply with a single JSON object mapping each of these emotions to a score
between 0 and 1: {emotions}. No other keys, no commentary.

Text:
\"\"\"{text}\"\"\""""

# Emotion result schema: { model, emotions: {name: score}, dominant }
EmotionResult = Dict[str, Any]


def _extract_json(text: str) -> str:
    """Pull the JSON object out of a reply that may carry markdown fences."""
    m = re.search(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
    if m:
        return m.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def parse_emotions(reply: str, model: str) -> EmotionResult:
    try:
        raw = json.loads(_extract_json(reply))
    except json.JSONDecodeError as e:
        raise UpstreamError(f"emotion model returned non-JSON reply: {reply[:80]!r}") from e
    if not isinstance(raw, dict):
        raise UpstreamError("emotion model reply is not an object")

    scores: Dict[str, float] = {}
    for name in EMOTIONS:
        try:
            score = float(raw.get(name, 0.0))
        except (TypeError, ValueError):
            score = 0.0
        scores[name] = min(1.0, max(0.0, score))
    dominant = max(EMOTIONS, key=lambda n: scores[n]) if any(scores.values()) else None
    return {"model": model, "emotions": scores, "dominant": dominant}


class EmotionClassifier:
    def __init__(self, model: str, timeout: float = 10.0, max_retries: int = 2,
                 retry_delay: float = 2.0,
                 model_factory: Callable[[str], Any] = genai.GenerativeModel):
        self.model_name = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._model_factory = model_factory

    async def _generate(self, model_name: str, prompt: str) -> str:
        model = self._model_factory(model_name)
        resp = await model.generate_content_async(
            prompt,
            generation_config={"temperature": 0},
            request_options={"timeout": self.timeout},
        )
        try:
            # .text raises ValueError when the reply was blocked or has no parts
            return resp.text or ""
        except ValueError as e:
            raise UpstreamError("emotion model returned no text") from e

    async def classify(self, text: str, model: Optional[str] = None) -> EmotionResult:
        """Score text against EMOTIONS. Every failure surfaces as UpstreamError."""
        model_name = model or self.model_name
        prompt = PROMPT.format(emotions=", ".join(EMOTIONS), text=text)
        retry_count = 0

        while True:
            try:
                reply = await asyncio.wait_for(self._generate(model_name, prompt), timeout=self.timeout)
                return parse_emotions(reply, model_name)
            except ResourceExhausted as e:
                retry_count += 1
                if retry_count > self.max_retries:
                    raise UpstreamError(f"rate limit exceeded after {self.max_retries} retries") from e
                delay = self.retry_delay * (2 ** (retry_count - 1))
                logger.warning("emotion model rate limited, retrying in %.1fs (attempt %d/%d)",
                               delay, retry_count, self.max_retries)
                await asyncio.sleep(delay)
            except asyncio.TimeoutError as e:
                raise UpstreamError(f"emotion model timed out after {self.timeout}s") from e
            except GoogleAPIError as e:
                raise UpstreamError(f"emotion model call failed: {e}") from e


def create_classifier(settings: Optional[Settings] = None) -> Optional[EmotionClassifier]:
    """Classifier for the configured model, or None when GEMINI_API_KEY is unset."""
    settings = settings or get_settings()
    if not settings.gemini_api_key:
        logger.info("emotion classification disabled (GEMINI_API_KEY not set)")
        return None
    genai.configure(api_key=settings.gemini_api_key)
    return EmotionClassifier(
        model=settings.emotion_model,
        timeout=settings.emotion_timeout_seconds,
        max_retries=settings.emotion_max_retries,
    )
