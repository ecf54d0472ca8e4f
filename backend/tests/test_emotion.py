from __future__ import annotations

import asyncio
import dataclasses

import pytest
from google.api_core.exceptions import InternalServerError, ResourceExhausted

from questionnaire.errors import UpstreamError
from questionnaire.services.emotion import EmotionClassifier, create_classifier, parse_emotions


class _Reply:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """Replays queued replies (or raises queued exceptions) for generate_content_async."""

    def __init__(self, outcomes, delay=0.0):
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls = []

    def factory(self, name):
        self.calls.append(name)
        return self

    async def generate_content_async(self, prompt, generation_config=None, request_options=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _Reply(outcome)


def _classifier(fake, **kwargs) -> EmotionClassifier:
    kwargs.setdefault("retry_delay", 0.0)
    return EmotionClassifier(model="models/test", model_factory=fake.factory, **kwargs)


def test_parse_emotions_handles_fenced_json() -> None:
    reply = '```json\n{"joy": 0.9, "sadness": 0.1, "anger": "x", "fear": 3}\n```'

    result = parse_emotions(reply, "m")

    assert result["model"] == "m"
    assert result["emotions"] == {"anger": 0.0, "disgust": 0.0, "fear": 1.0, "joy": 0.9, "sadness": 0.1}
    assert result["dominant"] == "fear"


def test_parse_emotions_all_zero_has_no_dominant() -> None:
    assert parse_emotions("{}", "m")["dominant"] is None


def test_parse_emotions_rejects_non_json() -> None:
    with pytest.raises(UpstreamError):
        parse_emotions("I feel happy", "m")


def test_classify_uses_requested_model() -> None:
    fake = FakeModel(['Sure: {"joy": 0.8, "sadness": 0.2}'])

    result = asyncio.run(_classifier(fake).classify("great day", model="models/other"))

    assert fake.calls == ["models/other"]
    assert result["dominant"] == "joy"
    assert result["model"] == "models/other"


def test_classify_retries_rate_limits_then_succeeds() -> None:
    fake = FakeModel([ResourceExhausted("quota"), '{"anger": 0.7}'])

    result = asyncio.run(_classifier(fake, max_retries=2).classify("grr"))

    assert result["dominant"] == "anger"
    assert len(fake.calls) == 2


def test_classify_gives_up_after_max_retries() -> None:
    fake = FakeModel([ResourceExhausted("quota")] * 3)

    with pytest.raises(UpstreamError):
        asyncio.run(_classifier(fake, max_retries=2).classify("grr"))
    assert len(fake.calls) == 3


def test_classify_api_error_is_upstream_error() -> None:
    fake = FakeModel([InternalServerError("boom")])

    with pytest.raises(UpstreamError):
        asyncio.run(_classifier(fake).classify("text"))


def test_classify_times_out() -> None:
    fake = FakeModel(['{"joy": 1}'], delay=1.0)

    with pytest.raises(UpstreamError, match="timed out"):
        asyncio.run(_classifier(fake, timeout=0.05).classify("text"))


def test_create_classifier_disabled_without_key(settings) -> None:
    assert create_classifier(settings) is None


def test_create_classifier_with_key(settings, monkeypatch) -> None:
    configured = {}
    monkeypatch.setattr("questionnaire.services.emotion.genai.configure",
                        lambda api_key: configured.setdefault("key", api_key))

    classifier = create_classifier(dataclasses.replace(settings, gemini_api_key="k", emotion_model="models/x"))

    assert configured == {"key": "k"}
    assert classifier.model_name == "models/x"


class _BlockedReply:
    @property
    def text(self):
        raise ValueError("response was blocked by safety filters")


def test_classify_blocked_reply_is_upstream_error() -> None:
    fake = FakeModel([_BlockedReply()])

    with pytest.raises(UpstreamError, match="no text"):
        asyncio.run(_classifier(fake).classify("text"))
