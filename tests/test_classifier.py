from unittest.mock import AsyncMock

import httpx
import pytest

from rapport.ingestion.classifier import (
    FALLBACK_CLASSIFICATION,
    Classification,
    MessageClassifier,
    _strip_fences,
)
from rapport.store.vector_index import Horseman, Sentiment


class TestStripFences:
    def test_plain_json_untouched(self):
        assert _strip_fences('{"a": 1}') == '{"a": 1}'

    def test_removes_fences(self):
        assert _strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'


class TestMessageClassifier:
    @pytest.mark.asyncio
    async def test_valid_response(self, mock_llm):
        mock_llm.generate = AsyncMock(return_value='{"sentiment":"neg","horseman":"contempt"}')
        classifier = MessageClassifier(llm_client=mock_llm)

        label = await classifier.classify("Whatever 🙄")

        assert label == Classification(sentiment="neg", horseman="contempt")
        assert label.sentiment_label is Sentiment.NEGATIVE
        assert label.horseman_label is Horseman.CONTEMPT

    @pytest.mark.asyncio
    async def test_sends_message_as_user_turn(self, mock_llm):
        classifier = MessageClassifier(llm_client=mock_llm)

        await classifier.classify("Sounds great, thanks")

        kwargs = mock_llm.generate.call_args.kwargs
        assert kwargs["user_message"] == "Sounds great, thanks"
        assert kwargs["temperature"] == 0.0
        assert "horseman" in kwargs["system"]

    @pytest.mark.asyncio
    async def test_handles_markdown_fences(self, mock_llm):
        mock_llm.generate = AsyncMock(
            return_value='```json\n{"sentiment":"pos","horseman":"none"}\n```'
        )
        classifier = MessageClassifier(llm_client=mock_llm)

        label = await classifier.classify("love you")

        assert label.sentiment == "pos"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            "this is not json",
            "",
            "[]",
            '{"sentiment":"pos"}',
            '{"sentiment":"great","horseman":"none"}',
            '{"sentiment":"neg","horseman":"stonewalling"}',
            '{"labels":[{"sentiment":"neg","horseman":"criticism"}]}',
        ],
    )
    async def test_malformed_output_falls_back(self, mock_llm, raw):
        mock_llm.generate = AsyncMock(return_value=raw)
        classifier = MessageClassifier(llm_client=mock_llm)

        label = await classifier.classify("hello")

        assert label == FALLBACK_CLASSIFICATION
        assert (label.sentiment, label.horseman) == ("neu", "none")

    @pytest.mark.asyncio
    async def test_transport_error_falls_back(self, mock_llm):
        mock_llm.generate = AsyncMock(side_effect=httpx.ConnectError("down"))
        classifier = MessageClassifier(llm_client=mock_llm)

        label = await classifier.classify("hello")

        assert label == FALLBACK_CLASSIFICATION

    @pytest.mark.asyncio
    async def test_extra_keys_ignored(self, mock_llm):
        mock_llm.generate = AsyncMock(
            return_value='{"sentiment":"neu","horseman":"defensiveness","confidence":0.9}'
        )
        classifier = MessageClassifier(llm_client=mock_llm)

        label = await classifier.classify("Well if YOU had...")

        assert label.horseman_label is Horseman.DEFENSIVENESS
