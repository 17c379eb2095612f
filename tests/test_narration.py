"""Tests for tutor_chat.narration — semantic splitting of narration bubbles."""

import re
from collections.abc import Iterator

import pytest

from tutor_chat.models import NarrationMessage
from tutor_chat.narration import Segment, semantic_split, split_narration


def _texts(text: str, max_length: int = 100) -> list[str]:
    return [s.text for s in semantic_split(text, max_length)]


LONG_PARAGRAPH = (
    "The heart has four chambers. Blood enters the right atrium from the body. "
    "It then moves to the right ventricle, which pumps it to the lungs. "
    "Oxygen-rich blood returns to the left atrium! Can you guess where it goes next?"
)


class TestShortText:
    def test_short_text_is_one_segment(self) -> None:
        assert _texts("Welcome to the lab!") == ["Welcome to the lab!"]

    def test_text_exactly_at_limit(self) -> None:
        text = "x" * 100
        assert _texts(text) == [text]

    def test_surrounding_whitespace_stripped(self) -> None:
        assert _texts("   Hello there.  \n") == ["Hello there."]

    def test_empty_and_blank_yield_nothing(self) -> None:
        assert _texts("") == []
        assert _texts("  \n\n  ") == []

    def test_max_length_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            list(semantic_split("hello", 0))


class TestSentenceSplitting:
    def test_every_segment_within_limit_when_sentences_are(self) -> None:
        segments = _texts(LONG_PARAGRAPH, 80)
        assert len(segments) > 1
        assert all(len(s) <= 80 for s in segments)

    def test_joining_restores_paragraph(self) -> None:
        assert " ".join(_texts(LONG_PARAGRAPH, 80)) == LONG_PARAGRAPH

    def test_segments_end_at_sentence_boundaries(self) -> None:
        for segment in _texts(LONG_PARAGRAPH, 80):
            assert segment[-1] in ".!?"

    def test_short_sentences_grouped(self) -> None:
        text = "One. Two. Three. " + "Four is a much longer sentence than the rest of them."
        segments = _texts(text, 40)
        assert segments[0] == "One. Two. Three."

    def test_no_mid_word_breaks(self) -> None:
        words = set(LONG_PARAGRAPH.split())
        for segment in _texts(LONG_PARAGRAPH, 30):
            for word in segment.split():
                assert word in words

    def test_single_long_sentence_kept_whole(self) -> None:
        text = "This sentence has no internal full stop and is clearly longer than twenty chars"
        assert _texts(text, 20) == [text]


class TestParagraphSplitting:
    def test_paragraphs_split_first(self) -> None:
        text = "First paragraph here.\n\nSecond paragraph here."
        assert _texts(text, 30) == ["First paragraph here.", "Second paragraph here."]

    def test_blank_line_with_spaces_counts_as_break(self) -> None:
        text = "Alpha beta gamma.\n   \nDelta epsilon zeta."
        assert _texts(text, 20) == ["Alpha beta gamma.", "Delta epsilon zeta."]

    def test_long_paragraph_split_further(self) -> None:
        text = "Intro line.\n\n" + LONG_PARAGRAPH
        segments = _texts(text, 80)
        assert segments[0] == "Intro line."
        assert " ".join(segments[1:]) == LONG_PARAGRAPH

    def test_content_preserved_across_paragraphs(self) -> None:
        text = "Cells divide.\n\n" + LONG_PARAGRAPH + "\n\nThat is all for today."
        segments = _texts(text, 60)
        normalized = re.sub(r"\s+", " ", text)
        assert " ".join(segments) == normalized


class TestLaziness:
    def test_returns_iterator(self) -> None:
        assert isinstance(semantic_split(LONG_PARAGRAPH, 40), Iterator)

    def test_first_segment_available_without_consuming_rest(self) -> None:
        segments = semantic_split(LONG_PARAGRAPH, 40)
        first = next(segments)
        assert isinstance(first, Segment)
        assert LONG_PARAGRAPH.startswith(first.text)


class TestTiming:
    def test_segments_carry_timing(self) -> None:
        segments = list(semantic_split("Is this a question? Yes it is.", 20))
        assert segments[0].gap_ms == 1500
        assert all(s.display_ms >= 2000 for s in segments)

    def test_pacing_applies_to_gaps(self) -> None:
        (segment,) = semantic_split("Slow and steady.", pacing="slow")
        assert segment.gap_ms == 1800


class TestSplitNarration:
    def test_copies_keep_scenario_and_pacing(self) -> None:
        message = NarrationMessage(
            scenario_id="s1", content=LONG_PARAGRAPH, pacing="slow", media="heart.png"
        )
        parts = list(split_narration(message, 80))
        assert len(parts) > 1
        assert all(p.scenario_id == "s1" for p in parts)
        assert all(p.pacing == "slow" and p.media == "heart.png" for p in parts)
        assert " ".join(p.content for p in parts) == LONG_PARAGRAPH

    def test_copies_get_fresh_ids(self) -> None:
        message = NarrationMessage(scenario_id="s1", content=LONG_PARAGRAPH)
        ids = {p.id for p in split_narration(message, 80)}
        assert message.id not in ids
        assert len(ids) > 1
