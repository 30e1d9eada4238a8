"""
Structured Extraction Tests

Parsing, coercion, truncation and the degraded fallback.
"""

import pytest

from api.middleware.error_handler import UpstreamError
from api.models.analyses import SECTION_FIELDS
from api.services.extractor import (
    FALLBACK_CONFIDENCE,
    LOW_CONFIDENCE_THRESHOLD,
    TRUNCATION_MARKER,
    StructuredExtractor,
    apply_extraction,
    clamp_confidence,
    truncate_source,
)
from tests.conftest import FakeReasoningClient, extraction_payload, make_analysis

SOURCE = "Customer Portal RFP\nWe are looking for a partner to rebuild our portal."


class TestHelpers:

    def test_truncate_source_appends_marker(self):
        text, truncated = truncate_source("x" * 20, 10)
        assert truncated
        assert text == "x" * 10 + TRUNCATION_MARKER

    def test_truncate_source_keeps_short_text(self):
        assert truncate_source("short", 10) == ("short", False)

    @pytest.mark.parametrize(
        "value,expected",
        [(0.5, 0.5), ("0.9", 0.9), (1.7, 1.0), (-2, 0.0), (None, 0.7), ("high", 0.7), (float("nan"), 0.7)],
    )
    def test_clamp_confidence(self, value, expected):
        assert clamp_confidence(value) == expected


class TestStructuredExtractor:

    async def test_parses_sections(self):
        client = FakeReasoningClient([extraction_payload()])
        extractor = StructuredExtractor(client)

        result = await extractor.extract(SOURCE)

        assert not result.degraded
        assert result.confidence_score == 0.85
        assert result.warning is None
        assert result.sections["project_overview"]["title"] == "Customer Portal"
        # Bare strings are wrapped into objects
        assert result.sections["functional_requirements"][1]["title"] == "Order history"
        assert result.sections["keywords"][0]["term"] == "portal"
        # Scalars are coerced to lists
        assert result.sections["technical_specifications"]["platform"] == ["web"]
        assert set(result.sections) == set(SECTION_FIELDS)
        assert client.calls[0]["temperature"] == 0.3

    async def test_unknown_keys_go_to_extra_fields(self):
        client = FakeReasoningClient([extraction_payload(evaluation_criteria=["price", "quality"])])

        result = await StructuredExtractor(client).extract(SOURCE)

        assert result.extra_fields == {"evaluation_criteria": ["price", "quality"]}

    async def test_missing_confidence_uses_default(self):
        payload = extraction_payload()
        del payload["confidence_score"]
        client = FakeReasoningClient([payload])

        result = await StructuredExtractor(client).extract(SOURCE)

        assert result.confidence_score == 0.7

    async def test_low_confidence_is_flagged(self):
        client = FakeReasoningClient([extraction_payload(confidence_score=0.2)])

        result = await StructuredExtractor(client).extract(SOURCE)

        assert not result.degraded
        assert result.warning

    async def test_malformed_response_falls_back(self):
        client = FakeReasoningClient(["I could not read this document, sorry."])

        result = await StructuredExtractor(client).extract(SOURCE)

        assert result.degraded
        assert result.confidence_score == FALLBACK_CONFIDENCE
        assert result.confidence_score < LOW_CONFIDENCE_THRESHOLD
        assert result.warning
        assert result.raw_response == "I could not read this document, sorry."
        assert result.sections["project_overview"]["title"] == "Customer Portal RFP"
        assert result.sections["functional_requirements"] == []

    async def test_broken_outer_object_is_not_mistaken_for_a_result(self):
        raw = (
            '{"project_overview": {"title": "Portal", "description": "d"}, '
            '"functional_requirements": [oops]}'
        )
        client = FakeReasoningClient([raw])

        result = await StructuredExtractor(client).extract(SOURCE)

        assert result.degraded
        assert result.confidence_score == FALLBACK_CONFIDENCE
        assert result.extra_fields == {}
        assert result.raw_response == raw

    async def test_fallback_is_deterministic(self):
        client = FakeReasoningClient(["not json", "still not json"])
        extractor = StructuredExtractor(client)

        first = await extractor.extract(SOURCE)
        second = await extractor.extract(SOURCE)

        assert first.sections == second.sections

    async def test_empty_output_falls_back(self):
        client = FakeReasoningClient([UpstreamError("malformed_response", "no text")])

        result = await StructuredExtractor(client).extract(SOURCE)

        assert result.degraded

    async def test_transport_errors_propagate(self):
        client = FakeReasoningClient([UpstreamError("network", "unreachable")])

        with pytest.raises(UpstreamError):
            await StructuredExtractor(client).extract(SOURCE)

    async def test_long_input_is_truncated(self):
        client = FakeReasoningClient([extraction_payload()])
        extractor = StructuredExtractor(client, max_input_chars=100)

        result = await extractor.extract("a" * 500)

        assert result.truncated
        prompt = client.calls[0]["prompt"]
        assert "a" * 100 + TRUNCATION_MARKER in prompt
        assert "a" * 101 not in prompt

    async def test_source_with_template_characters(self):
        client = FakeReasoningClient([extraction_payload()])

        await StructuredExtractor(client).extract("Budget: $100 {tbd} ${x}")

        assert "Budget: $100 {tbd} ${x}" in client.calls[0]["prompt"]


def test_apply_extraction_copies_fields(db_session):
    analysis = make_analysis(db_session, status="processing")
    extractor = StructuredExtractor(FakeReasoningClient())
    extraction = extractor.parse(
        '{"project_overview": {"title": "T"}, "confidence_score": 0.6, "extra": 1}',
        "source",
        "model-x",
    )

    apply_extraction(analysis, extraction)
    db_session.commit()

    assert analysis.project_overview["title"] == "T"
    assert analysis.extra_fields == {"extra": 1}
    assert analysis.model_version == "model-x"
    assert analysis.confidence_score == 0.6
    assert analysis.degraded is False
