"""
SmartNotes Backend: Gemini Service Unit Tests (Mocked)
=========================================================

What:  Tests for prompt construction and GeminiNoteGenerator.
Why:   Tests should not make real API calls (costs money, requires network).
How:   Patches the genai module so GenerativeModel returns a mock whose
       generate_content_async is an AsyncMock.

What we test:
    - Prompt reflects style, subject and section flags
    - Successful generation returns notes plus metadata
    - Every provider failure becomes GenerationFailedError, without retry
    - Health check reports reachability
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from smartnotes.exceptions import GenerationFailedError
from smartnotes.schemas.pipeline import GenerationOptions, NoteStyle
from smartnotes.services.gemini_service import (
    STYLE_DIRECTIVES,
    GeminiNoteGenerator,
    build_prompt,
)


def make_response(text: str, finish_reason: str = "STOP") -> MagicMock:
    response = MagicMock()
    response.text = text
    reason = MagicMock()
    reason.name = finish_reason
    response.candidates = [MagicMock(finish_reason=reason)]
    return response


class BlockedResponse:
    """Mimics the SDK: .text raises when the candidate was blocked."""

    candidates = []

    @property
    def text(self):
        raise ValueError("The response was blocked by safety filters")


@pytest.fixture
def mock_genai():
    with patch("smartnotes.services.gemini_service.genai") as genai:
        genai.GenerativeModel.return_value.generate_content_async = AsyncMock()
        yield genai


@pytest.fixture
def generator(mock_genai):
    return GeminiNoteGenerator(api_key="test-key", model_name="gemini-1.5-flash")


class TestBuildPrompt:

    def test_contains_text_and_style(self):
        prompt = build_prompt("  Newton's laws of motion  ", GenerationOptions(style="concise"))
        assert "Newton's laws of motion" in prompt
        assert STYLE_DIRECTIVES[NoteStyle.CONCISE] in prompt

    def test_all_sections_by_default(self):
        prompt = build_prompt("text", GenerationOptions())
        assert "'Key Points'" in prompt
        assert "'Summary'" in prompt
        assert "'Review Questions'" in prompt

    def test_sections_can_be_disabled(self):
        options = GenerationOptions(include_key_points=False, include_summary=True, include_questions=False)
        prompt = build_prompt("text", options)
        assert "'Key Points'" not in prompt
        assert "'Summary'" in prompt
        assert "'Review Questions'" not in prompt

    def test_subject_line(self):
        assert "The subject is: Biology." in build_prompt("text", GenerationOptions(subject=" Biology "))
        assert "The subject is" not in build_prompt("text", GenerationOptions(subject="   "))

    def test_unknown_style_falls_back(self):
        options = GenerationOptions(style="bulleted-haiku")
        assert options.style is NoteStyle.COMPREHENSIVE


class TestGeminiNoteGenerator:

    def test_configures_sdk_with_key(self, mock_genai):
        GeminiNoteGenerator(api_key="real-key", model_name="gemini-1.5-pro")
        mock_genai.configure.assert_called_once_with(api_key="real-key")
        mock_genai.GenerativeModel.assert_called_with("gemini-1.5-pro")

    def test_placeholder_key_not_configured(self, mock_genai):
        GeminiNoteGenerator(api_key="", model_name="gemini-1.5-flash")
        GeminiNoteGenerator(api_key="your_gemini_api_key_here", model_name="gemini-1.5-flash")
        mock_genai.configure.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_generation(self, generator):
        generator.model.generate_content_async.return_value = make_response("\n# Notes\n- point\n")

        result = await generator.generate_notes("Raw OCR text", GenerationOptions(style="detailed"))

        assert result.notes == "# Notes\n- point"
        assert result.metadata.model == "gemini-1.5-flash"
        assert result.metadata.input_length == len("Raw OCR text")
        assert result.metadata.output_length == len("# Notes\n- point")
        assert result.metadata.finish_reason == "STOP"
        assert result.metadata.processing_time_ms >= 0

        prompt = generator.model.generate_content_async.call_args.args[0]
        assert "Raw OCR text" in prompt
        assert STYLE_DIRECTIVES[NoteStyle.DETAILED] in prompt

    @pytest.mark.asyncio
    async def test_api_error_is_not_retried(self, generator):
        generator.model.generate_content_async.side_effect = ConnectionError("network down")

        with pytest.raises(GenerationFailedError) as exc_info:
            await generator.generate_notes("Some text", GenerationOptions())

        assert generator.model.generate_content_async.await_count == 1
        assert exc_info.value.stage == "generation"
        assert exc_info.value.context["error_type"] == "ConnectionError"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_blocked_response(self, generator):
        generator.model.generate_content_async.return_value = BlockedResponse()

        with pytest.raises(GenerationFailedError) as exc_info:
            await generator.generate_notes("Some text", GenerationOptions())
        assert exc_info.value.context["error_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_empty_response(self, generator):
        generator.model.generate_content_async.return_value = make_response("   ", finish_reason="MAX_TOKENS")

        with pytest.raises(GenerationFailedError, match="empty response") as exc_info:
            await generator.generate_notes("Some text", GenerationOptions())
        assert exc_info.value.context["finish_reason"] == "MAX_TOKENS"

    @pytest.mark.asyncio
    async def test_empty_input_skips_call(self, generator):
        with pytest.raises(GenerationFailedError, match="No text provided"):
            await generator.generate_notes("   \n", GenerationOptions())
        generator.model.generate_content_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health_check_ok(self, generator, mock_genai):
        listed = MagicMock()
        listed.name = "models/gemini-1.5-flash"
        mock_genai.list_models.return_value = [listed]
        assert await generator.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, generator, mock_genai):
        mock_genai.list_models.side_effect = PermissionError("API key not valid")
        assert await generator.health_check() is False
