"""
SmartNotes Backend: Google Gemini Note Generator
===================================================

What:  Concrete NoteGenerator using Google Gemini to turn OCR text into
       formatted study notes.
How:   Builds one prompt from the extracted text and the style options,
       sends it with a single generate_content_async call, and reports
       lengths, finish reason and latency alongside the notes.
Who:   Constructed in the application lifespan and injected into NotePipeline.
When:  Once per pipeline run, after extraction produced non-empty text.

Failure policy:
    Quota, authentication, network errors, safety blocks and empty answers
    all surface as GenerationFailedError. There is no retry here; the user
    can resubmit, and a retry would double quota usage on every outage.
"""

import logging
import time
import uuid
from typing import Any, List, Optional

import google.generativeai as genai

from smartnotes.config import settings
from smartnotes.exceptions import GenerationFailedError
from smartnotes.schemas.pipeline import (
    GenerationMetadata,
    GenerationOptions,
    GenerationResult,
    NoteStyle,
)
from smartnotes.services.llm_base import NoteGenerator

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Prompt Construction
# ══════════════════════════════════════════════════════════════════════════

STYLE_DIRECTIVES = {
    NoteStyle.COMPREHENSIVE: (
        "Write comprehensive study notes. Organize the material under clear "
        "headings, explain every concept in full sentences and keep all "
        "important details, definitions and examples."
    ),
    NoteStyle.CONCISE: (
        "Write concise study notes. Use short bullet points, keep only the "
        "essential facts and definitions, and avoid repetition."
    ),
    NoteStyle.DETAILED: (
        "Write detailed study notes. Expand on each concept, add context that "
        "helps understanding, and spell out relationships between ideas."
    ),
    NoteStyle.SUMMARY: (
        "Write a short summary of the material in a few paragraphs, "
        "focusing on the main ideas only."
    ),
}

PROMPT_TEMPLATE = """You are an expert tutor who turns raw class material into clear study notes.

The text below was extracted from a photo with OCR. It may contain recognition
errors, broken lines or stray characters; silently correct obvious mistakes
and ignore noise.

{style}
{subject}
Format the notes in Markdown.
{sections}
Return ONLY the notes, without commentary about the OCR or these instructions.

Extracted text:
\"\"\"
{text}
\"\"\"
"""


def build_prompt(text: str, options: GenerationOptions) -> str:
    """Assemble the single prompt sent to the model for one generation."""
    sections: List[str] = []
    if options.include_key_points:
        sections.append("- End with a 'Key Points' section listing the most important takeaways.")
    if options.include_summary:
        sections.append("- Add a short 'Summary' section of two or three sentences.")
    if options.include_questions:
        sections.append("- Add a 'Review Questions' section with three to five self-test questions.")

    subject = f"The subject is: {options.subject}. Use its terminology.\n" if options.subject else ""

    return PROMPT_TEMPLATE.format(
        style=STYLE_DIRECTIVES[options.style],
        subject=subject,
        sections="\n".join(sections),
        text=text.strip(),
    )


def _finish_reason(response: Any) -> Optional[str]:
    """Read the first candidate's finish reason name, if the SDK returned one."""
    try:
        reason = response.candidates[0].finish_reason
    except (AttributeError, IndexError, TypeError):
        return None
    return getattr(reason, "name", None) or (str(reason) if reason is not None else None)


# ══════════════════════════════════════════════════════════════════════════
# Gemini Generator
# ══════════════════════════════════════════════════════════════════════════


class GeminiNoteGenerator(NoteGenerator):
    """
    Google Gemini implementation of NoteGenerator.

    Architecture:
        - One instance per process, built in the lifespan
        - Configures the SDK with the API key once
        - Holds a reusable GenerativeModel
    """

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model

        # The SDK keeps credentials in module-level state
        if api_key and api_key != "your_gemini_api_key_here":
            genai.configure(api_key=api_key)

        self.model = genai.GenerativeModel(self.model_name)
        logger.info("GeminiNoteGenerator initialized with model=%s", self.model_name)

    async def generate_notes(self, text: str, options: GenerationOptions) -> GenerationResult:
        """
        Generate study notes for the given text.

        Flow:
            1. Reject empty input
            2. Build the prompt from text + options
            3. One generate_content_async call
            4. Read text and finish reason; empty text is a failure
        """
        if not text or not text.strip():
            raise GenerationFailedError(
                message="No text provided for note generation.",
                context={"input_length": 0},
            )

        # Per-call id for correlating log lines of concurrent generations
        call_id = str(uuid.uuid4())[:8]
        prompt = build_prompt(text, options)
        start_time = time.time()

        logger.info(
            "[%s] Generating notes: style=%s, input=%d chars",
            call_id,
            options.style.value,
            len(text),
        )

        try:
            response = await self.model.generate_content_async(prompt)
            # .text raises ValueError when the response was blocked
            notes = (response.text or "").strip()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "[%s] Gemini call failed after %.0fms: %s",
                call_id,
                duration_ms,
                str(e),
            )
            raise GenerationFailedError(
                context={"call_id": call_id, "error_type": type(e).__name__},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        finish_reason = _finish_reason(response)

        if not notes:
            logger.error(
                "[%s] Gemini returned no notes (finish_reason=%s)",
                call_id,
                finish_reason,
            )
            raise GenerationFailedError(
                message="The AI service returned an empty response. Please try again.",
                context={"call_id": call_id, "finish_reason": finish_reason},
            )

        logger.info(
            "[%s] Notes generated in %.0fms: %d chars, finish_reason=%s",
            call_id,
            duration_ms,
            len(notes),
            finish_reason,
        )

        return GenerationResult(
            notes=notes,
            metadata=GenerationMetadata(
                model=self.model_name,
                input_length=len(text),
                output_length=len(notes),
                finish_reason=finish_reason,
                processing_time_ms=round(duration_ms, 2),
            ),
        )

    async def health_check(self) -> bool:
        """
        Check if Gemini is reachable.

        How:     Lists available models (no token cost).
        Returns: True if reachable and authenticated, False otherwise.
        """
        try:
            model_names = [m.name for m in genai.list_models()]
            target = f"models/{self.model_name}"
            if target not in model_names:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False
