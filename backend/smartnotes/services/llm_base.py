"""
SmartNotes Backend: Abstract Note Generator Interface
=======================================================

What:  Abstract base class defining the contract for study-note generation.
How:   Concrete providers inherit from NoteGenerator and implement
       generate_notes() and health_check().
Who:   Called by NotePipeline after text extraction succeeds.
When:  Once per pipeline run, between extraction and persistence.

Design Decision:
    The pipeline only sees NoteGenerator, so the provider can be replaced
    (or faked in tests) without touching orchestration code.
"""

from abc import ABC, abstractmethod

from smartnotes.schemas.pipeline import GenerationOptions, GenerationResult


class NoteGenerator(ABC):
    """
    Abstract interface for turning raw extracted text into study notes.

    Contract:
        - generate_notes() accepts non-empty text plus style options
        - One provider request per call; no conversation state, no retry
        - Every provider-specific failure is wrapped in GenerationFailedError
    """

    @abstractmethod
    async def generate_notes(self, text: str, options: GenerationOptions) -> GenerationResult:
        """
        Produce a formatted notes document from extracted text.

        Args:
            text:    Raw extracted text. Must be non-empty after trimming.
            options: Style directive, optional subject, and section flags.

        Returns:
            GenerationResult with non-empty notes and call metadata
            (model, input/output lengths, finish reason, duration).

        Raises:
            GenerationFailedError: empty input, provider error, blocked or
                empty response.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the provider is reachable and the credentials work.

        Who:     Called by the health check endpoint.
        Returns: True if reachable, False otherwise. Never raises.
        """
        ...
