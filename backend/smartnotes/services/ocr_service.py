"""
SmartNotes Backend: Tesseract Text Extraction Service
=======================================================

What:  Extracts text, a confidence score and structural counts from an
       uploaded image using the Tesseract OCR engine.
How:   Opens the image with Pillow, runs pytesseract.image_to_data in a
       worker thread, and rebuilds the text from the word boxes.
Who:   Constructed once in the application lifespan, stored on app.state,
       and injected into NotePipeline.
When:  First step of every pipeline run (and of ocr-only requests).

Recognition strategy:
    1. First pass with page segmentation mode 3 (fully automatic layout)
    2. If the mean word confidence is below the threshold (70), one more
       pass with mode 6 (single uniform block of text)
    3. The pass with strictly higher confidence wins; a tie keeps pass one
    4. If the second pass fails, the first pass result is returned

Engine handle:
    The thread pool and the Tesseract binary check are created lazily on
    first use, guarded by a lock, and released by shutdown(). Every
    recognition call is bounded by OCR_TIMEOUT_SECONDS, both in
    pytesseract (kills the subprocess) and in asyncio.wait_for.
"""

import asyncio
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytesseract
from PIL import Image, UnidentifiedImageError

from smartnotes.config import settings
from smartnotes.exceptions import ExtractionFailedError, ExtractionTimeoutError
from smartnotes.schemas.pipeline import ExtractionResult

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Text Assembly & Cleanup
# ══════════════════════════════════════════════════════════════════════════

_INLINE_WHITESPACE = re.compile(r"[ \t\f\v]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_CONFUSABLE_TOKEN = re.compile(r"[A-Za-z0-9|]+")


def assemble_words(data: Dict[str, List[Any]]) -> Dict[str, Any]:
    """
    Rebuild text and statistics from pytesseract's image_to_data dict.

    Words are joined by spaces within a line, lines by newlines, and
    paragraphs are separated by a blank line. Confidence is the mean of
    the word confidences, ignoring Tesseract's -1 "no confidence" marker.
    """
    paragraphs: Dict[Tuple[int, int, int], Dict[Tuple[int, int, int, int], List[str]]] = {}
    confidences: List[float] = []
    words: List[Dict[str, Any]] = []

    for i, raw_text in enumerate(data.get("text", [])):
        word = (raw_text or "").strip()
        if not word:
            continue

        page = int(data["page_num"][i]) if "page_num" in data else 1
        block = int(data["block_num"][i])
        par = int(data["par_num"][i])
        line = int(data["line_num"][i])
        conf = float(data["conf"][i])

        par_key = (page, block, par)
        line_key = (page, block, par, line)
        paragraphs.setdefault(par_key, {}).setdefault(line_key, []).append(word)

        if conf >= 0:
            confidences.append(conf)
        words.append({"text": word, "confidence": conf, "block": block, "paragraph": par, "line": line})

    text = "\n\n".join(
        "\n".join(" ".join(line_words) for line_words in lines.values())
        for lines in paragraphs.values()
    )
    confidence = sum(confidences) / len(confidences) if confidences else 0.0

    return {
        "text": text,
        "confidence": min(max(confidence, 0.0), 100.0),
        "word_count": len(words),
        "line_count": sum(len(lines) for lines in paragraphs.values()),
        "paragraph_count": len(paragraphs),
        "words": words,
    }


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces/tabs, strip each line, keep at most one blank line."""
    if not text:
        return ""
    lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.splitlines()]
    return _EXCESS_NEWLINES.sub("\n\n", "\n".join(lines)).strip()


def _fix_token(match: "re.Match[str]") -> str:
    token = match.group(0)
    if token == "|":
        return "I"
    # Only words made of letters plus confusable glyphs; real numbers stay intact
    if not any(c.isalpha() for c in token) or any(c.isdigit() and c != "0" for c in token):
        return token
    if not any(c.islower() for c in token):
        return token.replace("|", "I").replace("0", "O")
    # Lowercase word: a leading glyph reads as a capital, the rest as lowercase
    head = token[0].replace("|", "I").replace("0", "O")
    return head + token[1:].replace("|", "l").replace("0", "o")


def correct_confusions(text: str) -> str:
    """
    Repair '|' and '0' misreads inside alphabetic words, in the word's case.

    "H0USE" becomes "HOUSE", "bi0logy" becomes "biology", "wor|d" becomes
    "world" and a lone "|" becomes "I"; "2024" and "10a" are left alone.
    """
    return _CONFUSABLE_TOKEN.sub(_fix_token, text)


# ══════════════════════════════════════════════════════════════════════════
# Extractor
# ══════════════════════════════════════════════════════════════════════════


class TextExtractor:
    """
    Tesseract-backed text extraction with a low-confidence fallback pass.

    Thread Safety:
        Safe for concurrent callers. Each call opens its own image and runs
        its own tesseract subprocess; only the lazily-created executor and
        the binary check are shared, and both are created under a lock.
    """

    def __init__(
        self,
        language: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        confidence_threshold: Optional[float] = None,
        primary_psm: Optional[int] = None,
        fallback_psm: Optional[int] = None,
        max_workers: Optional[int] = None,
        correct_confusions: Optional[bool] = None,
        tesseract_cmd: Optional[str] = None,
    ):
        self.language = language or settings.ocr_language
        self.timeout_seconds = timeout_seconds or settings.ocr_timeout_seconds
        self.confidence_threshold = (
            confidence_threshold if confidence_threshold is not None
            else settings.ocr_confidence_threshold
        )
        self.primary_psm = primary_psm if primary_psm is not None else settings.ocr_primary_psm
        self.fallback_psm = fallback_psm if fallback_psm is not None else settings.ocr_fallback_psm
        self.max_workers = max_workers or settings.ocr_max_workers
        self.correct_confusions = (
            correct_confusions if correct_confusions is not None
            else settings.ocr_correct_confusions
        )

        tesseract_cmd = tesseract_cmd or settings.tesseract_cmd
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._engine_version: Optional[str] = None

        logger.info(
            "TextExtractor configured: lang=%s, psm=%d→%d below %.0f, timeout=%.0fs",
            self.language,
            self.primary_psm,
            self.fallback_psm,
            self.confidence_threshold,
            self.timeout_seconds,
        )

    # ── Engine Handle ─────────────────────────────────────────────────────

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="tesseract",
                )
                logger.info("OCR worker pool started (%d threads)", self.max_workers)
            return self._executor

    def _verify_engine(self) -> str:
        """Check the tesseract binary once; later calls reuse the cached version."""
        with self._lock:
            if self._engine_version is None:
                try:
                    self._engine_version = str(pytesseract.get_tesseract_version())
                except pytesseract.TesseractNotFoundError as e:
                    raise ExtractionFailedError(
                        message="The OCR engine is not available on this server.",
                        context={"error_type": type(e).__name__},
                    ) from e
                logger.info("Tesseract %s ready", self._engine_version)
            return self._engine_version

    def shutdown(self) -> None:
        """Release the worker pool. A later extract() starts a fresh one."""
        with self._lock:
            executor, self._executor = self._executor, None
            self._engine_version = None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
            logger.info("OCR worker pool shut down")

    async def health_check(self) -> bool:
        """True if the tesseract binary can be executed."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._get_executor(), self._verify_engine)
            return True
        except Exception as e:
            logger.warning("OCR health check failed: %s", str(e))
            return False

    # ── Recognition ───────────────────────────────────────────────────────

    def _run_tesseract(self, image_path: str, psm: int) -> Dict[str, List[Any]]:
        """Blocking recognition call; runs inside the worker pool."""
        self._verify_engine()
        with Image.open(image_path) as image:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            return pytesseract.image_to_data(
                image,
                lang=self.language,
                config=f"--psm {psm}",
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout_seconds,
            )

    async def _recognize(self, image_path: str, psm: int) -> ExtractionResult:
        """One bounded recognition pass with the given segmentation mode."""
        loop = asyncio.get_running_loop()
        start_time = time.time()

        try:
            data = await asyncio.wait_for(
                loop.run_in_executor(self._get_executor(), self._run_tesseract, image_path, psm),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionTimeoutError(
                timeout_seconds=self.timeout_seconds,
                context={"psm": psm},
            ) from e
        except RuntimeError as e:
            # pytesseract reports its own subprocess timeout as RuntimeError
            if "timeout" in str(e).lower():
                raise ExtractionTimeoutError(
                    timeout_seconds=self.timeout_seconds,
                    context={"psm": psm},
                ) from e
            raise ExtractionFailedError(
                context={"psm": psm, "error_type": type(e).__name__},
            ) from e
        except (pytesseract.TesseractError, UnidentifiedImageError, OSError) as e:
            logger.warning("Tesseract pass psm=%d failed: %s", psm, str(e))
            raise ExtractionFailedError(
                context={"psm": psm, "error_type": type(e).__name__},
            ) from e

        assembled = assemble_words(data)
        text = normalize_whitespace(assembled["text"])
        if self.correct_confusions:
            text = correct_confusions(text)

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Tesseract pass psm=%d: %d words, confidence %.1f in %.0fms",
            psm,
            assembled["word_count"],
            assembled["confidence"],
            duration_ms,
        )

        return ExtractionResult(
            text=text,
            confidence=round(assembled["confidence"], 2),
            word_count=assembled["word_count"],
            line_count=assembled["line_count"],
            paragraph_count=assembled["paragraph_count"],
            psm=psm,
            processing_time_ms=duration_ms,
            raw={
                "text": assembled["text"],
                "confidence": assembled["confidence"],
                "words": assembled["words"],
            },
        )

    async def extract(self, image_path: str) -> ExtractionResult:
        """
        Extract text from the image at image_path.

        Returns:
            ExtractionResult; its text may be empty when nothing legible
            was found (the caller decides whether that is an error).

        Raises:
            ExtractionFailedError:  missing/undecodable file or engine error.
            ExtractionTimeoutError: the first pass exceeded the time bound.
        """
        if not Path(image_path).is_file():
            raise ExtractionFailedError(
                message="Image file not found.",
                context={"filename": Path(image_path).name},
            )

        start_time = time.time()
        result = await self._recognize(image_path, self.primary_psm)

        if result.confidence < self.confidence_threshold and self.fallback_psm != self.primary_psm:
            logger.info(
                "Low OCR confidence (%.1f < %.0f), retrying with psm=%d",
                result.confidence,
                self.confidence_threshold,
                self.fallback_psm,
            )
            try:
                alternative = await self._recognize(image_path, self.fallback_psm)
            except ExtractionFailedError as e:
                logger.warning(
                    "Fallback OCR pass failed, keeping first pass: %s",
                    e.message,
                    extra={"event": "ocr_fallback_failed", "psm": self.fallback_psm},
                )
            else:
                if alternative.confidence > result.confidence:
                    logger.info(
                        "Fallback OCR pass improved confidence: %.1f → %.1f",
                        result.confidence,
                        alternative.confidence,
                    )
                    result = alternative

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(
            "OCR completed for %s: confidence %.1f, %d chars",
            Path(image_path).name,
            result.confidence,
            len(result.text),
        )
        return result
