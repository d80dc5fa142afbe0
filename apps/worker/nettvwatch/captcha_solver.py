"""
Captcha solvers for the portal login image.

The login captcha is a short run of digits/letters on a noisy background.
Two interchangeable solvers implement ``recognize(image_bytes) -> str``:

- TesseractCaptchaSolver ("local"): Pillow preprocessing + pytesseract,
  several strategies, highest-confidence candidate wins.
- LLMCaptchaSolver ("llm"): Claude Haiku vision API.

Selection is via NETTV_CAPTCHA_SOLVER.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Protocol

import anthropic
import pytesseract
from PIL import Image, ImageFilter, ImageOps

from nettvwatch.config import settings
from nettvwatch.exceptions import CaptchaRecognitionError, ConfigurationError

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"[0-9A-Za-z]+")

_CAPTCHA_PROMPT = (
    "This image shows a short verification code made of digits and/or "
    "letters. Return ONLY the characters of the code, nothing else."
)


class CaptchaSolver(Protocol):
    async def recognize(self, image_bytes: bytes) -> str: ...


def _normalize_code(text: str) -> str:
    return "".join(_CODE_RE.findall(text))


# ---------------------------------------------------------------------------
# Local OCR (Tesseract)
# ---------------------------------------------------------------------------

@dataclass
class _PreprocessConfig:
    """One preprocessing strategy for captcha OCR."""
    name: str
    threshold: int
    contrast_cutoff: float
    upscale: int
    invert: bool = False
    sharpen: bool = False
    psm: int = 7
    blur_type: str = "median"       # "median" | "gaussian" | "none"


# Strategies ordered by expected reliability.
_PREPROCESS_STRATEGIES = [
    _PreprocessConfig("default", threshold=140, contrast_cutoff=5, upscale=3),
    _PreprocessConfig(
        "high_thresh", threshold=180, contrast_cutoff=3, upscale=3,
        blur_type="gaussian",
    ),
    _PreprocessConfig(
        "low_thresh_sharp", threshold=100, contrast_cutoff=8, upscale=4,
        sharpen=True,
    ),
    _PreprocessConfig(
        "inverted", threshold=140, contrast_cutoff=5, upscale=3, invert=True,
    ),
]

_CONFIDENT_ENOUGH = 80


class TesseractCaptchaSolver:
    """Recognize captcha codes with pytesseract."""

    def __init__(
        self,
        ocr_command: str | None = None,
        timeout: float | None = None,
        debug_dir: str | None = None,
    ):
        # The whole recognize() call shares one budget across all strategies.
        self._timeout = (timeout or settings.captcha_ocr_timeout) / len(_PREPROCESS_STRATEGIES)
        self._debug_dir = settings.captcha_debug_dir if debug_dir is None else debug_dir
        pytesseract.pytesseract.tesseract_cmd = ocr_command or settings.captcha_ocr_command

    async def recognize(self, image_bytes: bytes) -> str:
        """
        OCR the image with each strategy in turn.

        Returns immediately on a candidate above the confidence bar, else the
        best candidate seen. Raises CaptchaRecognitionError when no strategy
        yields any characters.
        """
        candidates: list[tuple[float, str, str]] = []  # (conf, code, strategy)
        last_text = ""

        for cfg in _PREPROCESS_STRATEGIES:
            try:
                text, confidence = await self._ocr_with_config(image_bytes, cfg)
            except CaptchaRecognitionError:
                continue
            last_text = text
            code = _normalize_code(text)
            if not code:
                continue
            logger.debug(
                "Captcha candidate from %r: text=%r conf=%.1f",
                cfg.name, text, confidence,
            )
            if confidence > _CONFIDENT_ENOUGH:
                return code
            candidates.append((confidence, code, cfg.name))

        if candidates:
            candidates.sort(reverse=True)
            best_conf, best_code, best_name = candidates[0]
            logger.info(
                "Captcha recognized (best of %d candidates): strategy=%r conf=%.1f",
                len(candidates), best_name, best_conf,
            )
            return best_code

        self._log_captcha_failure(image_bytes, last_text)
        raise CaptchaRecognitionError(
            f"No text recognized after {len(_PREPROCESS_STRATEGIES)} strategies. "
            f"Last OCR text: {last_text!r}"
        )

    async def _ocr_with_config(
        self, image_bytes: bytes, config: _PreprocessConfig,
    ) -> tuple[str, float]:
        """Apply one preprocessing config and return (text, confidence).

        Pipeline: grayscale + autocontrast, optional invert, upscale, blur,
        threshold, optional sharpen, white border, OCR. Runs Tesseract in a
        background thread under the configured timeout.
        """

        def _do_ocr() -> tuple[str, float]:
            img = Image.open(BytesIO(image_bytes)).convert("L")
            if config.contrast_cutoff > 0:
                img = ImageOps.autocontrast(img, cutoff=config.contrast_cutoff)
            if config.invert:
                img = ImageOps.invert(img)
            img = img.resize(
                (img.width * config.upscale, img.height * config.upscale),
                Image.LANCZOS,
            )
            if config.blur_type == "gaussian":
                img = img.filter(ImageFilter.GaussianBlur(radius=1))
            elif config.blur_type == "median":
                img = img.filter(ImageFilter.MedianFilter(3))
            if config.threshold > 0:
                img = img.point(lambda x: 255 if x > config.threshold else 0)
            if config.sharpen:
                img = img.filter(ImageFilter.SHARPEN)
            img = ImageOps.expand(img, border=10, fill=255)

            tess_config = (
                f"--psm {config.psm} "
                "-c tessedit_char_whitelist=0123456789"
                "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
            )
            data = pytesseract.image_to_data(
                img, config=tess_config, output_type=pytesseract.Output.DICT,
            )
            confidences = [
                float(c) for c, t in zip(data["conf"], data["text"])
                if t.strip() and float(c) > 0
            ]
            avg_conf = sum(confidences) / len(confidences) if confidences else 0.0
            text = " ".join(t for t in data["text"] if t.strip())
            return text.strip(), avg_conf

        try:
            return await asyncio.wait_for(asyncio.to_thread(_do_ocr), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Tesseract OCR timed out after %.1fs with strategy %r",
                self._timeout, config.name,
            )
            raise CaptchaRecognitionError(f"OCR timed out with strategy {config.name!r}")
        except (OSError, pytesseract.TesseractError) as e:
            raise CaptchaRecognitionError(f"OCR failed with strategy {config.name!r}: {e}") from e

    def _log_captcha_failure(self, image_bytes: bytes, last_ocr_text: str) -> None:
        """Log diagnostic info and optionally keep the image for inspection."""
        logger.error(
            "CAPTCHA_DIAGNOSTIC: all strategies failed. Last OCR text: %r. "
            "Image size: %d bytes",
            last_ocr_text, len(image_bytes),
        )
        if not self._debug_dir:
            return
        try:
            os.makedirs(self._debug_dir, exist_ok=True)
            ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = os.path.join(self._debug_dir, f"captcha_fail_{ts}.png")
            with open(path, "wb") as f:
                f.write(image_bytes)
            logger.error("CAPTCHA_DIAGNOSTIC: saved failed captcha to %s", path)
        except OSError:
            logger.warning("Failed to save captcha debug image", exc_info=True)


# ---------------------------------------------------------------------------
# LLM vision
# ---------------------------------------------------------------------------

class LLMCaptchaSolver:
    """Recognize captcha codes using Claude Haiku vision API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ):
        self._api_key = api_key or settings.captcha_llm_api_key
        self._model = model or settings.captcha_llm_model
        if not self._api_key:
            raise ConfigurationError(
                "NETTV_CAPTCHA_LLM_API_KEY must be set for captcha solving"
            )
        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    async def recognize(self, image_bytes: bytes) -> str:
        """Send captcha image to Claude and return the code it reads."""
        b64 = base64.b64encode(image_bytes).decode("ascii")

        try:
            resp = await self._client.messages.create(
                model=self._model,
                max_tokens=16,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": "image/jpeg",
                                    "data": b64,
                                },
                            },
                            {"type": "text", "text": _CAPTCHA_PROMPT},
                        ],
                    }
                ],
            )
        except anthropic.APIError as e:
            raise CaptchaRecognitionError(f"LLM API error: {e}") from e

        text = resp.content[0].text.strip()
        logger.debug("LLM captcha response: %r", text)

        code = _normalize_code(text)
        if not code:
            raise CaptchaRecognitionError(f"LLM returned no code: {text!r}")
        logger.info("LLM captcha solver: code=%s (raw=%r)", code, text)
        return code


_solver_instance: CaptchaSolver | None = None


def get_captcha_solver() -> CaptchaSolver:
    """Return the cached captcha solver selected by settings."""
    global _solver_instance

    if _solver_instance is not None:
        return _solver_instance

    if settings.captcha_solver == "llm":
        logger.info("Initializing LLM captcha solver (model=%s)", settings.captcha_llm_model)
        _solver_instance = LLMCaptchaSolver()
    elif settings.captcha_solver == "local":
        logger.info("Initializing Tesseract captcha solver (cmd=%s)", settings.captcha_ocr_command)
        _solver_instance = TesseractCaptchaSolver()
    else:
        raise ConfigurationError(f"Unknown captcha solver: {settings.captcha_solver!r}")
    return _solver_instance


def reset_solver() -> None:
    """Reset the cached solver instance (for testing)."""
    global _solver_instance
    _solver_instance = None
