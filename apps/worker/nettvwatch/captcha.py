"""
Login submission and the captcha resolution loop.

FLOW PER ATTEMPT:
1. FETCHING: download the captcha image through the session.
2. RECOGNIZING: hand the bytes to the OCR collaborator, bounded by
   recognize_timeout. A timeout counts as an unreadable image.
3. SUBMITTING: send credentials + code with redirects disabled.
4. Classify the response:
   - 3xx                       -> ACCEPTED, loop exits with the Location.
   - "invalid code" marker     -> retry from FETCHING until max_attempts,
                                  then EXHAUSTED (CaptchaExhausted).
   - anything else             -> LoginRejected(portal message), no retry.

This is the only place the workflow retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from nettvwatch.captcha_solver import CaptchaSolver
from nettvwatch.exceptions import (
    CaptchaExhausted,
    CaptchaRecognitionError,
    LoginRejected,
)
from nettvwatch.extractors import extract_login_error
from nettvwatch.models import Credentials
from nettvwatch.transport import PortalSession, accept_success_or_redirect

logger = logging.getLogger(__name__)

# Portal error text shown when the verification code is wrong.
INVALID_CODE_MARKERS = ("验证码错误", "验证码不正确")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RECOGNIZE_TIMEOUT = 10.0


class LoginOutcomeKind(str, Enum):
    ACCEPTED = "accepted"
    INVALID_CODE = "invalid_code"
    OTHER_REJECTION = "other_rejection"


@dataclass(frozen=True)
class LoginOutcome:
    """Tagged result of one credential submission."""
    kind: LoginOutcomeKind
    location: str | None = None
    message: str = ""

    @property
    def accepted(self) -> bool:
        return self.kind is LoginOutcomeKind.ACCEPTED


class CaptchaState(str, Enum):
    FETCHING = "fetching"
    RECOGNIZING = "recognizing"
    SUBMITTING = "submitting"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


class AttemptOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_BY_SERVER = "rejected_by_server"
    UNRECOGNIZED = "unrecognized"
    OTHER_ERROR = "other_error"


@dataclass
class CaptchaAttempt:
    """One fetch/recognize/submit cycle."""
    number: int
    image_bytes: bytes = b""
    text: str = ""
    outcome: AttemptOutcome | None = None


def classify_login_response(resp: httpx.Response) -> LoginOutcome:
    """Map a login submission response to a tagged outcome."""
    if 300 <= resp.status_code < 400:
        location = resp.headers.get("location", "").strip()
        if location:
            return LoginOutcome(LoginOutcomeKind.ACCEPTED, location=location)
        return LoginOutcome(
            LoginOutcomeKind.OTHER_REJECTION, message="redirect without Location",
        )

    body = resp.text
    banner = extract_login_error(body)
    for marker in INVALID_CODE_MARKERS:
        if marker in body:
            return LoginOutcome(LoginOutcomeKind.INVALID_CODE, message=banner or marker)
    return LoginOutcome(LoginOutcomeKind.OTHER_REJECTION, message=banner or "unknown error")


async def submit_login(
    session: PortalSession,
    login_url: str,
    credentials: Credentials,
    referer: str,
    code: str | None = None,
) -> LoginOutcome:
    """GET the login endpoint with credentials (and code); never follows the redirect."""
    params = {"pmail": credentials.username, "pcode": credentials.password}
    if code is not None:
        params["rand"] = code
    resp = await session.send(
        "GET",
        login_url,
        headers={"Referer": referer},
        params=params,
        accept_status=accept_success_or_redirect,
    )
    outcome = classify_login_response(resp)
    logger.debug("Login submission -> %d (%s)", resp.status_code, outcome.kind.value)
    return outcome


class CaptchaLoop:
    """Bounded fetch/recognize/submit loop for captcha-protected login."""

    def __init__(
        self,
        session: PortalSession,
        solver: CaptchaSolver,
        captcha_url: str,
        login_url: str,
        credentials: Credentials,
        referer: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        recognize_timeout: float = DEFAULT_RECOGNIZE_TIMEOUT,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._session = session
        self._solver = solver
        self._captcha_url = captcha_url
        self._login_url = login_url
        self._credentials = credentials
        self._referer = referer
        self._max_attempts = max_attempts
        self._recognize_timeout = recognize_timeout
        self.state = CaptchaState.FETCHING
        self.attempts: list[CaptchaAttempt] = []

    async def _recognize(self, image_bytes: bytes) -> str:
        try:
            return await asyncio.wait_for(
                self._solver.recognize(image_bytes), timeout=self._recognize_timeout,
            )
        except asyncio.TimeoutError as e:
            raise CaptchaRecognitionError(
                f"OCR timed out after {self._recognize_timeout:.1f}s"
            ) from e

    def _enter(self, state: CaptchaState) -> None:
        logger.debug("Captcha loop: %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self) -> LoginOutcome:
        """
        Return the ACCEPTED outcome (with its Location).

        Raises CaptchaExhausted after ``max_attempts`` rejected codes, and
        LoginRejected on any other portal error.
        """
        for number in range(1, self._max_attempts + 1):
            attempt = CaptchaAttempt(number=number)
            self.attempts.append(attempt)

            self._enter(CaptchaState.FETCHING)
            attempt.image_bytes = await self._session.fetch_bytes(
                self._captcha_url, referer=self._referer,
            )

            self._enter(CaptchaState.RECOGNIZING)
            try:
                attempt.text = await self._recognize(attempt.image_bytes)
            except CaptchaRecognitionError as e:
                attempt.outcome = AttemptOutcome.UNRECOGNIZED
                logger.warning(
                    "Captcha attempt %d/%d: recognition failed: %s",
                    number, self._max_attempts, e,
                )
                continue

            self._enter(CaptchaState.SUBMITTING)
            outcome = await submit_login(
                self._session, self._login_url, self._credentials,
                self._referer, code=attempt.text,
            )

            if outcome.kind is LoginOutcomeKind.ACCEPTED:
                attempt.outcome = AttemptOutcome.ACCEPTED
                self._enter(CaptchaState.ACCEPTED)
                logger.info("Captcha accepted on attempt %d/%d", number, self._max_attempts)
                return outcome

            if outcome.kind is LoginOutcomeKind.INVALID_CODE:
                attempt.outcome = AttemptOutcome.REJECTED_BY_SERVER
                logger.warning(
                    "Captcha attempt %d/%d: code %r rejected by portal",
                    number, self._max_attempts, attempt.text,
                )
                continue

            attempt.outcome = AttemptOutcome.OTHER_ERROR
            raise LoginRejected(outcome.message)

        self._enter(CaptchaState.EXHAUSTED)
        raise CaptchaExhausted(len(self.attempts))
