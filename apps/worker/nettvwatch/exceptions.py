"""
Portal workflow errors.

Every error is fatal to the run except inside the captcha retry loop.
The workflow tags each error with the step it was raised at (``step``) so the
failure report can name it.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base exception for portal workflow errors."""

    def __init__(self, message: str = "", step: str | None = None):
        super().__init__(message)
        self.step = step

    @property
    def message(self) -> str:
        return str(self)


class ConfigurationError(PortalError):
    """Account or collaborator configuration missing."""


class TransportError(PortalError):
    """Network failure or timeout talking to the portal."""


class UnexpectedStatus(PortalError):
    """HTTP status outside the accepted range for the request."""

    def __init__(self, status_code: int, url: str, step: str | None = None):
        super().__init__(f"Unexpected HTTP {status_code} from {url}", step=step)
        self.status_code = status_code
        self.url = url


class RedirectHostMismatch(PortalError):
    """Redirect target points off the portal origin. Never followed."""

    def __init__(self, location: str, step: str | None = None):
        super().__init__(f"Redirect host mismatch: {location!r}", step=step)
        self.location = location


class UnexpectedPageShape(PortalError):
    """A page is missing the marker the workflow expects at this step."""

    def __init__(self, step: str, detail: str = ""):
        message = f"Unexpected page shape at {step}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, step=step)


class LinkNotFound(PortalError):
    """No anchor with the expected visible label."""

    def __init__(self, label: str, step: str | None = None):
        super().__init__(f"Link not found: {label}", step=step)
        self.label = label


class NoRowsFound(PortalError):
    """Markup has no row delimiters at all."""


class InvalidEnvelope(PortalError):
    """JSONP body does not match the expected callback / JSON contract."""


class CaptchaRecognitionError(PortalError):
    """OCR collaborator could not produce a code for the image."""


class CaptchaExhausted(PortalError):
    """Portal kept rejecting the captcha code until attempts ran out."""

    def __init__(self, attempts: int, step: str | None = None):
        super().__init__(
            f"Captcha rejected after {attempts} attempts", step=step,
        )
        self.attempts = attempts


class LoginRejected(PortalError):
    """Portal refused the login; carries the portal's own error text."""
