"""Data carried through one workflow run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WorkflowStep(str, Enum):
    """Login/navigation states, strictly ordered."""
    START = "start"
    HOMEPAGE_FETCHED = "homepage"
    LOGIN_FORM_FETCHED = "login_form"
    CAPTCHA_LOOP = "captcha"
    CREDENTIALS_SUBMITTED = "login_submit"
    REDIRECT_RESOLVED = "redirect"
    AUTHENTICATED_LANDING_FETCHED = "landing"
    LINKS_DISCOVERED = "top_frame"
    CONTENT_A_FETCHED = "illegal_programs"
    CONTENT_B_FETCHED = "manage_news"
    DONE = "done"


class PortalVariant(str, Enum):
    """How the two content pages are delivered."""
    HTML = "html"
    JSONP = "jsonp"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


@dataclass
class NavigationContext:
    """Where the workflow currently is; ``url`` is the next Referer."""
    url: str | None = None
    body: str = ""
    step: WorkflowStep = WorkflowStep.START

    def advance(self, step: WorkflowStep, url: str | None = None, body: str | None = None) -> None:
        self.step = step
        if url is not None:
            self.url = url
        if body is not None:
            self.body = body


@dataclass
class WorkflowResult:
    """
    The two extracted record sets.

    Each list holds either table/list rows (``list[str]``) or JSONP records
    (``dict``), depending on the portal variant.
    """
    illegal_programs: list[list[str]] | list[dict[str, Any]]
    manage_news: list[list[str]] | list[dict[str, Any]]
    variant: PortalVariant = PortalVariant.HTML
