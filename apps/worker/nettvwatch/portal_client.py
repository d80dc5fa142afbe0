"""
net.tv.cn portal workflow.

FLOW (strictly sequential; each step needs the previous step's state):
1. Homepage "/"                    must reference the main.jsp frame.
2. Login form                      must post to loginExcute.jsp.
3. [Captcha loop]                  when the form shows a captcha image.
4. Credential submission           redirects disabled; 3xx = logged in.
5. Redirect resolution             Location validated against the origin.
6. Authenticated landing page      Referer stays on the submission URL.
7. Top frame                       must link MyInfoIndex.jsp; the two
                                   content links are discovered here.
8. Illegal-program page            HTML table or JSONP feed.
9. Manage-news page                HTML list or JSONP feed.

ERROR HANDLING:
- Fail fast. Every PortalError aborts the run and is tagged with the step
  that was being attempted.
- Only the captcha loop retries.

The literals below are the portal's wire contract; they change only when
the portal does.
"""

from __future__ import annotations

import logging

from nettvwatch.captcha import (
    DEFAULT_RECOGNIZE_TIMEOUT,
    CaptchaLoop,
    LoginOutcome,
    submit_login,
)
from nettvwatch.captcha_solver import CaptchaSolver, get_captcha_solver
from nettvwatch.exceptions import (
    ConfigurationError,
    LoginRejected,
    PortalError,
    UnexpectedPageShape,
)
from nettvwatch.extractors import (
    extract_anchor_target,
    extract_list_items,
    extract_record_list,
    extract_table_rows,
    find_table_body,
    find_title_list,
)
from nettvwatch.models import (
    Credentials,
    NavigationContext,
    PortalVariant,
    WorkflowResult,
    WorkflowStep,
)
from nettvwatch.redirects import resolve_redirect_target
from nettvwatch.transport import PortalSession

logger = logging.getLogger(__name__)

HOMEPAGE_PATH = "/"
HOMEPAGE_MARKER = '<frame src="main.jsp"'
LOGIN_FORM_PATH = "/right/loginForm.jsp"
LOGIN_FORM_MARKER = 'loginExcute.jsp"'
LOGIN_SUBMIT_PATH = "/right/loginExcute.jsp"
CAPTCHA_IMAGE_PATH = "/right/validateCode.jsp"
TOP_FRAME_PATH = "/top.jsp"
LOGGED_IN_MARKER = '/personnel/MyInfoIndex.jsp"'

ILLEGAL_PROGRAM_LABEL = "违规节目"
MANAGE_NEWS_LABEL = "管理动态"

ILLEGAL_PROGRAM_CALLBACK = "illegalProgramCallback"
MANAGE_NEWS_CALLBACK = "manageNewsCallback"
JSONP_RECORD_FIELD = "rows"


class PortalWorkflow:
    """Drives one login + scrape run over an explicitly owned session."""

    def __init__(
        self,
        session: PortalSession,
        credentials: Credentials,
        base_url: str,
        variant: PortalVariant | str = PortalVariant.HTML,
        solver: CaptchaSolver | None = None,
        captcha_enabled: bool = False,
        captcha_max_attempts: int = 3,
        captcha_ocr_timeout: float = DEFAULT_RECOGNIZE_TIMEOUT,
    ):
        if not credentials.username or not credentials.password:
            raise ConfigurationError("Portal account username/password not configured")
        self._session = session
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._variant = PortalVariant(variant)
        self._solver = solver
        self._captcha_enabled = captcha_enabled
        self._captcha_max_attempts = captcha_max_attempts
        self._captcha_ocr_timeout = captcha_ocr_timeout
        self._attempting = WorkflowStep.START
        self.context = NavigationContext()

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _begin(self, step: WorkflowStep) -> None:
        self._attempting = step
        logger.debug("Portal step: %s", step.value)

    def _require_marker(self, body: str, marker: str, step: WorkflowStep) -> None:
        if marker not in body:
            logger.warning(
                "Marker %r missing at step %s. Response length=%d, preview: %s",
                marker, step.value, len(body), body[:200],
            )
            raise UnexpectedPageShape(step.value, f"missing {marker!r}")

    # ------------------------------------------------------------------
    # Main flow
    # ------------------------------------------------------------------

    async def run(self) -> WorkflowResult:
        """Walk every step and return both record sets, or raise PortalError."""
        try:
            result = await self._run()
        except PortalError as e:
            if e.step is None:
                e.step = self._attempting.value
            logger.error("Portal workflow failed at %s: %s", e.step, e)
            raise
        logger.info(
            "Portal workflow done: %d illegal program(s), %d news item(s)",
            len(result.illegal_programs), len(result.manage_news),
        )
        return result

    async def _run(self) -> WorkflowResult:
        await self._fetch_homepage()
        await self._fetch_login_form()
        outcome = await self._submit_credentials()
        landing_path = self._resolve_redirect(outcome)
        await self._fetch_landing(landing_path)
        illegal_path, news_path = await self._discover_links()
        illegal_programs = await self._fetch_illegal_programs(illegal_path)
        manage_news = await self._fetch_manage_news(news_path)
        self.context.advance(WorkflowStep.DONE)
        return WorkflowResult(
            illegal_programs=illegal_programs,
            manage_news=manage_news,
            variant=self._variant,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _fetch_homepage(self) -> None:
        step = WorkflowStep.HOMEPAGE_FETCHED
        self._begin(step)
        url = self._url(HOMEPAGE_PATH)
        resp = await self._session.get(url)
        self._require_marker(resp.text, HOMEPAGE_MARKER, step)
        self.context.advance(step, url=url, body=resp.text)

    async def _fetch_login_form(self) -> None:
        step = WorkflowStep.LOGIN_FORM_FETCHED
        self._begin(step)
        url = self._url(LOGIN_FORM_PATH)
        resp = await self._session.get(url, referer=self.context.url)
        self._require_marker(resp.text, LOGIN_FORM_MARKER, step)
        self.context.advance(step, url=url, body=resp.text)

    def _captcha_required(self) -> bool:
        return self._captcha_enabled or CAPTCHA_IMAGE_PATH in self.context.body

    async def _submit_credentials(self) -> LoginOutcome:
        login_url = self._url(LOGIN_SUBMIT_PATH)
        referer = self.context.url

        if self._captcha_required():
            self._begin(WorkflowStep.CAPTCHA_LOOP)
            if self._solver is None:
                self._solver = get_captcha_solver()
            loop = CaptchaLoop(
                self._session,
                self._solver,
                captcha_url=self._url(CAPTCHA_IMAGE_PATH),
                login_url=login_url,
                credentials=self._credentials,
                referer=referer,
                max_attempts=self._captcha_max_attempts,
                recognize_timeout=self._captcha_ocr_timeout,
            )
            outcome = await loop.run()
        else:
            self._begin(WorkflowStep.CREDENTIALS_SUBMITTED)
            outcome = await submit_login(
                self._session, login_url, self._credentials, referer,
            )
            if not outcome.accepted:
                raise LoginRejected(outcome.message)

        logger.info("Login accepted for %s", self._credentials.username)
        self.context.advance(WorkflowStep.CREDENTIALS_SUBMITTED, url=login_url, body="")
        return outcome

    def _resolve_redirect(self, outcome: LoginOutcome) -> str:
        step = WorkflowStep.REDIRECT_RESOLVED
        self._begin(step)
        path = resolve_redirect_target(
            outcome.location or "", self._base_url, current_url=self.context.url,
        )
        # Referer stays on the submission URL.
        self.context.advance(step)
        return path

    async def _fetch_landing(self, path: str) -> None:
        step = WorkflowStep.AUTHENTICATED_LANDING_FETCHED
        self._begin(step)
        url = self._url(path)
        resp = await self._session.get(url, referer=self.context.url)
        if not resp.text.strip():
            raise UnexpectedPageShape(step.value, "empty body")
        self.context.advance(step, url=url, body=resp.text)

    async def _discover_links(self) -> tuple[str, str]:
        step = WorkflowStep.LINKS_DISCOVERED
        self._begin(step)
        url = self._url(TOP_FRAME_PATH)
        resp = await self._session.get(url, referer=self.context.url)
        body = resp.text
        self._require_marker(body, LOGGED_IN_MARKER, step)

        illegal_path = resolve_redirect_target(
            extract_anchor_target(body, ILLEGAL_PROGRAM_LABEL), self._base_url, current_url=url,
        )
        news_path = resolve_redirect_target(
            extract_anchor_target(body, MANAGE_NEWS_LABEL), self._base_url, current_url=url,
        )
        logger.debug("Discovered content links: %s, %s", illegal_path, news_path)
        self.context.advance(step, url=url, body=body)
        return illegal_path, news_path

    async def _fetch_content(self, path: str, callback: str) -> tuple[str, str]:
        """Fetch one content page; returns (url, body)."""
        url = self._url(path)
        params = {"callback": callback} if self._variant is PortalVariant.JSONP else None
        resp = await self._session.get(url, referer=self.context.url, params=params)
        return url, resp.text

    async def _fetch_illegal_programs(self, path: str) -> list:
        step = WorkflowStep.CONTENT_A_FETCHED
        self._begin(step)
        url, body = await self._fetch_content(path, ILLEGAL_PROGRAM_CALLBACK)

        if self._variant is PortalVariant.JSONP:
            items = extract_record_list(ILLEGAL_PROGRAM_CALLBACK, body, JSONP_RECORD_FIELD)
        else:
            table = find_table_body(body)
            if table is None:
                raise UnexpectedPageShape(step.value, "no table")
            items = extract_table_rows(table)

        self.context.advance(step, url=url, body=body)
        return items

    async def _fetch_manage_news(self, path: str) -> list:
        step = WorkflowStep.CONTENT_B_FETCHED
        self._begin(step)
        url, body = await self._fetch_content(path, MANAGE_NEWS_CALLBACK)

        if self._variant is PortalVariant.JSONP:
            items = extract_record_list(MANAGE_NEWS_CALLBACK, body, JSONP_RECORD_FIELD)
        else:
            news_list = find_title_list(body)
            if news_list is None:
                raise UnexpectedPageShape(step.value, "no title_list")
            items = extract_list_items(news_list)

        self.context.advance(step, url=url, body=body)
        return items


async def run_workflow(session: PortalSession, settings) -> WorkflowResult:
    """Build a PortalWorkflow from settings and run it over ``session``."""
    workflow = PortalWorkflow(
        session,
        Credentials(settings.account_username, settings.account_password),
        base_url=settings.portal_base_url,
        variant=settings.portal_variant,
        captcha_enabled=settings.captcha_enabled,
        captcha_max_attempts=settings.captcha_max_attempts,
        captcha_ocr_timeout=settings.captcha_ocr_timeout,
    )
    return await workflow.run()
