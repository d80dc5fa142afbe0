"""
Shared fixtures for nettvwatch tests.

Strategy:
- Fake the portal with httpx.MockTransport (no real network in unit tests)
- Provide realistic page fixtures for every workflow step
- Scripted captcha solver instead of real OCR
- Override settings with test-safe defaults
"""

from __future__ import annotations

import os

# Set dummy env vars BEFORE any nettvwatch module is imported.
os.environ.setdefault("NETTV_ACCOUNT_USERNAME", "tester@example.com")
os.environ.setdefault("NETTV_ACCOUNT_PASSWORD", "test-password")

from typing import Callable
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from nettvwatch.exceptions import CaptchaRecognitionError
from nettvwatch.models import Credentials
from nettvwatch.transport import PortalSession

BASE_URL = "http://net.tv.cn"


# ── Portal page fixtures ──────────────────────────────────

HOMEPAGE_HTML = (
    "<html><head><title>网络视听节目管理</title></head>"
    '<frameset rows="90,*"><frame src="top.jsp" name="top">'
    '<frame src="main.jsp" name="main"></frameset></html>'
)

LOGIN_FORM_HTML = (
    '<form name="loginForm" action="loginExcute.jsp" method="get">'
    '<input type="text" name="pmail"><input type="password" name="pcode">'
    '<input type="submit" value="登录"></form>'
)

LOGIN_FORM_WITH_CAPTCHA_HTML = (
    '<form name="loginForm" action="loginExcute.jsp" method="get">'
    '<input type="text" name="pmail"><input type="password" name="pcode">'
    '<input type="text" name="rand"><img src="/right/validateCode.jsp" alt="验证码">'
    '<input type="submit" value="登录"></form>'
)

LANDING_HTML = "<html><body>欢迎登录</body></html>"

TOP_FRAME_HTML = (
    '<div class="nav">'
    '<a href="/personnel/MyInfoIndex.jsp" target="main">我的信息</a>'
    '<a href="/right/illegalProgram.jsp" target="main">违规节目</a>'
    '<A HREF="http://net.tv.cn/right/manageNews.jsp?type=1" target="main">管理动态</A>'
    "</div>"
)

ILLEGAL_PROGRAM_HTML = (
    '<html><body><table class="list" width="100%" border="0">'
    "<tr><th>序号</th><th>节目名称</th><th>处理意见</th></tr>"
    '<tr class="odd"><td> 1 </td><td><a href="#">节目A</a></td><td>下线</td></tr>'
    "<tr><td>2</td><td><span>节目B</span></td><td> 整改 </td></tr>"
    "</table></body></html>"
)

MANAGE_NEWS_HTML = (
    '<div><ul class="title_list">'
    '<li><a href="/news/1.jsp" target="_blank">关于规范节目的通知</a><span>2019-08-01</span></li>'
    '<li><a href="/news/2.jsp" target="_blank">年度检查安排</a> 2019-07-15</li>'
    "</ul></div>"
)

ILLEGAL_PROGRAM_JSONP = (
    'illegalProgramCallback({"total": 2, "rows": ['
    '{"insertTime": "2019-08-01", "programName": "节目A", "auditIdea": "下线"},'
    '{"insertTime": "2019-08-02", "programName": "节目B", "auditIdea": "整改"}'
    "]});"
)

MANAGE_NEWS_JSONP = (
    'manageNewsCallback({"total": 1, "rows": ['
    '{"sendTime": "2019-08-01 10:00", "messageTitle": "关于规范节目的通知"}'
    "]})"
)

INVALID_CODE_HTML = '<html><font color="red" size="2">验证码错误</font></html>'
BAD_PASSWORD_HTML = '<html><FONT COLOR="red">用户名或密码错误</FONT></html>'


# ── Fake portal ───────────────────────────────────────────


Handler = Callable[[httpx.Request], httpx.Response]


class FakePortal:
    """
    Route table keyed by URL path. Every request is recorded so tests can
    assert on what was (and was not) fetched.
    """

    def __init__(self, variant: str = "html", captcha: bool = False):
        self.requests: list[httpx.Request] = []
        self.accepted_code = "RIGHT"
        self.login_redirect = "/index.jsp"
        self.routes: dict[str, Handler] = {
            "/": lambda r: httpx.Response(200, html=HOMEPAGE_HTML),
            "/right/loginForm.jsp": lambda r: httpx.Response(
                200, html=LOGIN_FORM_WITH_CAPTCHA_HTML if captcha else LOGIN_FORM_HTML,
            ),
            "/right/loginExcute.jsp": self._login,
            "/right/validateCode.jsp": lambda r: httpx.Response(
                200, content=b"\x89PNG fake", headers={"Content-Type": "image/png"},
            ),
            "/index.jsp": lambda r: httpx.Response(200, html=LANDING_HTML),
            "/top.jsp": lambda r: httpx.Response(200, html=TOP_FRAME_HTML),
        }
        if variant == "jsonp":
            self.routes["/right/illegalProgram.jsp"] = lambda r: httpx.Response(
                200, text=ILLEGAL_PROGRAM_JSONP,
            )
            self.routes["/right/manageNews.jsp"] = lambda r: httpx.Response(
                200, text=MANAGE_NEWS_JSONP,
            )
        else:
            self.routes["/right/illegalProgram.jsp"] = lambda r: httpx.Response(
                200, html=ILLEGAL_PROGRAM_HTML,
            )
            self.routes["/right/manageNews.jsp"] = lambda r: httpx.Response(
                200, html=MANAGE_NEWS_HTML,
            )
        self.captcha = captcha

    def _login(self, request: httpx.Request) -> httpx.Response:
        if self.captcha and request.url.params.get("rand") != self.accepted_code:
            return httpx.Response(200, html=INVALID_CODE_HTML)
        return httpx.Response(
            302,
            headers={
                "Location": self.login_redirect,
                "Set-Cookie": "JSESSIONID=abc123; Path=/",
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


class ScriptedSolver:
    """Captcha solver returning a fixed sequence of codes."""

    def __init__(self, codes: list[str | Exception]):
        self._codes = list(codes)
        self.calls = 0

    async def recognize(self, image_bytes: bytes) -> str:
        self.calls += 1
        code = self._codes.pop(0) if len(self._codes) > 1 else self._codes[0]
        if isinstance(code, Exception):
            raise code
        return code


@pytest.fixture
def fake_portal():
    return FakePortal()


@pytest.fixture
async def make_session():
    """Factory: PortalSession wired to a FakePortal. All sessions closed at teardown."""
    sessions: list[PortalSession] = []

    def _make(portal: FakePortal, **kwargs) -> PortalSession:
        session = PortalSession(transport=httpx.MockTransport(portal.handler), **kwargs)
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        await session.close()


@pytest.fixture
def credentials():
    return Credentials("tester@example.com", "test-password")


@pytest.fixture
def unreadable_captcha():
    return CaptchaRecognitionError("no text")


# ── SMTP Mocks ────────────────────────────────────────────


@pytest.fixture
def mock_smtp():
    """Mock aiosmtplib.SMTP for email tests."""
    with patch("nettvwatch.notifier.aiosmtplib") as aiosmtplib_mod:
        smtp_instance = AsyncMock()
        aiosmtplib_mod.SMTP.return_value = smtp_instance
        smtp_instance.connect = AsyncMock()
        smtp_instance.starttls = AsyncMock()
        smtp_instance.login = AsyncMock()
        smtp_instance.send_message = AsyncMock()
        smtp_instance.quit = AsyncMock()
        smtp_instance.smtp_cls = aiosmtplib_mod.SMTP
        yield smtp_instance


# ── Settings Override ──────────────────────────────────────


@pytest.fixture
def test_settings():
    """Settings with test-safe defaults, patched into every module that reads them."""
    with patch("nettvwatch.config.settings") as mock_settings:
        mock_settings.account_username = "tester@example.com"
        mock_settings.account_password = "test-password"
        mock_settings.portal_base_url = BASE_URL
        mock_settings.portal_variant = "html"
        mock_settings.portal_encoding = "utf-8"
        mock_settings.request_timeout_seconds = 5
        mock_settings.user_agent = ""
        mock_settings.socks_proxy = ""
        mock_settings.captcha_enabled = False
        mock_settings.captcha_max_attempts = 3
        mock_settings.captcha_solver = "local"
        mock_settings.captcha_ocr_command = "tesseract"
        mock_settings.captcha_ocr_timeout = 5.0
        mock_settings.captcha_debug_dir = ""
        mock_settings.captcha_llm_api_key = ""
        mock_settings.captcha_llm_model = "test-model"
        mock_settings.notification_enabled = True
        mock_settings.mail_service = ""
        mock_settings.smtp_host = "localhost"
        mock_settings.smtp_port = 1025
        mock_settings.smtp_username = "test"
        mock_settings.smtp_password = "test"
        mock_settings.smtp_use_tls = False
        mock_settings.mail_sender = "nettvwatch@test.com"
        mock_settings.mail_receiver = "ops@test.com"
        mock_settings.schedule_hours = ""
        mock_settings.timezone = "Asia/Shanghai"
        with (
            patch("nettvwatch.notifier.settings", mock_settings, create=True),
            patch("nettvwatch.main.settings", mock_settings, create=True),
            patch("nettvwatch.captcha_solver.settings", mock_settings, create=True),
        ):
            yield mock_settings
