"""
Plain-text report for the notification email.

TITLE: "登录成功 YYYY-MM-DD HH:MM:SS" on success,
       "登录失败 YYYY-MM-DD HH:MM:SS" on failure.
BODY:  one numbered line per record, fields space-joined in extraction order.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from nettvwatch.models import WorkflowResult

SUCCESS_TITLE = "登录成功"
FAILURE_TITLE = "登录失败"
ILLEGAL_PROGRAMS_HEADING = "违规节目："
MANAGE_NEWS_HEADING = "管理动态："
EMPTY_SECTION = "（无）"

# Field order for JSONP records.
ILLEGAL_PROGRAM_FIELDS = ("insertTime", "programName", "auditIdea")
MANAGE_NEWS_FIELDS = ("sendTime", "messageTitle")


def format_timestamp(now: datetime) -> str:
    return now.strftime("%Y-%m-%d %H:%M:%S")


def _record_fields(item: Sequence[str] | dict[str, Any], field_order: Sequence[str]) -> list[str]:
    if isinstance(item, dict):
        return ["" if item.get(f) is None else str(item.get(f)) for f in field_order]
    return [str(v) for v in item]


def _format_section(heading: str, items: Sequence, field_order: Sequence[str]) -> list[str]:
    lines = [heading]
    if not items:
        lines.append(EMPTY_SECTION)
    for i, item in enumerate(items, 1):
        fields = " ".join(_record_fields(item, field_order))
        lines.append(f"{i}. {fields}")
    return lines


def format_report(result: WorkflowResult, now: datetime) -> tuple[str, str]:
    """Return (title, body) for a completed run."""
    title = f"{SUCCESS_TITLE} {format_timestamp(now)}"
    lines = _format_section(
        ILLEGAL_PROGRAMS_HEADING, result.illegal_programs, ILLEGAL_PROGRAM_FIELDS,
    )
    lines.append("")
    lines.extend(
        _format_section(MANAGE_NEWS_HEADING, result.manage_news, MANAGE_NEWS_FIELDS)
    )
    return title, "\n".join(lines) + "\n"


def format_failure(error: BaseException, now: datetime) -> tuple[str, str]:
    """Return (title, body) for a failed run: the failing step and the message."""
    title = f"{FAILURE_TITLE} {format_timestamp(now)}"
    step = getattr(error, "step", None) or "unknown"
    body = f"Step: {step}\nError: {type(error).__name__}: {error}\n"
    return title, body
