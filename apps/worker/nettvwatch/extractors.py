"""
Markup extractors.

The portal's markup is not well-formed enough for a strict parser, so these
are targeted pattern matches over already-fetched response text. Each one
locates a single known substructure and fails loudly when it is absent.
None of them retry or touch the network.
"""

from __future__ import annotations

import html
import json
import re
from typing import Any

from nettvwatch.exceptions import InvalidEnvelope, LinkNotFound, NoRowsFound

TableRow = list[str]
Record = dict[str, Any]

_TAG_RE = re.compile(r"<[^>]*>")
_ROW_RE = re.compile(r"<tr\b[^>]*>([\s\S]*?)</tr>", re.IGNORECASE)
_CELL_RE = re.compile(r"<(t[hd])\b[^>]*>([\s\S]*?)</\1>", re.IGNORECASE)
_LIST_ITEM_RE = re.compile(r"<li\b[^>]*>([\s\S]*?)</li>", re.IGNORECASE)
_LIST_LINK_RE = re.compile(r"<a\s[^>]*>([\s\S]*?)</a>([\s\S]*)", re.IGNORECASE)
_ANCHOR_RE = re.compile(r"<a\b([^>]*)>([\s\S]*?)</a>", re.IGNORECASE)
_HREF_RE = re.compile(r"""href\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.IGNORECASE)
_TABLE_RE = re.compile(r"<table\b[^>]*>([\s\S]*?)</table>", re.IGNORECASE)
_TITLE_LIST_RE = re.compile(
    r"""<ul\b[^>]*class=["']title_list["'][^>]*>([\s\S]*?)</ul>""", re.IGNORECASE,
)
_LOGIN_ERROR_RE = re.compile(
    r"""<font\b[^>]*color=["']?red["']?[^>]*>([\s\S]*?)</font>""", re.IGNORECASE,
)

DEFAULT_RECORD_FIELD = "rows"


def strip_tags(fragment: str) -> str:
    """Remove every tag, decode entities, trim surrounding whitespace."""
    return html.unescape(_TAG_RE.sub("", fragment)).strip()


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

def extract_table_rows(table_markup: str) -> list[TableRow]:
    """
    One list of trimmed cell strings per ``<tr>``.

    Raises NoRowsFound when the markup has no row delimiter at all.
    Rows without any ``<th>``/``<td>`` are skipped.
    """
    rows = _ROW_RE.findall(table_markup)
    if not rows:
        raise NoRowsFound("No table rows in markup")

    items: list[TableRow] = []
    for row_html in rows:
        cells = [strip_tags(content) for _tag, content in _CELL_RE.findall(row_html)]
        if cells:
            items.append(cells)
    return items


def extract_list_items(list_markup: str) -> list[TableRow]:
    """
    Parse a news list: each ``<li><a ...>title</a> date</li>``.

    Returns ``[trailing text, link text]`` per item, matching the order the
    report prints them. Items without a link are skipped.
    """
    items_html = _LIST_ITEM_RE.findall(list_markup)
    if not items_html:
        raise NoRowsFound("No list items in markup")

    items: list[TableRow] = []
    for li_html in items_html:
        m = _LIST_LINK_RE.search(li_html)
        if m:
            items.append([strip_tags(m.group(2)), strip_tags(m.group(1))])
    return items


def extract_anchor_target(page_markup: str, visible_link_text: str) -> str:
    """
    Return the href of the first anchor whose visible text is exactly
    ``visible_link_text`` (after stripping inner tags and whitespace).
    """
    for attrs, text in _ANCHOR_RE.findall(page_markup):
        if strip_tags(text) != visible_link_text:
            continue
        m = _HREF_RE.search(attrs)
        if m:
            return html.unescape(next(g for g in m.groups() if g is not None))
    raise LinkNotFound(visible_link_text)


def find_table_body(page_markup: str) -> str | None:
    """Inner markup of the first ``<table>``, or None."""
    m = _TABLE_RE.search(page_markup)
    return m.group(1) if m else None


def find_title_list(page_markup: str) -> str | None:
    """Inner markup of ``<ul class="title_list">``, or None."""
    m = _TITLE_LIST_RE.search(page_markup)
    return m.group(1) if m else None


def extract_login_error(page_markup: str) -> str | None:
    """Text of the red ``<font>`` error banner on the login page, if any."""
    m = _LOGIN_ERROR_RE.search(page_markup)
    if not m:
        return None
    return strip_tags(m.group(1)) or None


# ---------------------------------------------------------------------------
# JSONP
# ---------------------------------------------------------------------------

def extract_record_list(
    expected_callback_name: str,
    jsonp_body: str,
    field: str = DEFAULT_RECORD_FIELD,
) -> list[Record]:
    """
    Unwrap ``name({...})`` and return the array under ``field``.

    Raises InvalidEnvelope when the callback is absent, the payload is not a
    JSON object, or ``field`` is missing or not a list of objects.
    """
    call_re = re.compile(rf"(?<![\w$.]){re.escape(expected_callback_name)}\s*\(")
    m = call_re.search(jsonp_body)
    if not m:
        raise InvalidEnvelope(
            f"JSONP callback {expected_callback_name!r} not found"
        )

    end = jsonp_body.rfind(")")
    if end < m.end():
        raise InvalidEnvelope("JSONP call is not closed")

    payload = jsonp_body[m.end():end]
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError) as exc:
        raise InvalidEnvelope(f"Malformed JSON in JSONP body: {exc}") from exc

    if not isinstance(data, dict):
        raise InvalidEnvelope("JSONP payload is not an object")
    if field not in data:
        raise InvalidEnvelope(f"JSONP payload has no {field!r} field")

    records = data[field]
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise InvalidEnvelope(f"JSONP field {field!r} is not a list of objects")
    return records
