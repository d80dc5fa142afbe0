"""
Redirect target validation.

The portal hands back ``Location`` headers and anchor hrefs that may be
origin-relative, absolute, or bare relative segments. Only targets on the
portal origin are ever followed.
"""

from __future__ import annotations

import httpx

from nettvwatch.exceptions import RedirectHostMismatch


def _host_of(url: str) -> str:
    return (httpx.URL(url).host or "").lower()


def _path_with_query(url: httpx.URL) -> str:
    path = url.path or "/"
    if url.query:
        return f"{path}?{url.query.decode('ascii')}"
    return path


def resolve_redirect_target(
    location: str,
    origin: str,
    current_url: str | None = None,
) -> str:
    """
    Turn a Location value into an origin-relative path.

    Rules, in order:
      1. Already origin-relative ("/..."): returned unchanged.
      2. Absolute: host must equal the origin host (case-insensitive),
         otherwise RedirectHostMismatch. Returns path + query.
      3. Anything else is a relative segment joined against the directory
         of ``current_url`` (origin root when not given).
    """
    location = (location or "").strip()
    if not location:
        raise RedirectHostMismatch(location)
    if location.startswith("/") and not location.startswith("//"):
        return location

    try:
        target = httpx.URL(location)
    except httpx.InvalidURL as e:
        raise RedirectHostMismatch(location) from e

    if target.scheme or target.host:
        if not target.host or target.host.lower() != _host_of(origin):
            raise RedirectHostMismatch(location)
        return _path_with_query(target)

    base_path = httpx.URL(current_url).path if current_url else "/"
    directory = base_path[: base_path.rfind("/") + 1] or "/"
    joined = httpx.URL(origin).join(directory).join(location)
    return _path_with_query(joined)
