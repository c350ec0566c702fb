"""
Host-page coupling: configuration lookup, content identifier resolution and
session cookies.

Everything that reads host-page internals lives here so the extractor only
sees a ``ConfigProvider`` and a location string.
"""

import json
import os
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from logging_setup import get_logger

logger = get_logger(__name__)

API_KEY_NAME = "INNERTUBE_API_KEY"

WATCH_PATH = "/watch"
_BARE_VIDEO_ID_RE = re.compile(r'^[A-Za-z0-9_-]{11}$')
_YTCFG_SET_RE = re.compile(r'ytcfg\.set\((\{.*?\})\);', re.DOTALL)


class ConfigProvider(ABC):
    """Read-only access to the host page's runtime configuration."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the configuration value for ``key`` or None when absent."""


class PageConfigProvider(ConfigProvider):
    """
    Provider backed by the page's ``ytcfg`` object.

    Accepts either the raw ``ytcfg`` shape (values under ``data_``) or an
    already-flattened mapping.
    """

    def __init__(self, ytcfg: Optional[Mapping[str, Any]] = None):
        ytcfg = ytcfg or {}
        data = ytcfg.get("data_")
        self._data: Dict[str, Any] = dict(data if isinstance(data, Mapping) else ytcfg)

    def get(self, key: str) -> Optional[str]:
        value = self._data.get(key)
        if value is None or value == "":
            return None
        return str(value)

    @classmethod
    def from_html(cls, html: str) -> 'PageConfigProvider':
        """Collect every ``ytcfg.set({...});`` blob found in a watch page."""
        merged: Dict[str, Any] = {}
        for blob in _YTCFG_SET_RE.findall(html or ""):
            try:
                merged.update(json.loads(blob))
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparsable ytcfg blob ({len(blob)} chars)")
        return cls(merged)


class EnvConfigProvider(ConfigProvider):
    """Provider reading from the process environment, for command-line use."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = os.environ if environ is None else environ

    def get(self, key: str) -> Optional[str]:
        return self._environ.get(key) or None


def is_watch_page(location: str) -> bool:
    """True when the location's path is exactly the watch page."""
    try:
        return urlparse(location).path == WATCH_PATH
    except ValueError:
        return False


def resolve_video_id(location: str) -> Optional[str]:
    """
    Return the content identifier (the ``v`` query parameter) of a location.

    A bare 11-character id is returned unchanged.
    """
    if not location:
        return None

    location = location.strip()
    if _BARE_VIDEO_ID_RE.match(location):
        return location

    try:
        query = parse_qs(urlparse(location).query)
    except ValueError:
        return None

    values = query.get("v")
    return values[0] if values and values[0] else None


def mask_secret(value: Optional[str], keep: int = 6) -> str:
    """Show only the first characters of a secret in logs."""
    if not value:
        return "none"
    return f"{value[:keep]}..." if len(value) > keep else "***"


# --- Session cookies ---

def parse_cookie_header(header: str) -> Dict[str, str]:
    """Parse a ``Cookie:`` header style string (``a=1; b=2``)."""
    cookies = {}
    for pair in (header or "").split(";"):
        if "=" not in pair:
            continue
        name, value = pair.split("=", 1)
        if name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def parse_netscape_cookies_txt(raw: str) -> List[dict]:
    """
    Return a list of rows with keys:
    domain, path, secure, expires, name, value
    """
    rows = []
    for line in raw.splitlines():
        line = line.strip()
        # "#HttpOnly_" prefixed lines are real cookies, other comments are skipped
        if line.startswith("#HttpOnly_"):
            line = line[len("#HttpOnly_"):]
        elif not line or line.startswith("#"):
            continue
        parts = line.split("\t")
        if len(parts) != 7:
            continue
        domain, _include_sub, path, secure, expires, name, value = parts
        rows.append({
            "domain": domain,
            "path": path or "/",
            "secure": secure.upper() == "TRUE",
            "expires": int(expires) if expires.isdigit() else 0,
            "name": name,
            "value": value,
        })
    return rows


def load_cookies(cookie_header: Optional[str] = None, cookies_file: Optional[str] = None) -> httpx.Cookies:
    """
    Build the session cookie jar attached to both upstream requests.

    Expired rows from a cookies.txt file are dropped.
    """
    jar = httpx.Cookies()

    if cookies_file:
        with open(cookies_file, encoding="utf-8") as fh:
            rows = parse_netscape_cookies_txt(fh.read())
        now = int(time.time())
        for row in rows:
            if row["expires"] and row["expires"] < now:
                continue
            jar.set(row["name"], row["value"], domain=row["domain"], path=row["path"])
        logger.info(f"Loaded {len(jar)} cookies from {os.path.basename(cookies_file)}")

    if cookie_header:
        for name, value in parse_cookie_header(cookie_header).items():
            jar.set(name, value)

    return jar
