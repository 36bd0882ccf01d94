"""
Connection utilities for the console API client.

Timeout, connector and cookie jar factories for the aiohttp session that
carries the console's credentials.
"""

import logging
from pathlib import Path
from typing import Optional

import aiohttp

from .config import get_int_env

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = get_int_env("HMS_REQUEST_TIMEOUT", 30)  # seconds


def create_timeout(total: float = REQUEST_TIMEOUT) -> aiohttp.ClientTimeout:
    """
    Create a ClientTimeout for API requests.

    Args:
        total: Upper bound for a whole request in seconds. 0 disables it.
    """
    return aiohttp.ClientTimeout(total=total or None)


def create_connector() -> aiohttp.TCPConnector:
    return aiohttp.TCPConnector()


def create_cookie_jar(path: Optional[Path] = None) -> aiohttp.CookieJar:
    """
    Create the cookie jar holding the session credentials.

    Args:
        path: Optional file previously written by ``CookieJar.save``. A
              missing or unreadable file yields an empty jar.
    """
    # unsafe=True keeps cookies issued by IP-addressed hosts (local backends)
    jar = aiohttp.CookieJar(unsafe=True)
    if path is not None and Path(path).exists():
        try:
            jar.load(path)
        except Exception as e:
            logger.warning(f"Ignoring unreadable cookie file {path}: {e}")
            jar.clear()
    return jar
