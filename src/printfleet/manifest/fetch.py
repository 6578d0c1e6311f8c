"""Manifest retrieval from local paths or HTTP(S) object storage."""
import logging
import os
from pathlib import Path
from typing import Optional

import httpx

from ..errors import ManifestError
from .loader import Manifest, parse_manifest_text, read_manifest_file

logger = logging.getLogger(__name__)

TOKEN_ENV = "PRINTFLEET_MANIFEST_TOKEN"
DEFAULT_TIMEOUT = 30.0


def is_remote(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


async def fetch_manifest_text(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    token: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[str, str]:
    """
    Download a manifest over HTTP(S).

    Args:
        url: Manifest URL (e.g. a pre-signed object storage link)
        timeout: Request timeout in seconds
        token: Optional bearer token, defaults to PRINTFLEET_MANIFEST_TOKEN
        client: Existing client to use (mainly for tests)

    Returns:
        Tuple of (body text, content type)

    Raises:
        ManifestError: On network errors or non-2xx responses
    """
    token = token if token is not None else os.environ.get(TOKEN_ENV)
    headers = {"Authorization": f"Bearer {token}"} if token else {}

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )

    try:
        logger.info(f"Fetching manifest from {url.split('?', 1)[0]}")
        resp = await client.get(url, headers=headers)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ManifestError(
            f"Manifest download failed: HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise ManifestError(f"Manifest download failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    return resp.text, resp.headers.get("content-type", "")


async def load_manifest(
    source: str,
    timeout: float = DEFAULT_TIMEOUT,
    client: Optional[httpx.AsyncClient] = None,
) -> Manifest:
    """Load a manifest from a URL or a local file path."""
    if is_remote(source):
        text, content_type = await fetch_manifest_text(source, timeout=timeout, client=client)
        return parse_manifest_text(text, source.split("?", 1)[0], content_type)
    return read_manifest_file(Path(source))
