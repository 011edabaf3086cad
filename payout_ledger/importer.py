"""Bulk stock import: parse ``email:secret`` lists and fetch uploaded files."""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from .config import settings
from .errors import ImportRejected
from .models import Credential

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r?\n")


@dataclass
class ParsedImport:
    """Credentials found in an upload."""
    credentials: List[Credential] = field(default_factory=list)
    lines: int = 0  # non-blank lines read

    @property
    def rejected(self) -> int:
        return self.lines - len(self.credentials)


def parse_credentials(text: str) -> ParsedImport:
    """Parse one ``email:secret`` pair per line.

    Blank lines are ignored. The line is split at the first colon only, so
    secrets may contain colons. Lines without a colon or with an empty side
    are dropped.
    """
    parsed = ParsedImport()
    for raw_line in _LINE_SPLIT.split(text):
        if not raw_line.strip():
            continue
        parsed.lines += 1

        if ":" not in raw_line:
            continue
        email, secret = raw_line.split(":", 1)
        email = email.strip()
        secret = secret.strip()
        if email and secret:
            parsed.credentials.append(Credential(email=email, secret=secret))

    if parsed.rejected:
        logger.debug(f"Dropped {parsed.rejected} malformed line(s) out of {parsed.lines}")
    return parsed


async def fetch_attachment(
    url: str,
    filename: str,
    max_bytes: Optional[int] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Download an uploaded ``.txt`` stock file and return its text.

    Raises:
        ImportRejected: wrong file type, download failure, or file too large.
    """
    if not filename.lower().endswith(".txt"):
        raise ImportRejected("Only .txt files can be imported")

    max_bytes = max_bytes if max_bytes is not None else settings.import_max_bytes
    timeout = timeout if timeout is not None else settings.import_timeout_seconds

    too_large = ImportRejected(f"{filename} is larger than {max_bytes} bytes")
    body = bytearray()
    try:
        async with httpx.AsyncClient(transport=transport) as client:
            async with client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
                if response.status_code != 200:
                    logger.error(f"Stock file download error: {response.status_code} for {filename}")
                    raise ImportRejected(f"Could not download {filename} (HTTP {response.status_code})")

                declared = response.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > max_bytes:
                    raise too_large

                # stop reading as soon as the limit is passed
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > max_bytes:
                        raise too_large
                encoding = response.encoding or "utf-8"
    except httpx.HTTPError as e:
        logger.error(f"Failed to download stock file {filename}: {e}")
        raise ImportRejected(f"Could not download {filename}") from e

    return bytes(body).decode(encoding, errors="replace")
