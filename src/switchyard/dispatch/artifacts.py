"""Artifact persistence and alt text.

Providers return either remote URLs (OpenAI) or inline ``data:`` URIs
(Google). An :class:`ArtifactStore` turns the first artifact of a successful
unit into a durable reference.
"""

import asyncio
import base64
import hashlib
import mimetypes
import re
from pathlib import Path
from typing import Protocol

import httpx

from switchyard.dispatch.models import WorkUnit
from switchyard.logging import get_logger

log = get_logger("switchyard.dispatch.artifacts")

ALT_TEXT_MAX_LENGTH = 125

_TECHNICAL_TERMS = re.compile(r"high quality|4k|8k|photorealistic|illustration", re.IGNORECASE)
_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


class ArtifactStore(Protocol):
    """Persists generated artifacts."""

    async def store(self, unit: WorkUnit, artifact_ref: str) -> str:
        """Persist an artifact and return its durable reference."""
        ...


def generate_alt_text(prompt: str) -> str:
    """Derive accessible alt text from a prompt.

    Generation jargon is removed, whitespace collapsed, and the result
    truncated to 125 characters.
    """
    alt = _TECHNICAL_TERMS.sub("", prompt)
    alt = re.sub(r"\s+", " ", alt).strip()
    if len(alt) > ALT_TEXT_MAX_LENGTH:
        alt = alt[: ALT_TEXT_MAX_LENGTH - 3] + "..."
    return alt


def artifact_stem(unit_id: str) -> str:
    """File name (without extension) for a unit's artifact.

    Ids that are already filename-safe are used as-is. Anything else is
    sanitised and suffixed with a short hash of the raw id, so ``a/b`` and
    ``a_b`` never share a file.
    """
    safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", unit_id)
    if safe_id == unit_id:
        return unit_id
    digest = hashlib.sha256(unit_id.encode("utf-8")).hexdigest()[:8]
    return f"{safe_id}-{digest}"


class FileArtifactStore:
    """Writes artifacts to a local directory, one file per work unit."""

    def __init__(self, directory: str | Path, http_client: httpx.AsyncClient | None = None):
        """Initialize the store.

        Args:
            directory: Output directory (created if missing).
            http_client: Client used to download URL artifacts.
        """
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        self._http = http_client or httpx.AsyncClient(timeout=60.0, follow_redirects=True)

    async def store(self, unit: WorkUnit, artifact_ref: str) -> str:
        """Save the artifact and return the file path."""
        match = _DATA_URI.match(artifact_ref)
        if match:
            payload = base64.b64decode(match.group("data"))
            mime = match.group("mime")
        else:
            response = await self._http.get(artifact_ref)
            response.raise_for_status()
            payload = response.content
            mime = response.headers.get("content-type", "image/png").split(";")[0]

        extension = mimetypes.guess_extension(mime) or ".bin"
        path = self._directory / f"{artifact_stem(unit.id)}{extension}"
        await asyncio.to_thread(path.write_bytes, payload)

        log.debug("artifact_stored", unit_id=unit.id, path=str(path), size=len(payload))
        return str(path)

    async def close(self) -> None:
        """Close the download client."""
        await self._http.aclose()
