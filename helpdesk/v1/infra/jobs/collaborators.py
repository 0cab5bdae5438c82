"""
External collaborators the job handlers delegate to.

Handlers only see these protocols; the defaults here are enough for a
single-node deployment and for tests.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from helpdesk.config.logging import get_logger

logger = get_logger(__name__)


class EmailSender(Protocol):
    async def send(
        self, to: str, subject: str, html: str, text: str | None = None
    ) -> None: ...


class LogEmailSender:
    """Development sender: logs the message instead of delivering it."""

    async def send(
        self, to: str, subject: str, html: str, text: str | None = None
    ) -> None:
        logger.info("Email sent (log transport)", to=to, subject=subject)


class HttpEmailSender:
    """Posts messages to an HTTP mail relay as JSON."""

    def __init__(self, url: str, sender: str, timeout: float = 10.0):
        self.url = url
        self.sender = sender
        self.timeout = timeout

    async def send(
        self, to: str, subject: str, html: str, text: str | None = None
    ) -> None:
        payload = {"from": self.sender, "to": to, "subject": subject, "html": html}
        if text is not None:
            payload["text"] = text
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


class BlobStore(Protocol):
    async def put(self, key: str, content: bytes, content_type: str) -> str: ...

    async def get(self, key: str) -> bytes: ...

    async def exists(self, key: str) -> bool: ...

    def url_for(self, key: str) -> str: ...


class LocalBlobStore:
    """Blob store on the local filesystem, served under ``base_url``."""

    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    async def put(self, key: str, content: bytes, content_type: str) -> str:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.debug(
            "Blob stored", key=key, size=len(content), content_type=content_type
        )
        return self.url_for(key)

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._path(key).read_bytes)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).exists)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"


@dataclass(frozen=True)
class ScanVerdict:
    infected: bool
    detail: str | None = None


class AttachmentScanner(Protocol):
    async def scan(self, content: bytes, filename: str) -> ScanVerdict: ...


EICAR_SIGNATURE = b"EICAR-STANDARD-ANTIVIRUS-TEST-FILE"


class SignatureScanner:
    """Matches content against a fixed list of byte signatures."""

    def __init__(self, signatures: dict[str, bytes] | None = None):
        self.signatures = signatures or {"Eicar-Test-Signature": EICAR_SIGNATURE}

    async def scan(self, content: bytes, filename: str) -> ScanVerdict:
        for name, signature in self.signatures.items():
            if signature in content:
                return ScanVerdict(infected=True, detail=name)
        return ScanVerdict(infected=False)
