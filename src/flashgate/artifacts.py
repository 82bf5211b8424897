"""Artifact fetch, verification and staging."""

import hashlib
import logging
from pathlib import Path
from typing import Iterable, Optional

import httpx

from flashgate.engine.errors import (
    ArtifactError,
    ChecksumMismatch,
    SymlinkDetected,
    ToolExecutionError,
)
from flashgate.runner import CommandRunner

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def file_md5(path: Path) -> str:
    """Compute the hex MD5 digest of a file."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path: Path, expected: Optional[str]) -> bool:
    """Check a file against an expected MD5; an absent checksum never matches a cached file."""
    if not expected:
        return False
    try:
        return file_md5(path) == expected.lower()
    except OSError as e:
        raise ArtifactError(f"Failed to read {path} to calculate md5: {e}") from e


def verify_no_symlinks(paths: Iterable[Path]) -> None:
    """Ensure staged files exist and are regular entries, not symbolic links."""
    for path in paths:
        if not path.exists() and not path.is_symlink():
            raise ArtifactError(f"Expected file missing from update package: {path}")
        if path.is_symlink():
            raise SymlinkDetected(str(path))


class ArtifactStore:
    """
    Fetches update packages over HTTP and caches them on local disk.

    A cached file is reused only when a checksum is declared and matches;
    otherwise it is removed and downloaded again.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 300,
        connect_retries: int = 3,
        tar_path: str = "tar",
    ):
        self.runner = runner
        self.tar_path = tar_path
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=httpx.AsyncHTTPTransport(retries=connect_retries),
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client if this store created it."""
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def ensure_folder(path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    async def fetch(self, url: str, dest: Path, checksum: Optional[str] = None) -> Path:
        """Return a verified local copy of ``url`` at ``dest``."""
        if dest.exists():
            if verify_checksum(dest, checksum):
                logger.debug(f"Image already downloaded: {dest}")
                return dest
            try:
                dest.unlink()
            except OSError as e:
                raise ArtifactError(f"Unable to remove old image file: {dest}") from e

        self.ensure_folder(dest.parent)
        logger.info(f"Downloading image from {url}")
        await self._download(url, dest)

        if checksum:
            actual = file_md5(dest)
            if actual != checksum.lower():
                dest.unlink(missing_ok=True)
                raise ChecksumMismatch(url, checksum, actual)
        return dest

    async def _download(self, url: str, dest: Path) -> None:
        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise ArtifactError(
                        f"Unable to download image from: {url} status: {response.status_code}"
                    )
                with open(dest, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPError as e:
            dest.unlink(missing_ok=True)
            raise ArtifactError(f"Unable to download image from: {url}: {e}") from e

    async def extract(self, package: Path, dest: Path) -> None:
        """Unpack a gzip tarball into ``dest``."""
        logger.debug(f"Extracting {package} into {dest}")
        try:
            await self.runner.run([self.tar_path, "xzf", str(package), "-C", str(dest)])
        except ToolExecutionError as e:
            raise ArtifactError(f"Unable to extract {package}: {e.output or e.message}") from e
