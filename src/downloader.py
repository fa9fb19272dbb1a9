"""
Acquisition layer: fetches videos from Telegram, direct URLs and Google Drive
into the scratch directory.
"""
import os
import re
import time
import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import httpx

from src.config import Settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024  # 64KB
DOWNLOAD_TIMEOUT = 300.0  # 5 minutes
HEAD_TIMEOUT = 10.0
MAX_REDIRECTS = 5
DEFAULT_MIME_TYPE = "video/mp4"
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

DRIVE_ID_PATTERNS = [
    re.compile(r'/d/([^/?#&]+)'),
    re.compile(r'id=([^&#]+)'),
    re.compile(r'/file/d/([^/?#&]+)'),
    re.compile(r'drive\.google\.com/open\?id=([^&#]+)'),
]
DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"


class DownloadError(Exception):
    """Raised inside the downloader when a transfer has to be abandoned."""


@dataclass
class TransferProgress:
    """Last known percentage of a transfer. Left untouched when the total size is unknown."""
    percent: int = 0

    def update(self, done: int, total: int) -> None:
        if total > 0:
            self.percent = min(100, round(done / total * 100))

    def reset(self) -> None:
        self.percent = 0


@dataclass
class DownloadResult:
    success: bool
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    size: int = 0
    mime_type: Optional[str] = None
    error: Optional[str] = None


def extract_drive_file_id(url: str) -> Optional[str]:
    """
    Pull the file id out of a Google Drive share link.

    Recognizes ``/d/<id>``, ``?id=<id>``, ``/file/d/<id>`` and ``open?id=<id>``.
    """
    for pattern in DRIVE_ID_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1):
            return match.group(1)
    return None


def is_drive_url(url: str) -> bool:
    return "drive.google.com" in url


def _format_mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f}MB"


class FileDownloader:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.temp_dir = Path(settings.temp_dir)
        self.max_size = settings.max_file_size
        self.allowed_extensions = [e.lower() for e in settings.allowed_extensions]
        self._transport = transport
        self.ensure_dirs()

    def ensure_dirs(self):
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        Path(self.settings.uploads_dir).mkdir(parents=True, exist_ok=True)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )

    @staticmethod
    def get_file_extension(filename: str) -> str:
        return os.path.splitext(filename)[1].lower()

    def is_valid_extension(self, filename: str) -> bool:
        return self.get_file_extension(filename) in self.allowed_extensions

    def _too_large_message(self, size: int) -> str:
        return f"File too large: {_format_mb(size)} (max: {self.settings.max_file_size_mb:g}MB)"

    def _resolve_mime_type(self, content_type: Optional[str], file_name: str) -> str:
        mime = (content_type or "").split(';')[0].strip().lower()
        if mime.startswith("video/"):
            return mime
        guessed, _ = mimetypes.guess_type(file_name)
        if guessed and guessed.startswith("video/"):
            return guessed
        return DEFAULT_MIME_TYPE

    async def _stream_to_file(
        self,
        client: httpx.AsyncClient,
        url: str,
        file_path: Path,
        progress: Optional[TransferProgress],
        headers: Optional[dict] = None,
    ) -> Tuple[int, Optional[str]]:
        """Stream ``url`` into ``file_path``, enforcing the size ceiling as bytes arrive."""
        async with client.stream("GET", url, headers=headers) as r:
            r.raise_for_status()

            total = None
            declared = r.headers.get("content-length")
            if declared and declared.isdigit():
                total = int(declared)
                if total > self.max_size:
                    raise DownloadError(self._too_large_message(total))

            downloaded = 0
            async with aiofiles.open(file_path, "wb") as f:
                async for chunk in r.aiter_bytes(chunk_size=CHUNK_SIZE):
                    downloaded += len(chunk)
                    if downloaded > self.max_size:
                        raise DownloadError(self._too_large_message(downloaded))
                    await f.write(chunk)
                    if total and progress is not None:
                        progress.update(downloaded, total)

            return downloaded, r.headers.get("content-type")

    async def _download(
        self,
        url: str,
        file_name: str,
        progress: Optional[TransferProgress],
        headers: Optional[dict] = None,
    ) -> DownloadResult:
        if not self.is_valid_extension(file_name):
            raise DownloadError(
                f"Unsupported file format: {self.get_file_extension(file_name) or 'none'}"
            )

        file_path = self.temp_dir / file_name
        try:
            async with self._client(DOWNLOAD_TIMEOUT) as client:
                size, content_type = await self._stream_to_file(client, url, file_path, progress, headers)

            if size == 0:
                raise DownloadError("Downloaded file is empty")
        except Exception:
            await self.cleanup(file_path)
            raise

        return DownloadResult(
            success=True,
            file_path=str(file_path),
            file_name=file_path.name,
            size=size,
            mime_type=self._resolve_mime_type(content_type, file_name),
        )

    async def download_telegram_file(
        self,
        file_url: str,
        file_name: str,
        progress: Optional[TransferProgress] = None,
    ) -> DownloadResult:
        """
        Download a file the user attached in chat.

        Args:
            file_url: Telegram file download URL
            file_name: Unique destination name inside the scratch directory
            progress: Updated in place while the transfer runs

        Returns:
            DownloadResult describing the local file or the failure
        """
        logger.info(f"📥 Downloading Telegram file: {file_name}")
        try:
            return await self._download(file_url, file_name, progress)
        except (DownloadError, httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            logger.error(f"❌ Download error: {e}")
            return DownloadResult(success=False, error=f"Download failed: {e}")

    async def _probe_content_type(self, url: str) -> str:
        try:
            async with self._client(HEAD_TIMEOUT) as client:
                resp = await client.head(url)
                return resp.headers.get("content-type", "")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"HEAD probe failed for {url}: {e}")
            return ""

    async def download_direct_url(
        self,
        url: str,
        file_name: Optional[str] = None,
        progress: Optional[TransferProgress] = None,
    ) -> DownloadResult:
        if not url.startswith(("http://", "https://")):
            return DownloadResult(success=False, error="Invalid URL")

        file_name = file_name or f"direct_{int(time.time() * 1000)}.mp4"
        if not self.is_valid_extension(file_name):
            return DownloadResult(
                success=False,
                error=f"URL download failed: Unsupported file format: {self.get_file_extension(file_name) or 'none'}",
            )

        logger.info(f"🔗 Downloading from URL: {url}")

        try:
            content_type = await self._probe_content_type(url)
            if "video" not in content_type:
                logger.warning(f"⚠️ Content-Type not video: {content_type!r}")

            return await self._download(url, file_name, progress, headers={"Accept": "video/*, */*"})
        except (DownloadError, httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            logger.error(f"❌ URL download error: {e}")
            return DownloadResult(success=False, error=f"URL download failed: {e}")

    async def download_google_drive(
        self,
        url: str,
        file_name: Optional[str] = None,
        progress: Optional[TransferProgress] = None,
    ) -> DownloadResult:
        file_id = extract_drive_file_id(url)
        if not file_id:
            return DownloadResult(success=False, error="Invalid Google Drive URL format")

        logger.info(f"☁️ Downloading Google Drive file ID: {file_id}")
        return await self.download_direct_url(
            DRIVE_DOWNLOAD_URL.format(file_id=file_id),
            file_name or f"gdrive_{int(time.time() * 1000)}.mp4",
            progress,
        )

    async def cleanup(self, file_path) -> None:
        """Remove a scratch file. Safe to call repeatedly; never raises."""
        if not file_path:
            return
        try:
            path = Path(file_path)
            if path.exists():
                await asyncio.to_thread(path.unlink)
                logger.info(f"🧹 Cleaned up: {path}")
        except OSError as e:
            logger.error(f"Cleanup error for {file_path}: {e}")

    async def cleanup_old_files(self, max_age_hours: Optional[float] = None) -> int:
        """Delete scratch files older than ``max_age_hours``. Returns the number removed."""
        if max_age_hours is None:
            max_age_hours = self.settings.cleanup_max_age_hours
        max_age = max_age_hours * 3600
        now = time.time()
        count = 0

        if not self.temp_dir.exists():
            return 0

        for item in self.temp_dir.iterdir():
            try:
                if item.is_file() and now - item.stat().st_mtime > max_age:
                    item.unlink()
                    logger.info(f"🧹 Cleaned up old file: {item.name}")
                    count += 1
            except OSError as e:
                logger.error(f"Failed to delete {item.name}: {e}")

        if count > 0:
            logger.info(f"✅ Cleanup complete. Removed {count} files.")
        return count

    async def run_periodic_cleanup(self, interval_minutes: Optional[float] = None):
        """Sweep the scratch directory forever. Meant to run as a background task."""
        if interval_minutes is None:
            interval_minutes = self.settings.cleanup_interval_minutes
        logger.info(f"🧹 Scratch sweep every {interval_minutes} min "
                    f"(max age {self.settings.cleanup_max_age_hours}h)")
        while True:
            try:
                await self.cleanup_old_files()
            except Exception as e:
                logger.error(f"Cleanup error: {e}")
            await asyncio.sleep(interval_minutes * 60)

    def scratch_usage(self) -> Tuple[int, int]:
        """Return (file count, total bytes) currently held in the scratch directory."""
        count = 0
        total = 0
        if not self.temp_dir.exists():
            return 0, 0
        for item in self.temp_dir.iterdir():
            try:
                if item.is_file():
                    count += 1
                    total += item.stat().st_size
            except OSError:
                continue
        return count, total
