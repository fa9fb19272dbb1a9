import os
import time
import pytest
import httpx
from src.config import Settings
from src.downloader import FileDownloader, TransferProgress, extract_drive_file_id

MAX_SIZE = 1024


@pytest.fixture
def settings(tmp_path):
    return Settings(
        temp_dir=tmp_path / "temp",
        uploads_dir=tmp_path / "uploads",
        auth_dir=tmp_path / "auth",
        max_file_size=MAX_SIZE,
    )


def make_downloader(settings, handler):
    return FileDownloader(settings, transport=httpx.MockTransport(handler))


def video_response(body: bytes, content_type="video/mp4"):
    return httpx.Response(200, headers={"content-type": content_type}, content=body)


def chunked_response(body: bytes):
    async def stream():
        for i in range(0, len(body), 100):
            yield body[i:i + 100]
    return httpx.Response(200, headers={"content-type": "video/mp4"}, content=stream())


@pytest.mark.parametrize("url", [
    "https://drive.google.com/file/d/ABC123/view",
    "https://drive.google.com/file/d/ABC123/view?usp=sharing",
    "https://drive.google.com/open?id=ABC123",
    "https://drive.google.com/uc?id=ABC123&export=download",
    "https://drive.google.com/d/ABC123",
])
def test_extract_drive_file_id(url):
    assert extract_drive_file_id(url) == "ABC123"


def test_extract_drive_file_id_no_match():
    assert extract_drive_file_id("https://drive.google.com/drive/folders") is None


def test_extension_validation(settings):
    downloader = FileDownloader(settings)
    assert downloader.is_valid_extension("clip.MP4")
    assert downloader.is_valid_extension("movie.webm")
    assert not downloader.is_valid_extension("notes.txt")
    assert not downloader.is_valid_extension("noextension")


@pytest.mark.asyncio
async def test_download_exactly_at_max_size_succeeds(settings):
    body = b"x" * MAX_SIZE
    downloader = make_downloader(settings, lambda request: video_response(body))
    progress = TransferProgress()

    result = await downloader.download_telegram_file("https://files.test/video.mp4", "a.mp4", progress)

    assert result.success
    assert result.size == MAX_SIZE
    assert result.mime_type == "video/mp4"
    assert os.path.getsize(result.file_path) == MAX_SIZE
    assert progress.percent == 100


@pytest.mark.asyncio
async def test_download_one_byte_over_declared_size_fails(settings):
    downloader = make_downloader(settings, lambda request: video_response(b"x" * (MAX_SIZE + 1)))

    result = await downloader.download_telegram_file("https://files.test/video.mp4", "b.mp4")

    assert not result.success
    assert "File too large" in result.error
    assert "MB" in result.error
    assert not (settings.temp_dir / "b.mp4").exists()


@pytest.mark.asyncio
async def test_download_over_size_without_content_length_removes_partial(settings):
    downloader = make_downloader(settings, lambda request: chunked_response(b"x" * (MAX_SIZE + 1)))
    progress = TransferProgress()

    result = await downloader.download_telegram_file("https://files.test/video.mp4", "c.mp4", progress)

    assert not result.success
    assert "File too large" in result.error
    assert not (settings.temp_dir / "c.mp4").exists()
    # size was never known, so no progress was reported
    assert progress.percent == 0


@pytest.mark.asyncio
async def test_download_empty_file_rejected(settings):
    downloader = make_downloader(settings, lambda request: video_response(b""))

    result = await downloader.download_telegram_file("https://files.test/video.mp4", "d.mp4")

    assert not result.success
    assert "empty" in result.error
    assert not (settings.temp_dir / "d.mp4").exists()


@pytest.mark.asyncio
async def test_download_http_error(settings):
    downloader = make_downloader(settings, lambda request: httpx.Response(404))

    result = await downloader.download_telegram_file("https://files.test/missing.mp4", "e.mp4")

    assert not result.success
    assert result.error.startswith("Download failed")


@pytest.mark.asyncio
async def test_invalid_extension_rejected_before_any_request(settings):
    calls = []

    def handler(request):
        calls.append(request)
        return video_response(b"data")

    downloader = make_downloader(settings, handler)
    result = await downloader.download_direct_url("https://files.test/archive", "archive.zip")

    assert not result.success
    assert "Unsupported file format" in result.error
    assert calls == []


@pytest.mark.asyncio
async def test_direct_url_rejects_non_http(settings):
    downloader = make_downloader(settings, lambda request: video_response(b"data"))
    result = await downloader.download_direct_url("ftp://files.test/video.mp4")
    assert not result.success
    assert result.error == "Invalid URL"


@pytest.mark.asyncio
async def test_direct_url_non_video_content_type_is_only_a_warning(settings):
    def handler(request):
        return httpx.Response(200, headers={"content-type": "application/octet-stream"}, content=b"abc")

    downloader = make_downloader(settings, handler)
    result = await downloader.download_direct_url("https://files.test/v", "url_1.mp4")

    assert result.success
    assert result.mime_type == "video/mp4"


@pytest.mark.asyncio
async def test_direct_url_follows_redirects(settings):
    def handler(request):
        if request.url.path == "/start":
            return httpx.Response(302, headers={"location": "https://cdn.test/final.mp4"})
        return video_response(b"video-bytes")

    downloader = make_downloader(settings, handler)
    result = await downloader.download_direct_url("https://files.test/start", "url_2.mp4")

    assert result.success
    assert result.size == len(b"video-bytes")


@pytest.mark.asyncio
async def test_direct_url_too_many_redirects(settings):
    def handler(request):
        n = int(request.url.path.strip("/") or 0)
        return httpx.Response(302, headers={"location": f"https://files.test/{n + 1}"})

    downloader = make_downloader(settings, handler)
    result = await downloader.download_direct_url("https://files.test/0", "url_3.mp4")

    assert not result.success
    assert not (settings.temp_dir / "url_3.mp4").exists()


@pytest.mark.asyncio
async def test_direct_url_with_unparseable_port_fails_cleanly(settings):
    calls = []

    def handler(request):
        calls.append(request)
        return video_response(b"data")

    downloader = make_downloader(settings, handler)
    result = await downloader.download_direct_url("http://example.com:abc/v.mp4", "url_4.mp4")

    assert not result.success
    assert result.error.startswith("URL download failed: ")
    assert calls == []
    assert not (settings.temp_dir / "url_4.mp4").exists()


@pytest.mark.asyncio
async def test_drive_link_rewritten_to_direct_download(settings):
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return video_response(b"drive-video")

    downloader = make_downloader(settings, handler)
    result = await downloader.download_google_drive("https://drive.google.com/file/d/ABC123/view", "gdrive_1.mp4")

    assert result.success
    assert all("uc?export=download&id=ABC123" in url for url in seen)


@pytest.mark.asyncio
async def test_malformed_drive_link_makes_no_network_calls(settings):
    calls = []

    def handler(request):
        calls.append(request)
        return video_response(b"data")

    downloader = make_downloader(settings, handler)
    result = await downloader.download_google_drive("https://drive.google.com/drive/my-drive")

    assert not result.success
    assert result.error == "Invalid Google Drive URL format"
    assert calls == []


@pytest.mark.asyncio
async def test_cleanup_is_idempotent(settings):
    downloader = FileDownloader(settings)
    path = settings.temp_dir / "leftover.mp4"
    path.write_bytes(b"data")

    await downloader.cleanup(str(path))
    await downloader.cleanup(str(path))
    await downloader.cleanup(None)

    assert not path.exists()


@pytest.mark.asyncio
async def test_cleanup_old_files(settings):
    downloader = FileDownloader(settings)
    old = settings.temp_dir / "old.mp4"
    fresh = settings.temp_dir / "fresh.mp4"
    old.write_bytes(b"old")
    fresh.write_bytes(b"fresh")
    two_days_ago = time.time() - 48 * 3600
    os.utime(old, (two_days_ago, two_days_ago))

    removed = await downloader.cleanup_old_files(24)

    assert removed == 1
    assert not old.exists()
    assert fresh.exists()
    assert downloader.scratch_usage() == (1, len(b"fresh"))
