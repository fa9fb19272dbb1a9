"""
YouTube upload gateway: Google OAuth exchange, auth probe, channel lookup and
the create-video call.

The Google client libraries are synchronous, so every call runs in the default
executor to keep the bot responsive for other users.
"""
import os
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import List, Optional, Tuple

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from src.config import Settings
from src.credential_store import CredentialStore
from src.downloader import TransferProgress
from src.session import VideoInfo

# Google may hand back a superset of the requested scopes when
# include_granted_scopes is set; oauthlib treats that as an error otherwise.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

YOUTUBE_API_SERVICE_NAME = "youtube"
YOUTUBE_API_VERSION = "v3"

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
MAX_TAGS = 30
DEFAULT_PRIVACY_STATUS = "private"
DEFAULT_CATEGORY_ID = "22"  # People & Blogs
DEFAULT_MIME_TYPE = "video/mp4"
VIDEO_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"

NOT_AUTHENTICATED_ERROR = "User not authenticated. Please use /auth first."


@dataclass
class AuthResult:
    success: bool
    user_id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UploadResult:
    success: bool
    video_id: Optional[str] = None
    video_url: Optional[str] = None
    title: Optional[str] = None
    privacy_status: Optional[str] = None
    thumbnail: Optional[str] = None
    error: Optional[str] = None


def parse_tags(raw: Optional[str]) -> List[str]:
    """Split a comma-separated tag string into at most 30 trimmed, non-empty tags."""
    if not raw:
        return []
    tags = [tag.strip() for tag in raw.split(',')]
    return [tag for tag in tags if tag][:MAX_TAGS]


def build_video_metadata(video_info: VideoInfo) -> dict:
    """Request body for ``videos.insert``. Length limits are applied here and nowhere earlier."""
    title = (video_info.title or "")[:MAX_TITLE_LENGTH]
    description = (video_info.description or "")[:MAX_DESCRIPTION_LENGTH]

    return {
        "snippet": {
            "title": title,
            "description": description,
            "tags": parse_tags(video_info.tags),
            "categoryId": video_info.category_id or DEFAULT_CATEGORY_ID,
        },
        "status": {
            "privacyStatus": video_info.privacy_status or DEFAULT_PRIVACY_STATUS,
            "selfDeclaredMadeForKids": False,
        },
    }


def _describe_http_error(e: HttpError) -> str:
    reason = getattr(e, "reason", None) or str(e)
    return f"YouTube API error: {reason}"


class YouTubeUploader:
    """Wraps the YouTube Data API v3 for one bot process serving many users."""

    def __init__(self, settings: Settings, credential_store: CredentialStore):
        self.settings = settings
        self.credential_store = credential_store

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def _client_config(self) -> dict:
        return {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.settings.google_redirect_uri],
            }
        }

    def _new_flow(self) -> Flow:
        # The code is exchanged by a different Flow instance than the one that
        # built the URL, so PKCE verifiers cannot be carried across.
        return Flow.from_client_config(
            self._client_config(),
            scopes=self.settings.scopes,
            redirect_uri=self.settings.google_redirect_uri,
            autogenerate_code_verifier=False,
        )

    def get_auth_url(self, user_id: int) -> str:
        flow = self._new_flow()
        url, _state = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=str(user_id),
            include_granted_scopes="true",
        )
        return url

    def _credentials_from_tokens(self, tokens: dict) -> Credentials:
        expiry = None
        if tokens.get("expiry"):
            try:
                expiry = datetime.fromisoformat(tokens["expiry"])
            except ValueError:
                logger.warning(f"Ignoring malformed token expiry for user {tokens.get('user_id')}")

        scope = tokens.get("scope")
        return Credentials(
            token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            token_uri=TOKEN_URI,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            scopes=scope.split() if scope else None,
            expiry=expiry,
        )

    @staticmethod
    def _tokens_from_credentials(credentials: Credentials, token_type: str = "Bearer") -> dict:
        return {
            "access_token": credentials.token,
            "refresh_token": credentials.refresh_token,
            "expiry": credentials.expiry.isoformat() if credentials.expiry else None,
            "scope": " ".join(credentials.scopes or []),
            "token_type": token_type,
        }

    async def _load_credentials(self, user_id: int) -> Tuple[Optional[dict], Optional[Credentials]]:
        tokens = await self.credential_store.get(user_id)
        if not tokens:
            return None, None
        return tokens, self._credentials_from_tokens(tokens)

    async def _persist_refreshed(self, user_id: int, tokens: dict, credentials: Credentials) -> None:
        """Write back an access token google-auth refreshed during the call."""
        if credentials.token and credentials.token != tokens.get("access_token"):
            refreshed = self._tokens_from_credentials(credentials, tokens.get("token_type", "Bearer"))
            refreshed["refresh_token"] = refreshed["refresh_token"] or tokens.get("refresh_token")
            await self.credential_store.save(user_id, refreshed)
            logger.info(f"🔄 Stored refreshed access token for user {user_id}")

    async def handle_auth_callback(self, code: str, user_id: int) -> AuthResult:
        """
        Exchange an authorization code for tokens and store them.

        Args:
            code: Code the user pasted from the OAuth redirect page
            user_id: Telegram user ID

        Returns:
            AuthResult with the Google profile name/email, or the error
        """
        loop = asyncio.get_running_loop()
        try:
            flow = self._new_flow()
            await loop.run_in_executor(None, partial(flow.fetch_token, code=code.strip()))
            credentials = flow.credentials

            oauth2 = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
            user_info = await loop.run_in_executor(None, oauth2.userinfo().get().execute)

            token_type = flow.oauth2session.token.get("token_type", "Bearer")
            saved = await self.credential_store.save(
                user_id, self._tokens_from_credentials(credentials, token_type)
            )
            if not saved:
                return AuthResult(success=False, error="Could not store credentials")

            logger.info(f"✅ User {user_id} authenticated as {user_info.get('email')}")
            return AuthResult(
                success=True,
                user_id=user_id,
                email=user_info.get("email"),
                name=user_info.get("name"),
                picture=user_info.get("picture"),
            )
        except Exception as e:
            logger.error(f"❌ Auth callback error for user {user_id}: {e}")
            return AuthResult(success=False, error=str(e))

    # ------------------------------------------------------------------
    # YouTube API
    # ------------------------------------------------------------------

    def _youtube(self, credentials: Credentials):
        return build(
            YOUTUBE_API_SERVICE_NAME,
            YOUTUBE_API_VERSION,
            credentials=credentials,
            cache_discovery=False,
        )

    async def check_auth(self, user_id: int) -> bool:
        """Probe the API with the stored credentials. Any failure counts as not authenticated."""
        try:
            tokens, credentials = await self._load_credentials(user_id)
            if credentials is None:
                return False

            youtube = self._youtube(credentials)
            request = youtube.channels().list(part="snippet", mine=True, maxResults=1)
            await asyncio.get_running_loop().run_in_executor(None, request.execute)
            await self._persist_refreshed(user_id, tokens, credentials)
            return True
        except Exception as e:
            logger.warning(f"Auth check failed for user {user_id}: {e}")
            return False

    async def get_channel_info(self, user_id: int) -> Optional[dict]:
        try:
            tokens, credentials = await self._load_credentials(user_id)
            if credentials is None:
                return None

            youtube = self._youtube(credentials)
            request = youtube.channels().list(part="snippet,statistics", mine=True)
            response = await asyncio.get_running_loop().run_in_executor(None, request.execute)
            await self._persist_refreshed(user_id, tokens, credentials)

            items = response.get("items") or []
            return items[0] if items else None
        except Exception as e:
            logger.error(f"❌ Get channel error for user {user_id}: {e}")
            return None

    async def upload_video(
        self,
        user_id: int,
        video_info: VideoInfo,
        progress: Optional[TransferProgress] = None,
    ) -> UploadResult:
        """
        Create one video on the user's channel. Exactly one attempt, no retries.

        Args:
            user_id: Telegram user ID whose stored credentials are used
            video_info: Collected metadata plus the local file path
            progress: Set to 100 once the upload completes

        Returns:
            UploadResult with the new video id and URL, or the error
        """
        try:
            tokens, credentials = await self._load_credentials(user_id)
            if credentials is None:
                return UploadResult(success=False, error=NOT_AUTHENTICATED_ERROR)

            if not video_info.file_path or not os.path.exists(video_info.file_path):
                return UploadResult(success=False, error=f"Video file not found: {video_info.file_path}")

            body = build_video_metadata(video_info)
            media = MediaFileUpload(
                video_info.file_path,
                mimetype=video_info.mime_type or DEFAULT_MIME_TYPE,
                resumable=False,
            )

            logger.info(f"📤 Uploading video for user {user_id}: {body['snippet']['title']}")

            youtube = self._youtube(credentials)
            request = youtube.videos().insert(part="snippet,status", body=body, media_body=media)
            response = await asyncio.get_running_loop().run_in_executor(None, request.execute)
            await self._persist_refreshed(user_id, tokens, credentials)

            video_id = response["id"]
            video_url = VIDEO_URL_TEMPLATE.format(video_id=video_id)
            snippet = response.get("snippet") or {}
            status = response.get("status") or {}

            if progress is not None:
                progress.update(1, 1)

            logger.info(f"✅ Upload successful: {video_url}")
            return UploadResult(
                success=True,
                video_id=video_id,
                video_url=video_url,
                title=snippet.get("title", body["snippet"]["title"]),
                privacy_status=status.get("privacyStatus", body["status"]["privacyStatus"]),
                thumbnail=((snippet.get("thumbnails") or {}).get("default") or {}).get("url"),
            )
        except HttpError as e:
            error_msg = _describe_http_error(e)
            logger.error(f"❌ YouTube upload error for user {user_id}: {error_msg}")
            return UploadResult(success=False, error=error_msg)
        except Exception as e:
            logger.error(f"❌ Unexpected upload error for user {user_id}: {e}", exc_info=True)
            return UploadResult(success=False, error=str(e))

    async def delete_tokens(self, user_id: int) -> bool:
        return await self.credential_store.delete(user_id)

    async def get_all_users(self) -> List[str]:
        return await self.credential_store.list_user_ids()
