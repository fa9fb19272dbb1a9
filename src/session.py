"""
Per-user conversation state and the in-memory store that holds it.
"""
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from src.downloader import TransferProgress

logger = logging.getLogger(__name__)


class Step(Enum):
    """Main upload flow steps."""
    IDLE = "idle"
    AWAITING_VIDEO = "awaiting_video"
    DOWNLOADING = "downloading"
    AWAITING_TITLE = "awaiting_title"
    AWAITING_DESCRIPTION = "awaiting_description"
    AWAITING_PRIVACY = "awaiting_privacy"
    AWAITING_TAGS = "awaiting_tags"
    UPLOADING = "uploading"


class AuthStep(Enum):
    AWAITING_CODE = "awaiting_code"


class PrivacyStatus(Enum):
    PRIVATE = "private"
    UNLISTED = "unlisted"
    PUBLIC = "public"


@dataclass
class VideoInfo:
    """Metadata collected during one upload flow."""
    title: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[str] = None  # raw comma-separated input
    privacy_status: Optional[str] = None
    category_id: Optional[str] = None
    mime_type: Optional[str] = None
    size: int = 0
    file_path: Optional[str] = None


@dataclass
class Session:
    user_id: int
    is_admin: bool = False
    step: Step = Step.IDLE
    auth_step: Optional[AuthStep] = None
    video_info: VideoInfo = field(default_factory=VideoInfo)
    download: TransferProgress = field(default_factory=TransferProgress)
    upload: TransferProgress = field(default_factory=TransferProgress)
    last_activity: float = field(default_factory=time.time)
    flow_id: int = 0

    @property
    def file_path(self) -> Optional[str]:
        return self.video_info.file_path

    @property
    def download_progress(self) -> int:
        return self.download.percent

    @property
    def upload_progress(self) -> int:
        return self.upload.percent

    def touch(self) -> None:
        self.last_activity = time.time()

    def reset_flow(self) -> None:
        """Return to idle with a fresh video_info. The caller owns cleanup of the old file."""
        self.step = Step.IDLE
        self.video_info = VideoInfo()
        # fresh trackers, so a transfer still running for the old flow can't touch them
        self.download = TransferProgress()
        self.upload = TransferProgress()
        self.flow_id += 1


class SessionStore:
    """
    In-memory session map keyed by Telegram user id.

    The state machine only talks to this interface, so the map can be swapped
    for a different backend without touching the transition logic.
    """

    def __init__(self, admin_ids: Optional[List[int]] = None):
        self._sessions: Dict[int, Session] = {}
        self.admin_ids = set(admin_ids or [])

    def get(self, user_id: int) -> Optional[Session]:
        return self._sessions.get(user_id)

    def get_or_create(self, user_id: int) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id, is_admin=user_id in self.admin_ids)
            self._sessions[user_id] = session
            logger.debug(f"Created session for user {user_id} (admin={session.is_admin})")
        return session

    def mutate(self, user_id: int, fn: Callable[[Session], None]) -> Session:
        session = self.get_or_create(user_id)
        fn(session)
        return session

    def reset(self, user_id: int) -> Session:
        """
        Reset a session to defaults, keeping only ``is_admin`` and the flow counter.

        Returns the reset session. The caller is responsible for removing any
        file the old session referenced.
        """
        session = self.get_or_create(user_id)
        session.reset_flow()
        session.auth_step = None
        session.touch()
        return session

    def delete(self, user_id: int) -> Optional[Session]:
        return self._sessions.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def count_by_step(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for session in self._sessions.values():
            counts[session.step.value] = counts.get(session.step.value, 0) + 1
        return counts
