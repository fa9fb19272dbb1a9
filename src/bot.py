import re
import time
import html
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    TypeHandler,
    filters,
)

from src.config import Settings, setup_logging
from src.credential_store import CredentialStore
from src.downloader import FileDownloader, TransferProgress, is_drive_url
from src.session import AuthStep, PrivacyStatus, Session, SessionStore, Step
from src.uploader import YouTubeUploader

logger = logging.getLogger(__name__)

PRIVACY_CALLBACK_PREFIX = "privacy_"

STEP_STATUS = {
    Step.IDLE: "✅ Ready for upload",
    Step.AWAITING_VIDEO: "📎 Waiting for a video file or link",
    Step.AWAITING_TITLE: "📝 Waiting for video title",
    Step.AWAITING_DESCRIPTION: "📝 Waiting for video description",
    Step.AWAITING_PRIVACY: "🔒 Waiting for privacy setting",
    Step.AWAITING_TAGS: "🏷️ Waiting for tags",
}


def is_valid_url(text: str) -> bool:
    try:
        parsed = urlparse(text)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def safe_file_name(name: str) -> str:
    name = Path(name).name
    return re.sub(r'[^\w.\-]', '_', name) or "file"


def format_mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f}MB"


def privacy_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton("🔒 Private", callback_data=f"{PRIVACY_CALLBACK_PREFIX}{PrivacyStatus.PRIVATE.value}"),
            InlineKeyboardButton("🔗 Unlisted", callback_data=f"{PRIVACY_CALLBACK_PREFIX}{PrivacyStatus.UNLISTED.value}"),
        ],
        [
            InlineKeyboardButton("🌍 Public", callback_data=f"{PRIVACY_CALLBACK_PREFIX}{PrivacyStatus.PUBLIC.value}"),
        ],
    ])


class UploaderBot:
    """
    Per-user upload conversation driver.

    Every Telegram handler resolves the sender's Session from the injected
    SessionStore and dispatches on ``session.step``. A pending auth code
    (``session.auth_step``) takes precedence over the main step for text input.
    """

    def __init__(
        self,
        settings: Settings,
        sessions: SessionStore,
        downloader: FileDownloader,
        uploader: YouTubeUploader,
    ):
        self.settings = settings
        self.sessions = sessions
        self.downloader = downloader
        self.uploader = uploader

    def _session(self, update: Update) -> Session:
        return self.sessions.get_or_create(update.effective_user.id)

    async def _reply(self, update: Update, text: str, **kwargs):
        kwargs.setdefault("parse_mode", ParseMode.HTML)
        return await update.effective_message.reply_text(text, **kwargs)

    async def _reset_session(self, user_id: int) -> Session:
        """Reset to idle and remove whatever file the previous flow held."""
        session = self.sessions.get_or_create(user_id)
        file_path = session.file_path
        self.sessions.reset(user_id)
        await self.downloader.cleanup(file_path)
        return session

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    async def track_activity(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Runs before every other handler: makes sure a session exists and stamps activity."""
        user = update.effective_user
        if user is None:
            return
        session = self.sessions.get_or_create(user.id)
        session.touch()

        message = update.effective_message
        if update.callback_query:
            event = f"Callback: {update.callback_query.data}"
        elif message and message.text and message.text.startswith('/'):
            event = f"Command: {message.text.split()[0]}"
        elif message and message.text:
            event = "Text"
        else:
            event = "Media"
        logger.info(f"👤 User: {user.username or 'Unknown'} ({user.id}) - {event}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handler for the /start command."""
        max_mb = f"{self.settings.max_file_size_mb:g}"
        welcome_text = (
            "🎬 <b>YouTube Uploader Bot</b> 🎬\n\n"
            "Welcome! I can help you upload videos to YouTube directly from Telegram.\n\n"
            "📤 <b>How to use:</b>\n"
            "1. First, authenticate with Google → /auth\n"
            "2. Use /upload to start the process\n"
            "3. Send me a video file or link\n\n"
            "🔗 <b>Supported sources:</b>\n"
            f"• Video files (up to {max_mb}MB)\n"
            "• Google Drive links\n"
            "• Direct video URLs\n\n"
            "⚡ <b>Commands:</b>\n"
            "/auth - Connect YouTube account\n"
            "/upload - Upload video\n"
            "/status - Check upload status\n"
            "/channel - Your YouTube channel\n"
            "/logout - Disconnect account\n"
            "/help - Help guide\n"
            "/cancel - Cancel operation\n\n"
            "📝 <b>Note:</b> Videos upload to the YouTube account you authenticate with."
        )
        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton("🔐 Authenticate", callback_data="start_auth")],
            [InlineKeyboardButton("📤 Upload Video", callback_data="start_upload")],
            [InlineKeyboardButton("❓ Help", callback_data="show_help")],
        ])
        await self._reply(update, welcome_text, reply_markup=keyboard)

    async def help_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handler for the /help command."""
        max_mb = f"{self.settings.max_file_size_mb:g}"
        formats = ", ".join(ext.lstrip('.').upper() for ext in self.settings.allowed_extensions)
        help_text = (
            "🤖 <b>YouTube Uploader Bot Help</b>\n\n"
            "<b>Quick Start:</b>\n"
            "1. Use /auth to connect YouTube account\n"
            "2. Use /upload, then send a video file or link\n"
            "3. Follow prompts for video details\n"
            "4. Wait for upload completion\n\n"
            "<b>Supported Sources:</b>\n"
            f"• Telegram video files (≤{max_mb}MB)\n"
            "• Google Drive shareable links\n"
            "• Direct video URLs\n\n"
            "<b>Video Requirements:</b>\n"
            f"• Max size: {max_mb}MB\n"
            f"• Formats: {formats}\n\n"
            "<b>Privacy Options:</b>\n"
            "• Private (only you can see)\n"
            "• Unlisted (anyone with link)\n"
            "• Public (everyone can see)\n\n"
            "<b>Need Help?</b>\n"
            "Use /cancel to stop any operation"
        )
        await self._reply(update, help_text)

    async def auth(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user_id = update.effective_user.id
        session = self._session(update)

        if await self.uploader.check_auth(user_id):
            channel = await self.uploader.get_channel_info(user_id)
            if channel:
                snippet = channel.get("snippet") or {}
                stats = channel.get("statistics") or {}
                await self._reply(
                    update,
                    "✅ <b>Already Authenticated</b>\n\n"
                    f"📺 <b>Channel:</b> {html.escape(snippet.get('title', 'N/A'))}\n"
                    f"👥 <b>Subscribers:</b> {stats.get('subscriberCount', 'N/A')}\n"
                    f"🎬 <b>Videos:</b> {stats.get('videoCount', 'N/A')}\n\n"
                    "Use /logout to disconnect.",
                )
            else:
                await self._reply(update, "✅ Already authenticated with YouTube!")
            return

        auth_url = self.uploader.get_auth_url(user_id)
        auth_text = (
            "🔑 <b>YouTube Authentication Required</b>\n\n"
            "To upload videos, I need access to your YouTube account.\n\n"
            "<b>Steps:</b>\n"
            "1. Click the button below\n"
            "2. Sign in with your Google account\n"
            "3. Grant the requested permissions\n"
            "4. You'll get an authorization code\n"
            "5. Send that code back to me\n\n"
            "⚠️ <b>Important:</b>\n"
            "• Only grant access to accounts you own\n"
            "• You can revoke access anytime"
        )
        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton("🔐 Authorize with Google", url=auth_url)],
            [InlineKeyboardButton("❌ Cancel", callback_data="cancel_auth")],
        ])
        await self._reply(update, auth_text, reply_markup=keyboard)

        session.auth_step = AuthStep.AWAITING_CODE
        await self._reply(update, "After authorizing, please send me the authorization code you receive:")

    async def _enter_awaiting_video(self, update: Update, session: Session) -> bool:
        """
        Gate for the only entry into ``awaiting_video``.

        Returns True when the session was reset and is now waiting for a video.
        """
        if session.step not in (Step.IDLE, Step.AWAITING_VIDEO):
            await self._reply(
                update,
                "⏳ You already have an upload in progress. Finish it or use /cancel first.",
            )
            return False

        if not await self.uploader.check_auth(session.user_id):
            await self._reply(
                update,
                "❌ <b>Authentication Required</b>\n\nPlease authenticate first using /auth command.",
            )
            return False

        # auth_step is left alone: the auth sub-flow is independent of uploads
        leftover = session.file_path
        session.reset_flow()
        await self.downloader.cleanup(leftover)
        session.step = Step.AWAITING_VIDEO
        return True

    async def upload(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self._session(update)
        if not await self._enter_awaiting_video(update, session):
            return

        max_mb = f"{self.settings.max_file_size_mb:g}"
        formats = ", ".join(ext.lstrip('.').upper() for ext in self.settings.allowed_extensions)
        upload_text = (
            "📤 <b>Upload Video to YouTube</b>\n\n"
            "You can send me:\n"
            f"• A video file (up to {max_mb}MB)\n"
            "• A Google Drive link\n"
            "• A direct video URL\n\n"
            f"<b>Supported formats:</b> {formats}\n"
            f"<b>Max size:</b> {max_mb}MB"
        )
        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton("📝 Step-by-step Upload", callback_data="manual_upload")],
            [InlineKeyboardButton("❌ Cancel", callback_data="cancel")],
        ])
        await self._reply(update, upload_text, reply_markup=keyboard)

    async def status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user_id = update.effective_user.id
        session = self._session(update)

        status_text = "📊 <b>Current Status</b>\n\n"
        if session.step == Step.DOWNLOADING:
            status_text += f"📥 Downloading: {session.download_progress}%"
        elif session.step == Step.UPLOADING:
            status_text += f"📤 Uploading to YouTube: {session.upload_progress}%"
        else:
            status_text += STEP_STATUS.get(session.step, f"Current step: {session.step.value}")

        if session.auth_step == AuthStep.AWAITING_CODE:
            status_text += "\n🔑 Waiting for authorization code"

        is_auth = await self.uploader.check_auth(user_id)
        status_text += f"\n🔐 Auth: {'✅ Connected' if is_auth else '❌ Not connected'}"
        await self._reply(update, status_text)

    async def channel(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user_id = update.effective_user.id

        if not await self.uploader.check_auth(user_id):
            await self._reply(update, "❌ Please authenticate first with /auth")
            return

        channel = await self.uploader.get_channel_info(user_id)
        if not channel:
            await self._reply(update, "❌ Could not fetch channel information")
            return

        snippet = channel.get("snippet") or {}
        stats = channel.get("statistics") or {}
        description = (snippet.get("description") or "")[:300] or "No description"
        await self._reply(
            update,
            "📺 <b>Your YouTube Channel</b>\n\n"
            f"<b>Name:</b> {html.escape(snippet.get('title', 'N/A'))}\n"
            f"<b>Subscribers:</b> {stats.get('subscriberCount', 'N/A')}\n"
            f"<b>Videos:</b> {stats.get('videoCount', 'N/A')}\n"
            f"<b>Views:</b> {stats.get('viewCount', 'N/A')}\n\n"
            f"<b>Description:</b>\n{html.escape(description)}",
        )

    async def logout(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        user_id = update.effective_user.id

        deleted = await self.uploader.delete_tokens(user_id)
        await self._reset_session(user_id)

        if deleted:
            await self._reply(update, "✅ Successfully logged out. Use /auth to authenticate again.")
        else:
            await self._reply(update, "✅ Session cleared. Use /auth to authenticate.")

    async def cancel(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._reset_session(update.effective_user.id)
        await self._reply(update, "✅ Operation cancelled.")

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def _require_admin(self, update: Update) -> bool:
        if not self._session(update).is_admin:
            await self._reply(update, "❌ Admin access required")
            return False
        return True

    async def admin(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._require_admin(update):
            return

        users = await self.uploader.get_all_users()
        file_count, total_bytes = self.downloader.scratch_usage()
        await self._reply(
            update,
            "👑 <b>Admin Panel</b>\n\n"
            "<b>Bot Stats:</b>\n"
            f"• Total users: {len(users)}\n"
            f"• Active sessions: {len(self.sessions)}\n"
            f"• Storage: {file_count} files, {format_mb(total_bytes)}\n\n"
            "<b>Commands:</b>\n"
            "/stats - Detailed statistics\n"
            "/cleanup - Clean temporary files\n"
            "/purge &lt;user_id&gt; - Delete a user's credentials",
        )

    async def stats(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._require_admin(update):
            return

        users = await self.uploader.get_all_users()
        file_count, total_bytes = self.downloader.scratch_usage()
        by_step = self.sessions.count_by_step()
        step_lines = "\n".join(f"• {step}: {count}" for step, count in sorted(by_step.items())) or "• none"
        await self._reply(
            update,
            "📈 <b>Detailed Statistics</b>\n\n"
            f"<b>Authenticated users:</b> {len(users)}\n"
            f"<b>Sessions:</b> {len(self.sessions)}\n"
            f"{step_lines}\n\n"
            f"<b>Scratch storage:</b> {file_count} files, {format_mb(total_bytes)}",
        )

    async def cleanup(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._require_admin(update):
            return

        removed = await self.downloader.cleanup_old_files()
        await self._reply(
            update,
            f"🧹 Removed {removed} file(s) older than {self.settings.cleanup_max_age_hours}h.",
        )

    async def purge(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._require_admin(update):
            return

        args = context.args or []
        if len(args) != 1 or not args[0].isdigit():
            await self._reply(update, "Usage: /purge &lt;user_id&gt;")
            return

        target_id = int(args[0])
        deleted = await self.uploader.delete_tokens(target_id)
        if self.sessions.get(target_id) is not None:
            await self._reset_session(target_id)

        if deleted:
            logger.info(f"👑 Admin {update.effective_user.id} purged credentials of {target_id}")
            await self._reply(update, f"✅ Credentials for user {target_id} deleted.")
        else:
            await self._reply(update, f"❌ Could not delete credentials for user {target_id}.")

    # ------------------------------------------------------------------
    # Media & text
    # ------------------------------------------------------------------

    async def handle_video(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        video = update.effective_message.video
        ext = ".mp4"
        if video.file_name and self.downloader.get_file_extension(video.file_name):
            ext = self.downloader.get_file_extension(video.file_name)
        await self.handle_video_file(update, context, video, f"video{ext}")

    async def handle_document(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        doc = update.effective_message.document
        if not (doc.mime_type and doc.mime_type.startswith("video/")):
            formats = ", ".join(ext.lstrip('.').upper() for ext in self.settings.allowed_extensions)
            await self._reply(update, f"❌ Please send a video file. Supported formats: {formats}")
            return
        await self.handle_video_file(update, context, doc, doc.file_name or "file")

    async def handle_video_file(self, update: Update, context: ContextTypes.DEFAULT_TYPE, file, original_name: str):
        user_id = update.effective_user.id
        session = self._session(update)

        if session.step != Step.AWAITING_VIDEO:
            await self._reply(update, "Please use /upload first to start the upload process.")
            return

        if file.file_size and file.file_size > self.settings.max_file_size:
            await self._reply(
                update,
                "❌ File too large!\n\n"
                f"Size: {format_mb(file.file_size)}\n"
                f"Max allowed: {self.settings.max_file_size_mb:g}MB",
            )
            return

        extension = self.downloader.get_file_extension(original_name)
        if not self.downloader.is_valid_extension(original_name):
            await self._reply(
                update,
                f"❌ Unsupported file format: {html.escape(extension or 'unknown')}\n\n"
                f"Supported formats: {', '.join(self.settings.allowed_extensions)}",
            )
            return

        if not await self.uploader.check_auth(user_id):
            await self._reply(update, "❌ Please authenticate first using /auth command.")
            return

        session.step = Step.DOWNLOADING
        flow_id = session.flow_id
        file_name = f"{user_id}_{int(time.time() * 1000)}_{file.file_unique_id}_{safe_file_name(original_name)}"

        await self._reply(update, "📥 Downloading video from Telegram...")
        try:
            tg_file = await context.bot.get_file(file.file_id)
        except TelegramError as e:
            logger.error(f"getFile failed for user {user_id}: {e}")
            if session.flow_id == flow_id:
                session.reset_flow()
            await self._reply(update, f"❌ Error: {html.escape(str(e))}")
            return

        await self._acquire(
            update,
            session,
            flow_id,
            lambda progress: self.downloader.download_telegram_file(tg_file.file_path, file_name, progress),
        )

    async def handle_url(self, update: Update, session: Session, url: str):
        user_id = session.user_id

        if session.step != Step.AWAITING_VIDEO:
            await self._reply(update, "Please use /upload first to start the upload process.")
            return

        if not await self.uploader.check_auth(user_id):
            await self._reply(update, "❌ Please authenticate first using /auth command.")
            return

        session.step = Step.DOWNLOADING
        flow_id = session.flow_id
        stamp = int(time.time() * 1000)
        await self._reply(update, "🔗 Processing link...")

        if is_drive_url(url):
            await self._reply(update, "📥 Downloading from Google Drive...")
            await self._acquire(
                update,
                session,
                flow_id,
                lambda progress: self.downloader.download_google_drive(url, f"gdrive_{user_id}_{stamp}.mp4", progress),
            )
        else:
            await self._reply(update, "📥 Downloading from URL...")
            await self._acquire(
                update,
                session,
                flow_id,
                lambda progress: self.downloader.download_direct_url(url, f"url_{user_id}_{stamp}.mp4", progress),
            )

    async def _acquire(self, update: Update, session: Session, flow_id: int, fetch):
        """Run one download for the flow ``flow_id`` and apply the outcome to the session."""
        if session.flow_id != flow_id:
            return

        progress = TransferProgress()
        session.download = progress

        try:
            result = await fetch(progress)
        except Exception as e:
            logger.error(f"Download flow error for user {session.user_id}: {e}", exc_info=True)
            if session.flow_id == flow_id:
                session.reset_flow()
                await self._reply(update, f"❌ {html.escape(str(e) or 'Download failed')}")
            return

        if session.flow_id != flow_id:
            # cancelled (or logged out) while the transfer was running
            logger.info(f"Dropping download for user {session.user_id}: flow was reset")
            if result.success:
                await self.downloader.cleanup(result.file_path)
            return

        if not result.success:
            session.reset_flow()
            await self._reply(update, f"❌ {html.escape(result.error or 'Download failed')}")
            return

        session.video_info.file_path = result.file_path
        session.video_info.mime_type = result.mime_type
        session.video_info.size = result.size
        session.step = Step.AWAITING_TITLE

        await self._reply(
            update,
            "✅ Video downloaded successfully!\n\n"
            f"Size: {format_mb(result.size)}\n\n"
            "Now, please send me the <b>video title</b>:",
        )

    async def handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        text = update.effective_message.text.strip()
        session = self._session(update)

        # a pending auth code wins over whatever the upload flow is doing
        if session.auth_step == AuthStep.AWAITING_CODE:
            await self.handle_auth_code(update, session, text)
            return

        if session.step == Step.AWAITING_TITLE:
            await self.handle_title(update, session, text)
        elif session.step == Step.AWAITING_DESCRIPTION:
            await self.handle_description(update, session, text)
        elif session.step == Step.AWAITING_TAGS:
            await self.handle_tags(update, session, text)
        elif session.step in (Step.DOWNLOADING, Step.UPLOADING):
            await self._reply(update, "⏳ Still working on your video. Check /status or use /cancel.")
        elif is_valid_url(text):
            await self.handle_url(update, session, text)
        elif session.step == Step.IDLE:
            await self._reply(
                update,
                "Send me a video file or link to upload.\n"
                "Use /upload to start the process or /help for more info.",
            )
        elif session.step == Step.AWAITING_VIDEO:
            await self._reply(update, "Please send a video file or a link to one.")
        elif session.step == Step.AWAITING_PRIVACY:
            await self._reply(update, "Please choose a privacy setting using the buttons above.")

    async def handle_auth_code(self, update: Update, session: Session, code: str):
        await self._reply(update, "🔐 Processing authorization code...")
        try:
            result = await self.uploader.handle_auth_callback(code, session.user_id)
        finally:
            session.auth_step = None

        if result.success:
            await self._reply(
                update,
                "✅ <b>Authentication Successful!</b>\n\n"
                f"Welcome, <b>{html.escape(result.name or 'there')}</b>!\n\n"
                "You can now upload videos to your YouTube account.\n\n"
                "📤 <b>To upload:</b> use /upload, then send a video file or link.\n\n"
                f"Your videos will be uploaded to:\n{html.escape(result.email or 'your Google account')}",
            )
        else:
            await self._reply(
                update,
                f"❌ Authentication failed: {html.escape(result.error or 'unknown error')}\n\nTry /auth again.",
            )

    async def handle_title(self, update: Update, session: Session, text: str):
        if not text:
            await self._reply(update, "❌ The title can't be empty. Please send the <b>video title</b>:")
            return

        session.video_info.title = text
        session.step = Step.AWAITING_DESCRIPTION

        note = ""
        if len(text) > 100:
            note = "ℹ️ YouTube titles are limited to 100 characters, so it will be shortened.\n\n"
        await self._reply(update, f"{note}Great! Now send me the <b>video description</b> (or type \"skip\"):")

    async def handle_description(self, update: Update, session: Session, text: str):
        if text.lower() != "skip":
            session.video_info.description = text
        session.step = Step.AWAITING_PRIVACY
        await self._reply(update, "Choose privacy setting:", reply_markup=privacy_keyboard())

    async def set_privacy(self, update: Update, privacy: str):
        session = self._session(update)
        query = update.callback_query

        if session.step != Step.AWAITING_PRIVACY:
            await query.edit_message_text("This menu is no longer active.")
            return

        session.video_info.privacy_status = privacy
        session.step = Step.AWAITING_TAGS
        await query.edit_message_text(
            f"Privacy set to: <b>{privacy}</b>\n\n"
            "Now, send me tags (comma-separated, or type \"skip\"):",
            parse_mode=ParseMode.HTML,
        )

    async def handle_tags(self, update: Update, session: Session, text: str):
        if not await self.uploader.check_auth(session.user_id):
            await self._reply(
                update,
                "❌ Your YouTube authorization is no longer valid.\n"
                "Use /auth to reconnect, then send the tags again.",
            )
            return

        if text.lower() != "skip":
            session.video_info.tags = text

        await self._run_upload(update, session)

    async def _run_upload(self, update: Update, session: Session):
        flow_id = session.flow_id
        video_info = session.video_info
        file_path = video_info.file_path
        progress = TransferProgress()

        session.step = Step.UPLOADING
        session.upload = progress

        try:
            await self._reply(update, "🚀 Starting upload to YouTube...")
            result = await self.uploader.upload_video(session.user_id, video_info, progress)

            if result.success:
                await self._reply(
                    update,
                    "✅ <b>Upload Successful!</b>\n\n"
                    f"📹 <b>Title:</b> {html.escape(result.title or '')}\n"
                    f"🔗 <b>URL:</b> {result.video_url}\n"
                    f"🔒 <b>Privacy:</b> {result.privacy_status}\n\n"
                    "The video is now processing on YouTube. "
                    "It may take a few minutes to be available in full quality.",
                    reply_markup=InlineKeyboardMarkup([
                        [InlineKeyboardButton("📺 View on YouTube", url=result.video_url)],
                    ]),
                )
            else:
                await self._reply(update, f"❌ Upload failed: {html.escape(result.error or 'unknown error')}")
        except Exception as e:
            logger.error(f"Upload flow error for user {session.user_id}: {e}", exc_info=True)
            await self._reply(update, f"❌ Upload error: {html.escape(str(e))}")
        finally:
            await self.downloader.cleanup(file_path)
            if session.flow_id == flow_id:
                session.reset_flow()

    # ------------------------------------------------------------------
    # Inline buttons
    # ------------------------------------------------------------------

    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle inline keyboard callbacks."""
        query = update.callback_query
        await query.answer()
        data = query.data or ""

        if data == "start_auth":
            await self._reply(update, "Use /auth command to start authentication.")
        elif data == "start_upload":
            await self._reply(update, "Use /upload command to start upload process.")
        elif data == "show_help":
            await self._reply(update, "Use /help command for detailed help guide.")
        elif data == "manual_upload":
            session = self._session(update)
            if await self._enter_awaiting_video(update, session):
                await query.edit_message_text("Please send me a video file or link to upload:")
        elif data == "cancel_auth":
            self._session(update).auth_step = None
            await query.edit_message_text("Authentication cancelled.")
        elif data == "cancel":
            await self._reset_session(update.effective_user.id)
            await query.edit_message_text("Operation cancelled.")
        elif data.startswith(PRIVACY_CALLBACK_PREFIX):
            privacy = data[len(PRIVACY_CALLBACK_PREFIX):]
            if privacy in {p.value for p in PrivacyStatus}:
                await self.set_privacy(update, privacy)
        else:
            logger.warning(f"Unknown callback data: {data!r}")

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error(f"Unhandled error while processing update: {context.error}", exc_info=context.error)
        if isinstance(update, Update) and update.effective_message:
            try:
                await update.effective_message.reply_text("❌ Something went wrong. Please try again.")
            except TelegramError as e:
                logger.error(f"Failed to report error to user: {e}")

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def register_handlers(self, application: Application) -> None:
        application.add_handler(TypeHandler(Update, self.track_activity), group=-1)

        application.add_handler(CommandHandler("start", self.start))
        application.add_handler(CommandHandler("help", self.help_command))
        application.add_handler(CommandHandler("auth", self.auth))
        application.add_handler(CommandHandler("upload", self.upload))
        application.add_handler(CommandHandler("status", self.status))
        application.add_handler(CommandHandler("channel", self.channel))
        application.add_handler(CommandHandler("logout", self.logout))
        application.add_handler(CommandHandler("cancel", self.cancel))
        application.add_handler(CommandHandler("admin", self.admin))
        application.add_handler(CommandHandler("stats", self.stats))
        application.add_handler(CommandHandler("cleanup", self.cleanup))
        application.add_handler(CommandHandler("purge", self.purge))

        application.add_handler(MessageHandler(filters.VIDEO, self.handle_video))
        application.add_handler(MessageHandler(filters.Document.ALL, self.handle_document))
        application.add_handler(MessageHandler(filters.TEXT & (~filters.COMMAND), self.handle_text))
        application.add_handler(CallbackQueryHandler(self.handle_callback))
        application.add_error_handler(self.error_handler)

    def build_application(self, updater: bool = True, post_init=None) -> Application:
        builder = ApplicationBuilder().token(self.settings.bot_token).concurrent_updates(True)
        if not updater:
            builder = builder.updater(None)
        if post_init is not None:
            builder = builder.post_init(post_init)
        application = builder.build()
        self.register_handlers(application)
        return application


def create_bot(settings: Optional[Settings] = None) -> UploaderBot:
    settings = settings or Settings.from_env()
    credential_store = CredentialStore(settings.tokens_file)
    bot = UploaderBot(
        settings=settings,
        sessions=SessionStore(settings.admin_ids),
        downloader=FileDownloader(settings),
        uploader=YouTubeUploader(settings, credential_store),
    )
    logger.info("🤖 YouTube Uploader Bot initialized")
    return bot


def main():
    """Start the bot in polling mode without the HTTP server."""
    settings = Settings.from_env()
    setup_logging(settings)

    if not settings.bot_token:
        logger.error("TELEGRAM_BOT_TOKEN not found in environment variables!")
        return

    bot = create_bot(settings)

    async def start_sweep(app: Application):
        app.create_task(bot.downloader.run_periodic_cleanup())

    application = bot.build_application(post_init=start_sweep)

    logger.info("Starting YouTube Uploader Bot... 🚀")
    application.run_polling()


if __name__ == '__main__':
    main()
