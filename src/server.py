from fastapi import FastAPI, HTTPException, Request, Header
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import uvicorn
from telegram import Update
from telegram.ext import Application

from src.bot import UploaderBot, create_bot
from src.config import Settings, setup_logging

# Initialize
settings = Settings.from_env()
logger = logging.getLogger(__name__)

SERVICE_NAME = "YouTube Telegram Bot"
TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

app = FastAPI(title="YouTube Uploader Bot", version="1.0.0")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global bot instances, populated on startup
uploader_bot: Optional[UploaderBot] = None
telegram_app: Optional[Application] = None
cleanup_task: Optional[asyncio.Task] = None


def use_webhook() -> bool:
    return settings.webhook_enabled and settings.is_production


def webhook_url() -> str:
    domain = (settings.webhook_domain or "").rstrip("/")
    if domain and not domain.startswith(("http://", "https://")):
        domain = f"https://{domain}"
    return f"{domain}{settings.webhook_path}"


@app.on_event("startup")
async def startup_event():
    global uploader_bot, telegram_app, cleanup_task
    setup_logging(settings)

    if not settings.bot_token:
        logger.warning("⚠️ TELEGRAM_BOT_TOKEN not found. Bot features will be disabled.")
        return

    try:
        uploader_bot = create_bot(settings)
        telegram_app = uploader_bot.build_application(updater=not use_webhook())
        await telegram_app.initialize()
        await telegram_app.start()

        if use_webhook():
            await telegram_app.bot.set_webhook(url=webhook_url(), secret_token=settings.webhook_secret)
            logger.info(f"🚀 Bot running in webhook mode on {webhook_url()}")
        else:
            await telegram_app.updater.start_polling()
            logger.info(f"🤖 Bot running in polling mode on port {settings.port}")
    except Exception as e:
        logger.error(f"❌ Bot initialization failed: {e}")
        telegram_app = None
        return

    cleanup_task = asyncio.create_task(uploader_bot.downloader.run_periodic_cleanup())


@app.on_event("shutdown")
async def shutdown_event():
    global telegram_app, cleanup_task
    logger.info("🛑 Shutting down gracefully...")

    if cleanup_task:
        cleanup_task.cancel()
        cleanup_task = None

    if telegram_app:
        if telegram_app.updater and telegram_app.updater.running:
            await telegram_app.updater.stop()
        await telegram_app.stop()
        await telegram_app.shutdown()
        telegram_app = None


# Health Check
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "environment": settings.environment,
    }


@app.get("/auth/callback", response_class=HTMLResponse)
async def auth_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None):
    """
    Google OAuth redirect target.

    Only displays the code: the user pastes it into the chat, where the bot
    performs the actual exchange.
    """
    if not code or not state:
        return PlainTextResponse("Missing code or state parameter", status_code=400)

    return templates.TemplateResponse(request, "auth_callback.html", {"code": code})


async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
):
    if settings.webhook_secret and x_telegram_bot_api_secret_token != settings.webhook_secret:
        raise HTTPException(status_code=403, detail="Invalid secret token")
    if telegram_app is None:
        raise HTTPException(status_code=503, detail="Bot not running")

    data = await request.json()
    await telegram_app.update_queue.put(Update.de_json(data, telegram_app.bot))
    return {"ok": True}


if settings.webhook_enabled:
    app.add_api_route(settings.webhook_path, telegram_webhook, methods=["POST"])


def main():
    logger.info(f"🚀 Server starting on port {settings.port} ({settings.environment})")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
