from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv
from telegram import Update
from telegram.ext import Application, ApplicationBuilder

from vibeflow.config import Config, load_config
from vibeflow.logging_setup import setup_logging
from vibeflow.telegram.bot import register_handlers
from vibeflow.workflow import build_app_context, start_background_jobs, stop_background_jobs


logger = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vibeflow-bot", description="Summarize links and draft social posts.")
    parser.add_argument("--env", default=".env", help="Path to .env file (default: .env).")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL from the environment.")
    return parser.parse_args(argv)


async def _on_startup(application: Application) -> None:
    config: Config = application.bot_data["config"]
    ctx = await build_app_context(config, application)
    application.bot_data["ctx"] = ctx
    await start_background_jobs(application, ctx)
    logger.info("bot started model=%s quota_limit=%s", config.gemini_model, config.quota_limit)


async def _on_shutdown(application: Application) -> None:
    ctx = application.bot_data.pop("ctx", None)
    if ctx is not None:
        await stop_background_jobs(application, ctx)
    logger.info("bot stopped")


def build_application(config: Config) -> Application:
    """Telegram application with handlers registered; the app context is built on startup."""
    application = (
        ApplicationBuilder()
        .token(config.bot_token)
        .post_init(_on_startup)
        .post_shutdown(_on_shutdown)
        .concurrent_updates(True)
        .build()
    )
    application.bot_data["config"] = config
    register_handlers(application)
    return application


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    if not load_dotenv(Path(args.env)):
        load_dotenv()

    config = load_config()
    if args.log_level:
        config = dataclasses.replace(config, log_level=args.log_level.upper())
    setup_logging(config.log_level, config.log_file, secrets=[config.bot_token])

    build_application(config).run_polling(allowed_updates=Update.ALL_TYPES, close_loop=False)


if __name__ == "__main__":
    main()
