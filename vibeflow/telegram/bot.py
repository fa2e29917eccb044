from __future__ import annotations

import logging
import re

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.error import TelegramError
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes, MessageHandler, filters

from vibeflow.ai.errors import TerminalError
from vibeflow.ai.prompts import TUNE_PRESETS
from vibeflow.ai.types import ALL_PLATFORMS, Platform
from vibeflow.storage.db import QuotaExceededError
from vibeflow.telegram.render import (
    render_analysis,
    render_draft,
    render_error,
    render_quota,
    render_summary,
)
from vibeflow.workflow import AppContext, DraftMissingError, run_analyze, run_generate, run_tune


logger = logging.getLogger(__name__)


HELP_TEXT = (
    "Send me a link or some text and I will summarize it and draft posts for LinkedIn, X and YouTube.\n\n"
    "/setkey <key> - save your Gemini API key\n"
    "/persona [name|off] - pick a writing voice\n"
    "/generate <url|text> - summarize and draft posts\n"
    "/tune <platform> <instruction> - rework a draft\n"
    "/analyze <platform> - review a draft\n"
    "/drafts - show your current drafts\n"
    "/quota - monthly usage"
)

_CALLBACK_RE = re.compile(r"^(?P<action>tune|analyze):(?P<platform>[a-z]+)(?::(?P<preset>[a-z_]+))?$")


def _get_ctx(application: Application) -> AppContext:
    ctx = application.bot_data.get("ctx")
    if ctx is None:
        raise RuntimeError("app context not initialized")
    return ctx


def _is_admin(update: Update, admin_user_id: int) -> bool:
    u = update.effective_user
    return u is not None and admin_user_id != 0 and u.id == admin_user_id


def build_draft_keyboard(platform: Platform) -> InlineKeyboardMarkup:
    presets = [
        InlineKeyboardButton(label, callback_data=f"tune:{platform.value}:{key}") for key, label in TUNE_PRESETS.items()
    ]
    return InlineKeyboardMarkup(
        [
            presets[:2],
            presets[2:],
            [InlineKeyboardButton("Analyze", callback_data=f"analyze:{platform.value}")],
        ]
    )


async def _reply_failure(ctx: AppContext, message: Message, err: Exception) -> None:
    if isinstance(err, TerminalError):
        await message.reply_text(render_error(err), parse_mode=ctx.config.tg_parse_mode)
    elif isinstance(err, QuotaExceededError):
        await message.reply_text(f"Monthly quota of {err.limit} requests reached. It resets one month after the last reset.")
    elif isinstance(err, DraftMissingError):
        await message.reply_text(f"No {err.platform.value} draft yet. Use /generate first.")
    else:
        raise err


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    user = update.effective_user
    profile = await ctx.storage.get_or_create_profile(user.id, user.username)
    text = HELP_TEXT
    if not profile.has_api_key:
        text = "Welcome! Start with /setkey <your Gemini API key>.\n\n" + text
    await update.message.reply_text(text)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT)


async def cmd_setkey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    message = update.message
    if not context.args:
        await message.reply_text("Usage: /setkey <key>")
        return

    # the key must not stay in the chat history, even when it is rejected
    try:
        await message.delete()
    except TelegramError as e:
        logger.warning("could not delete setkey message err=%s", e)

    try:
        await ctx.storage.set_api_key(update.effective_user.id, context.args[0])
    except ValueError as e:
        await message.chat.send_message(f"Key not saved: {e}")
        return
    await message.chat.send_message("API key saved.")


async def cmd_persona(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    user_id = update.effective_user.id

    if not context.args:
        profile = await ctx.storage.get_or_create_profile(user_id)
        lines = [f"Current: {profile.persona or 'none'}", "Presets:"]
        lines.extend(f"- {p.name}: {p.label}" for p in ctx.personas.values())
        lines.append("Or pass any text to describe your own voice. /persona off clears it.")
        await update.message.reply_text("\n".join(lines))
        return

    value = " ".join(context.args).strip()
    if value.lower() == "off":
        await ctx.storage.set_persona(user_id, None)
        await update.message.reply_text("Persona cleared.")
        return

    await ctx.storage.set_persona(user_id, value[:500])
    preset = ctx.personas.get(value.lower())
    await update.message.reply_text(f"Persona set: {preset.label if preset else value[:500]}")


async def cmd_quota(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    user_id = update.effective_user.id
    profile = await ctx.storage.get_or_create_profile(user_id)
    quota = await ctx.storage.get_quota(user_id)
    await update.message.reply_text(render_quota(quota, profile.xp))


async def _generate(update: Update, context: ContextTypes.DEFAULT_TYPE, content: str) -> None:
    ctx = _get_ctx(context.application)
    message = update.message
    user_id = update.effective_user.id
    parse_mode = ctx.config.tg_parse_mode

    await message.reply_text("Working on it...")
    try:
        outcome = await run_generate(context.application, ctx, user_id, content)
    except (TerminalError, QuotaExceededError) as e:
        await _reply_failure(ctx, message, e)
        return

    await message.reply_text(render_summary(outcome.summary, outcome.title), parse_mode=parse_mode)
    for platform in ALL_PLATFORMS:
        if platform in outcome.posts:
            await message.reply_text(
                render_draft(platform, outcome.posts[platform]),
                parse_mode=parse_mode,
                reply_markup=build_draft_keyboard(platform),
            )
        elif platform in outcome.failures:
            await _reply_failure(ctx, message, outcome.failures[platform])


async def cmd_generate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    content = " ".join(context.args or []).strip()
    if not content:
        await update.message.reply_text("Usage: /generate <url|text>")
        return
    await _generate(update, context, content)


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    text = (update.message.text or "").strip()
    if text:
        await _generate(update, context, text)


def _platform_arg(value: str) -> Platform | None:
    try:
        return Platform.parse(value)
    except ValueError:
        return None


async def cmd_tune(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    message = update.message
    args = context.args or []
    platform = _platform_arg(args[0]) if args else None
    instruction = " ".join(args[1:]).strip()
    if platform is None or not instruction:
        await message.reply_text("Usage: /tune <linkedin|twitter|youtube> <instruction>")
        return

    try:
        tuned = await run_tune(context.application, ctx, update.effective_user.id, platform, instruction)
    except (TerminalError, QuotaExceededError, DraftMissingError) as e:
        await _reply_failure(ctx, message, e)
        return
    await message.reply_text(
        render_draft(platform, tuned),
        parse_mode=ctx.config.tg_parse_mode,
        reply_markup=build_draft_keyboard(platform),
    )


async def cmd_analyze(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    message = update.message
    platform = _platform_arg(context.args[0]) if context.args else None
    if platform is None:
        await message.reply_text("Usage: /analyze <linkedin|twitter|youtube>")
        return

    try:
        result = await run_analyze(context.application, ctx, update.effective_user.id, platform)
    except (TerminalError, QuotaExceededError, DraftMissingError) as e:
        await _reply_failure(ctx, message, e)
        return
    await message.reply_text(render_analysis(platform, result), parse_mode=ctx.config.tg_parse_mode)


async def cmd_drafts(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    drafts = await ctx.storage.list_drafts(update.effective_user.id)
    if not drafts:
        await update.message.reply_text("No drafts yet. Send a link or some text to start.")
        return
    for d in drafts:
        platform = Platform.parse(d.platform)
        await update.message.reply_text(
            render_draft(platform, d.content),
            parse_mode=ctx.config.tg_parse_mode,
            reply_markup=build_draft_keyboard(platform),
        )


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    if not _is_admin(update, ctx.config.admin_user_id):
        return

    stats = ctx.runtime_stats
    text = (
        f"requests_total={stats.requests_total}\n"
        f"consecutive_ai_failures={stats.consecutive_ai_failures}\n"
        f"last_failure_classification={stats.last_failure_classification or '-'}\n"
        f"fetch_next_allowed_in={ctx.fetch_limiter.next_allowed_in_seconds():.0f}s\n"
        f"personas={len(ctx.personas)}\n"
    )
    await update.message.reply_text(text)


async def cmd_personas_reload(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    ctx = _get_ctx(context.application)
    if not _is_admin(update, ctx.config.admin_user_id):
        return
    try:
        ctx.reload_personas()
    except (OSError, ValueError) as e:
        logger.warning("persona reload failed err=%s", e)
        await update.message.reply_text(f"Reload failed: {e}")
        return
    await update.message.reply_text(f"Personas reloaded: {', '.join(ctx.personas)}")


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None:
        return

    ctx = _get_ctx(context.application)
    m = _CALLBACK_RE.match(query.data or "")
    platform = _platform_arg(m.group("platform")) if m else None
    if m is None or platform is None:
        await query.answer("Unknown action", show_alert=True)
        return

    user_id = update.effective_user.id
    message = query.message

    if m.group("action") == "analyze":
        await query.answer("Analyzing...")
        try:
            result = await run_analyze(context.application, ctx, user_id, platform)
        except (TerminalError, QuotaExceededError, DraftMissingError) as e:
            await _reply_failure(ctx, message, e)
            return
        await message.reply_text(render_analysis(platform, result), parse_mode=ctx.config.tg_parse_mode)
        return

    instruction = TUNE_PRESETS.get(m.group("preset") or "")
    if instruction is None:
        await query.answer("Unknown preset", show_alert=True)
        return

    await query.answer(f"{instruction}...")
    try:
        tuned = await run_tune(context.application, ctx, user_id, platform, instruction)
    except (TerminalError, QuotaExceededError, DraftMissingError) as e:
        await _reply_failure(ctx, message, e)
        return

    try:
        await query.edit_message_text(
            render_draft(platform, tuned),
            parse_mode=ctx.config.tg_parse_mode,
            reply_markup=build_draft_keyboard(platform),
        )
    except TelegramError:
        logger.exception("failed to update draft message")


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.exception("telegram handler error", exc_info=context.error)


def register_handlers(app: Application) -> None:
    app.add_error_handler(_on_error)

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("setkey", cmd_setkey))
    app.add_handler(CommandHandler("persona", cmd_persona))
    app.add_handler(CommandHandler("quota", cmd_quota))
    app.add_handler(CommandHandler("generate", cmd_generate))
    app.add_handler(CommandHandler("tune", cmd_tune))
    app.add_handler(CommandHandler("analyze", cmd_analyze))
    app.add_handler(CommandHandler("drafts", cmd_drafts))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("personas_reload", cmd_personas_reload))

    app.add_handler(CallbackQueryHandler(on_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text))
