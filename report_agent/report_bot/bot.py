import logging
from datetime import date, datetime
from typing import Optional

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    Message,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
    Update,
)
from telegram.ext import (
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from report_agent.report_core import db as db_module
from report_agent.report_core.config import SUPPORTED_LANGUAGES, get_settings
from report_agent.report_core.db import RegisteredUser
from report_agent.report_core.delivery import TelegramDelivery
from report_agent.report_core.messages import MessageKey, get_message, resolve_language
from report_agent.report_core.phone import format_phone
from report_agent.report_core.pipeline import (
    OUTCOME_ALREADY_PROCESSING,
    OUTCOME_NO_DATA,
    OUTCOME_READY,
    REGISTRATION_DIRECTORY_UNAVAILABLE,
    REGISTRATION_INVALID_PHONE,
    REGISTRATION_NOT_IN_DIRECTORY,
    ReportPipeline,
    build_pipeline,
)
from report_agent.report_core.scheduler import DailyBroadcastScheduler


logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s", level=logging.INFO
)
logger = logging.getLogger(__name__)

settings = get_settings()
db_module.init_db(settings.database_path)

LANGUAGE_KEY = "language"
PENDING_ACTION_KEY = "pending_action"
REPORT_STATE_KEY = "report_state"
REPORT_FROM_KEY = "report_from"

ACTION_REGISTER = "register"
ACTION_REPORT = "report"
STATE_AWAIT_FROM = "await_from"
STATE_AWAIT_TO = "await_to"

CALLBACK_REPORT_TODAY = "report:today"
CALLBACK_REPORT_CUSTOM = "report:custom"
CALLBACK_LANGUAGE_PREFIX = "lang:"

LANGUAGE_TITLES = {"uz": "🇺🇿 O'zbekcha", "ru": "🇷🇺 Русский", "en": "🇬🇧 English"}

_pipeline: Optional[ReportPipeline] = None


def _get_pipeline() -> ReportPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(settings)
    return _pipeline


def _registered_user(update: Update) -> Optional[RegisteredUser]:
    return _get_pipeline().get_registered_user(update.effective_user.id)


def _language(update: Update, context: ContextTypes.DEFAULT_TYPE) -> str:
    stored = context.user_data.get(LANGUAGE_KEY)
    if stored:
        return resolve_language(stored)
    user = _registered_user(update)
    if user is not None and user.language_code:
        context.user_data[LANGUAGE_KEY] = user.language_code
        return resolve_language(user.language_code)
    return settings.default_language


def _parse_date(raw_value: str) -> Optional[date]:
    try:
        return datetime.strptime(raw_value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def _build_inline_keyboard(layout):
    if not layout:
        return None
    rows = []
    for row in layout:
        rows.append([InlineKeyboardButton(text=label, callback_data=data) for label, data in row])
    return InlineKeyboardMarkup(rows)


def _contact_keyboard(language: str) -> ReplyKeyboardMarkup:
    button = KeyboardButton(get_message(MessageKey.REGISTRATION_SHARE_PHONE, language), request_contact=True)
    return ReplyKeyboardMarkup([[button]], resize_keyboard=True, one_time_keyboard=True)


def _range_layout(language: str):
    return [
        [(get_message(MessageKey.REPORT_TODAY, language), CALLBACK_REPORT_TODAY)],
        [(get_message(MessageKey.REPORT_CUSTOM_RANGE, language), CALLBACK_REPORT_CUSTOM)],
    ]


def _target_message(update: Update) -> Optional[Message]:
    if update.callback_query and update.callback_query.message:
        return update.callback_query.message
    return update.message


async def _reply(update: Update, text: str, keyboard_layout=None, reply_markup=None) -> None:
    target = _target_message(update)
    if not target:
        return
    markup = reply_markup if reply_markup is not None else _build_inline_keyboard(keyboard_layout)
    await target.reply_text(text, reply_markup=markup)


def _reset_report_state(context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data.pop(REPORT_STATE_KEY, None)
    context.user_data.pop(REPORT_FROM_KEY, None)


async def _send_report(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    user: RegisteredUser,
    date_from: date,
    date_to: date,
) -> None:
    language = _language(update, context)
    pipeline = _get_pipeline()
    await _reply(update, get_message(MessageKey.REPORT_GENERATING, language))
    try:
        outcome = await pipeline.generate_report(
            user.phone_number,
            date_from,
            date_to,
            language=language,
            display_name=user.display_name or None,
            requested_by=update.effective_user.id,
        )
        if outcome.status == OUTCOME_READY:
            caption = get_message(MessageKey.REPORT_READY, language, period=outcome.period)
            await pipeline.deliver(TelegramDelivery(context.bot), update.effective_chat.id, outcome, caption)
        elif outcome.status == OUTCOME_NO_DATA:
            await _reply(update, get_message(MessageKey.REPORT_NO_DATA, language, period=outcome.period))
        elif outcome.status == OUTCOME_ALREADY_PROCESSING:
            await _reply(update, get_message(MessageKey.REPORT_ALREADY_PROCESSING, language))
        else:
            await _reply(update, get_message(MessageKey.REPORT_FAILED, language))
    except Exception:
        logger.exception("Failed to produce report for telegram user %s", update.effective_user.id)
        await _reply(update, get_message(MessageKey.GENERAL_ERROR, language))


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    language = _language(update, context)
    _reset_report_state(context)
    if _registered_user(update) is not None:
        await _reply(update, get_message(MessageKey.MAIN_MENU, language))
        return
    context.user_data[PENDING_ACTION_KEY] = ACTION_REGISTER
    await _reply(
        update,
        get_message(MessageKey.REGISTRATION_WELCOME, language),
        reply_markup=_contact_keyboard(language),
    )


async def register(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    language = _language(update, context)
    user = _registered_user(update)
    if user is not None:
        await _reply(
            update,
            get_message(MessageKey.REGISTRATION_ALREADY, language, phone=format_phone(user.phone_number)),
        )
        return
    context.user_data[PENDING_ACTION_KEY] = ACTION_REGISTER
    await _reply(
        update,
        get_message(MessageKey.REGISTRATION_WELCOME, language),
        reply_markup=_contact_keyboard(language),
    )


async def report(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    language = _language(update, context)
    _reset_report_state(context)
    if _registered_user(update) is None:
        context.user_data[PENDING_ACTION_KEY] = ACTION_REPORT
        await _reply(
            update,
            get_message(MessageKey.REPORT_REQUEST_CONTACT, language),
            reply_markup=_contact_keyboard(language),
        )
        return
    await _reply(update, get_message(MessageKey.REPORT_SELECT_RANGE, language), keyboard_layout=_range_layout(language))


async def choose_language(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    current = _language(update, context)
    layout = [[(LANGUAGE_TITLES[code], f"{CALLBACK_LANGUAGE_PREFIX}{code}")] for code in SUPPORTED_LANGUAGES]
    await _reply(update, get_message(MessageKey.LANGUAGE_PROMPT, current), keyboard_layout=layout)


async def on_contact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.message
    if not message or not message.contact:
        return
    language = _language(update, context)
    contact = message.contact
    if contact.user_id is not None and contact.user_id != update.effective_user.id:
        await _reply(update, get_message(MessageKey.REGISTRATION_OWN_PHONE_ONLY, language))
        return

    await _reply(update, get_message(MessageKey.REGISTRATION_PROCESSING, language), reply_markup=ReplyKeyboardRemove())
    tg_user = update.effective_user
    try:
        result = await _get_pipeline().register_phone(
            telegram_id=tg_user.id,
            raw_phone=contact.phone_number,
            language_code=language,
            first_name=getattr(tg_user, "first_name", None),
            last_name=getattr(tg_user, "last_name", None),
            username=getattr(tg_user, "username", None),
        )
    except Exception:
        logger.exception("Registration failed for telegram user %s", tg_user.id)
        await _reply(update, get_message(MessageKey.GENERAL_ERROR, language))
        return

    if result.status == REGISTRATION_INVALID_PHONE:
        await _reply(update, get_message(MessageKey.INVALID_PHONE, language))
        return
    if result.status == REGISTRATION_NOT_IN_DIRECTORY:
        await _reply(update, get_message(MessageKey.REGISTRATION_NOT_IN_DIRECTORY, language))
        return
    if result.status == REGISTRATION_DIRECTORY_UNAVAILABLE:
        await _reply(update, get_message(MessageKey.DIRECTORY_UNAVAILABLE, language))
        return

    pending = context.user_data.pop(PENDING_ACTION_KEY, None)
    await _reply(update, get_message(MessageKey.REGISTRATION_SUCCESS, language, phone=format_phone(result.phone)))
    await _reply(
        update,
        get_message(
            MessageKey.REGISTRATION_DAILY_INFO,
            language,
            time=settings.daily_report_time.strftime("%H:%M"),
        ),
    )
    if pending == ACTION_REPORT:
        await _reply(
            update,
            get_message(MessageKey.REPORT_SELECT_RANGE, language),
            keyboard_layout=_range_layout(language),
        )


async def on_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.text:
        return
    text = update.message.text.strip()
    language = _language(update, context)
    state = context.user_data.get(REPORT_STATE_KEY)

    if state == STATE_AWAIT_FROM:
        date_from = _parse_date(text)
        if date_from is None:
            await _reply(update, get_message(MessageKey.REPORT_INVALID_DATE, language))
            return
        context.user_data[REPORT_FROM_KEY] = date_from
        context.user_data[REPORT_STATE_KEY] = STATE_AWAIT_TO
        await _reply(update, get_message(MessageKey.REPORT_ENTER_TO, language))
        return

    if state == STATE_AWAIT_TO:
        date_to = _parse_date(text)
        if date_to is None:
            await _reply(update, get_message(MessageKey.REPORT_INVALID_DATE, language))
            return
        date_from = context.user_data.get(REPORT_FROM_KEY)
        if date_from is None:
            _reset_report_state(context)
            await _reply(update, get_message(MessageKey.MAIN_MENU, language))
            return
        if date_to < date_from:
            await _reply(update, get_message(MessageKey.REPORT_INVALID_RANGE, language))
            return
        _reset_report_state(context)
        user = _registered_user(update)
        if user is None:
            context.user_data[PENDING_ACTION_KEY] = ACTION_REPORT
            await _reply(
                update,
                get_message(MessageKey.REPORT_REQUEST_CONTACT, language),
                reply_markup=_contact_keyboard(language),
            )
            return
        await _send_report(update, context, user, date_from, date_to)
        return

    if context.user_data.get(PENDING_ACTION_KEY):
        await _reply(
            update,
            get_message(MessageKey.REGISTRATION_USE_CONTACT_BUTTON, language),
            reply_markup=_contact_keyboard(language),
        )
        return

    await _reply(update, get_message(MessageKey.MAIN_MENU, language))


async def on_callback_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query:
        return
    await query.answer()
    data = query.data or ""

    if data.startswith(CALLBACK_LANGUAGE_PREFIX):
        selected = resolve_language(data[len(CALLBACK_LANGUAGE_PREFIX) :])
        context.user_data[LANGUAGE_KEY] = selected
        conn = db_module.get_connection(settings.database_path)
        try:
            db_module.update_user_language(conn, update.effective_user.id, selected)
        finally:
            conn.close()
        await _reply(update, get_message(MessageKey.LANGUAGE_CHANGED, selected))
        return

    language = _language(update, context)
    user = _registered_user(update)
    if user is None:
        context.user_data[PENDING_ACTION_KEY] = ACTION_REPORT
        await _reply(
            update,
            get_message(MessageKey.REPORT_REQUEST_CONTACT, language),
            reply_markup=_contact_keyboard(language),
        )
        return

    if data == CALLBACK_REPORT_TODAY:
        today = _get_pipeline().today()
        await _send_report(update, context, user, today, today)
        return
    if data == CALLBACK_REPORT_CUSTOM:
        context.user_data[REPORT_STATE_KEY] = STATE_AWAIT_FROM
        context.user_data.pop(REPORT_FROM_KEY, None)
        await _reply(update, get_message(MessageKey.REPORT_ENTER_FROM, language))
        return

    logger.warning("Unknown callback data from %s: %r", update.effective_user.id, data)


def main() -> None:
    if not settings.telegram_bot_token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set. Fill .env before running.")
    pipeline = _get_pipeline()
    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("register", register))
    application.add_handler(CommandHandler("report", report))
    application.add_handler(CommandHandler("language", choose_language))
    application.add_handler(MessageHandler(filters.CONTACT, on_contact))
    application.add_handler(CallbackQueryHandler(on_callback_query))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text_message))

    if settings.daily_reports_enabled:
        if application.job_queue is None:
            logger.warning("JobQueue is unavailable, daily reports are disabled")
        else:
            scheduler = DailyBroadcastScheduler.from_settings(pipeline, settings)
            scheduler.register(application.job_queue)

    logger.info("Starting Telegram bot polling...")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
