from __future__ import annotations

from enum import Enum
from typing import Dict

DEFAULT_LANGUAGE = "uz"


class MessageKey(str, Enum):
    MAIN_MENU = "main_menu"
    GENERAL_ERROR = "general_error"
    BACK = "back"
    LANGUAGE_PROMPT = "language_prompt"
    LANGUAGE_CHANGED = "language_changed"

    REGISTRATION_WELCOME = "registration_welcome"
    REGISTRATION_SHARE_PHONE = "registration_share_phone"
    REGISTRATION_PROCESSING = "registration_processing"
    REGISTRATION_SUCCESS = "registration_success"
    REGISTRATION_DAILY_INFO = "registration_daily_info"
    REGISTRATION_ALREADY = "registration_already"
    REGISTRATION_NOT_IN_DIRECTORY = "registration_not_in_directory"
    REGISTRATION_OWN_PHONE_ONLY = "registration_own_phone_only"
    REGISTRATION_USE_CONTACT_BUTTON = "registration_use_contact_button"
    INVALID_PHONE = "invalid_phone"
    DIRECTORY_UNAVAILABLE = "directory_unavailable"

    REPORT_REQUEST_CONTACT = "report_request_contact"
    REPORT_ALREADY_PROCESSING = "report_already_processing"
    REPORT_SELECT_RANGE = "report_select_range"
    REPORT_TODAY = "report_today"
    REPORT_CUSTOM_RANGE = "report_custom_range"
    REPORT_ENTER_FROM = "report_enter_from"
    REPORT_ENTER_TO = "report_enter_to"
    REPORT_INVALID_DATE = "report_invalid_date"
    REPORT_INVALID_RANGE = "report_invalid_range"
    REPORT_GENERATING = "report_generating"
    REPORT_NO_DATA = "report_no_data"
    REPORT_READY = "report_ready"
    REPORT_FAILED = "report_failed"

    DAILY_NO_DATA = "daily_no_data"
    DAILY_CAPTION = "daily_caption"

    LABEL_TITLE = "label_title"
    LABEL_PHONE = "label_phone"
    LABEL_CLIENT = "label_client"
    LABEL_FROM = "label_from"
    LABEL_TO = "label_to"
    LABEL_GENERATED_AT = "label_generated_at"
    LABEL_REPORT_DATA = "label_report_data"
    LABEL_NO_DATA = "label_no_data"


MESSAGES: Dict[MessageKey, Dict[str, str]] = {
    MessageKey.MAIN_MENU: {
        "uz": "Asosiy menyu. /report — hisobot, /register — ro'yxatdan o'tish, /language — til.",
        "ru": "Главное меню. /report — отчет, /register — регистрация, /language — язык.",
        "en": "Main menu. /report — report, /register — registration, /language — language.",
    },
    MessageKey.GENERAL_ERROR: {
        "uz": "❌ Xatolik yuz berdi. Iltimos qaytadan urinib ko'ring.",
        "ru": "❌ Произошла ошибка. Пожалуйста, попробуйте снова.",
        "en": "❌ An error occurred. Please try again.",
    },
    MessageKey.BACK: {
        "uz": "⬅️ Orqaga",
        "ru": "⬅️ Назад",
        "en": "⬅️ Back",
    },
    MessageKey.LANGUAGE_PROMPT: {
        "uz": "🌐 Tilni tanlang:",
        "ru": "🌐 Выберите язык:",
        "en": "🌐 Choose a language:",
    },
    MessageKey.LANGUAGE_CHANGED: {
        "uz": "✅ Til o'zgartirildi.",
        "ru": "✅ Язык изменен.",
        "en": "✅ Language changed.",
    },
    MessageKey.REGISTRATION_WELCOME: {
        "uz": "📱 Telefon raqamingizni ro'yxatdan o'tkazish uchun quyidagi tugmani bosing.\n\n"
        "Bu sizga kunlik hisobotlar olish imkonini beradi.",
        "ru": "📱 Нажмите кнопку ниже, чтобы зарегистрировать номер телефона.\n\n"
        "Это позволит вам получать ежедневные отчеты.",
        "en": "📱 Press the button below to register your phone number.\n\n"
        "This will allow you to receive daily reports.",
    },
    MessageKey.REGISTRATION_SHARE_PHONE: {
        "uz": "📱 Telefon raqamini ulashish",
        "ru": "📱 Поделиться номером телефона",
        "en": "📱 Share Phone Number",
    },
    MessageKey.REGISTRATION_PROCESSING: {
        "uz": "⏳ Telefon raqamingiz tekshirilmoqda...",
        "ru": "⏳ Проверяем ваш номер телефона...",
        "en": "⏳ Checking your phone number...",
    },
    MessageKey.REGISTRATION_SUCCESS: {
        "uz": "✅ Telefon raqamingiz muvaffaqiyatli ro'yxatdan o'tkazildi!\n📱 {phone}",
        "ru": "✅ Ваш номер телефона успешно зарегистрирован!\n📱 {phone}",
        "en": "✅ Your phone number has been successfully registered!\n📱 {phone}",
    },
    MessageKey.REGISTRATION_DAILY_INFO: {
        "uz": "📊 Endi siz har kuni soat {time} da avtomatik hisobotlar olasiz.",
        "ru": "📊 Теперь вы будете получать автоматические отчеты каждый день в {time}.",
        "en": "📊 You will now receive automatic reports every day at {time}.",
    },
    MessageKey.REGISTRATION_ALREADY: {
        "uz": "✅ Siz allaqachon ro'yxatdan o'tgansiz.\n📱 {phone}",
        "ru": "✅ Вы уже зарегистрированы.\n📱 {phone}",
        "en": "✅ You are already registered.\n📱 {phone}",
    },
    MessageKey.REGISTRATION_NOT_IN_DIRECTORY: {
        "uz": "❌ Sizning telefon raqamingiz bizning ma'lumotlar bazasida topilmadi.\n\n"
        "Iltimos, admin bilan bog'laning.",
        "ru": "❌ Ваш номер телефона не найден в нашей базе данных.\n\n"
        "Пожалуйста, свяжитесь с администратором.",
        "en": "❌ Your phone number was not found in our database.\n\nPlease contact the administrator.",
    },
    MessageKey.REGISTRATION_OWN_PHONE_ONLY: {
        "uz": "❌ Faqat o'z telefon raqamingizni ro'yxatdan o'tkazishingiz mumkin.",
        "ru": "❌ Вы можете зарегистрировать только свой номер телефона.",
        "en": "❌ You can only register your own phone number.",
    },
    MessageKey.REGISTRATION_USE_CONTACT_BUTTON: {
        "uz": "📱 Iltimos, \"Telefon raqamini ulashish\" tugmasidan foydalaning.",
        "ru": "📱 Пожалуйста, используйте кнопку \"Поделиться номером телефона\".",
        "en": "📱 Please use the \"Share Phone Number\" button.",
    },
    MessageKey.INVALID_PHONE: {
        "uz": "❌ Telefon raqami noto'g'ri. Iltimos, kontaktni qaytadan ulashing.",
        "ru": "❌ Неверный номер телефона. Пожалуйста, поделитесь контактом еще раз.",
        "en": "❌ Invalid phone number. Please share your contact again.",
    },
    MessageKey.DIRECTORY_UNAVAILABLE: {
        "uz": "⚠️ Ma'lumotlar bazasi hozircha mavjud emas. Keyinroq urinib ko'ring.",
        "ru": "⚠️ Справочник сейчас недоступен. Попробуйте позже.",
        "en": "⚠️ The directory is unavailable right now. Please try again later.",
    },
    MessageKey.REPORT_REQUEST_CONTACT: {
        "uz": "📞 Hisobot olish uchun telefon raqamingizni ulashing.\n\nQuyidagi tugmani bosing:",
        "ru": "📞 Поделитесь номером телефона для получения отчета.\n\nНажмите кнопку ниже:",
        "en": "📞 Share your phone number to get a report.\n\nPress the button below:",
    },
    MessageKey.REPORT_ALREADY_PROCESSING: {
        "uz": "⚠️ Bu raqam uchun hisobot allaqachon tayyorlanmoqda. Iltimos kutib turing.",
        "ru": "⚠️ Отчет для этого номера уже готовится. Пожалуйста, подождите.",
        "en": "⚠️ Report for this number is already being processed. Please wait.",
    },
    MessageKey.REPORT_SELECT_RANGE: {
        "uz": "📅 Hisobot uchun sana oralig'ini tanlang:",
        "ru": "📅 Выберите диапазон дат для отчета:",
        "en": "📅 Select date range for report:",
    },
    MessageKey.REPORT_TODAY: {
        "uz": "📅 Bugun",
        "ru": "📅 Сегодня",
        "en": "📅 Today",
    },
    MessageKey.REPORT_CUSTOM_RANGE: {
        "uz": "📅 Boshqa sana",
        "ru": "📅 Другие даты",
        "en": "📅 Custom Range",
    },
    MessageKey.REPORT_ENTER_FROM: {
        "uz": "📅 Boshlanish sanasini kiriting (YYYY-MM-DD formatida):\n\nMasalan: 2024-01-15",
        "ru": "📅 Введите дату начала (в формате YYYY-MM-DD):\n\nНапример: 2024-01-15",
        "en": "📅 Enter start date (YYYY-MM-DD format):\n\nExample: 2024-01-15",
    },
    MessageKey.REPORT_ENTER_TO: {
        "uz": "📅 Tugash sanasini kiriting (YYYY-MM-DD formatida):\n\nMasalan: 2024-01-31",
        "ru": "📅 Введите дату окончания (в формате YYYY-MM-DD):\n\nНапример: 2024-01-31",
        "en": "📅 Enter end date (YYYY-MM-DD format):\n\nExample: 2024-01-31",
    },
    MessageKey.REPORT_INVALID_DATE: {
        "uz": "❌ Noto'g'ri sana formati. Iltimos YYYY-MM-DD formatida kiriting.\n\nMasalan: 2024-01-15",
        "ru": "❌ Неверный формат даты. Пожалуйста, введите в формате YYYY-MM-DD.\n\nНапример: 2024-01-15",
        "en": "❌ Invalid date format. Please enter in YYYY-MM-DD format.\n\nExample: 2024-01-15",
    },
    MessageKey.REPORT_INVALID_RANGE: {
        "uz": "❌ Tugash sanasi boshlanish sanasidan kichik bo'lishi mumkin emas.",
        "ru": "❌ Дата окончания не может быть раньше даты начала.",
        "en": "❌ End date cannot be earlier than start date.",
    },
    MessageKey.REPORT_GENERATING: {
        "uz": "📊 Hisobot yaratilmoqda... Iltimos kutib turing.",
        "ru": "📊 Генерируется отчет... Пожалуйста, подождите.",
        "en": "📊 Generating report... Please wait.",
    },
    MessageKey.REPORT_NO_DATA: {
        "uz": "📭 {period} uchun hisobot mavjud emas.",
        "ru": "📭 Отчет за {period} отсутствует.",
        "en": "📭 No report available for {period}.",
    },
    MessageKey.REPORT_READY: {
        "uz": "✅ Hisobotingiz tayyor! ({period})",
        "ru": "✅ Ваш отчет готов! ({period})",
        "en": "✅ Your report is ready! ({period})",
    },
    MessageKey.REPORT_FAILED: {
        "uz": "❌ Hisobot yaratishda xatolik yuz berdi. Iltimos qaytadan urinib ko'ring.",
        "ru": "❌ Ошибка при создании отчета. Пожалуйста, попробуйте снова.",
        "en": "❌ Error generating report. Please try again.",
    },
    MessageKey.DAILY_NO_DATA: {
        "uz": "📭 Bugun {date} sana uchun ma'lumotlar topilmadi.",
        "ru": "📭 Данные на сегодня ({date}) не найдены.",
        "en": "📭 No data found for today ({date}).",
    },
    MessageKey.DAILY_CAPTION: {
        "uz": "📊 Bugungi kunlik hisobot — {date}",
        "ru": "📊 Ежедневный отчет на сегодня — {date}",
        "en": "📊 Today's daily report — {date}",
    },
    MessageKey.LABEL_TITLE: {"uz": "Hisobot", "ru": "Отчет", "en": "Report"},
    MessageKey.LABEL_PHONE: {"uz": "Telefon raqami", "ru": "Номер телефона", "en": "Phone Number"},
    MessageKey.LABEL_CLIENT: {"uz": "Mijoz", "ru": "Клиент", "en": "Client"},
    MessageKey.LABEL_FROM: {"uz": "Boshlanish sanasi", "ru": "Дата начала", "en": "From Date"},
    MessageKey.LABEL_TO: {"uz": "Tugash sanasi", "ru": "Дата окончания", "en": "To Date"},
    MessageKey.LABEL_GENERATED_AT: {"uz": "Yaratilgan sana", "ru": "Дата создания", "en": "Generated At"},
    MessageKey.LABEL_REPORT_DATA: {
        "uz": "Hisobot ma'lumotlari",
        "ru": "Данные отчета",
        "en": "Report Data",
    },
    MessageKey.LABEL_NO_DATA: {
        "uz": "Ma'lumot topilmadi",
        "ru": "Данные не найдены",
        "en": "No data available",
    },
}


def resolve_language(language: object) -> str:
    if not isinstance(language, str):
        return DEFAULT_LANGUAGE
    code = language.strip().lower()[:2]
    return code if code in {"uz", "ru", "en"} else DEFAULT_LANGUAGE


def get_message(key: MessageKey, language: object = DEFAULT_LANGUAGE, **kwargs: object) -> str:
    translations = MESSAGES[key]
    text = translations.get(resolve_language(language)) or translations[DEFAULT_LANGUAGE]
    if kwargs:
        text = text.format(**kwargs)
    return text
