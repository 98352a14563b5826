import re
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from languages import SOURCE_LANG, Language

LANG_PREFIX = "lang_"
ADMIN_ENABLE_PREFIX = "lang_admin_enable_"
ADMIN_DISABLE_PREFIX = "lang_admin_disable_"

_EMOJI = "\U0001F1E0-\U0001F1FF\U0001F300-\U0001FAFF\u2190-\u21FF\u2300-\u27BF\u2B00-\u2BFF\ufe0f\u200d"
EMOJI_EDGES_RE = re.compile("^([" + _EMOJI + "\\s]*)(.*?)([" + _EMOJI + "\\s]*)$", re.S)


def _rows(buttons: List[InlineKeyboardButton], per_row: int = 2) -> List[List[InlineKeyboardButton]]:
    return [buttons[i : i + per_row] for i in range(0, len(buttons), per_row)]


def build_language_kb(languages: Iterable[Language]) -> InlineKeyboardMarkup:
    """Выбор языка пользователем: по две кнопки в ряд."""
    buttons = [
        InlineKeyboardButton(text=lang.label, callback_data=f"{LANG_PREFIX}{lang.code}")
        for lang in languages
    ]
    return InlineKeyboardMarkup(inline_keyboard=_rows(buttons))


def build_admin_languages_kb() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="➕ Add Language", callback_data="lang_admin_add"),
                InlineKeyboardButton(text="➖ Remove Language", callback_data="lang_admin_remove"),
            ],
            [
                InlineKeyboardButton(text="🔄 Restart LibreTranslate", callback_data="lang_admin_restart_libre"),
                InlineKeyboardButton(text="📊 User Stats", callback_data="lang_detailed"),
            ],
        ]
    )


def build_admin_enable_kb(disabled: Iterable[Language]) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(text=lang.label, callback_data=f"{ADMIN_ENABLE_PREFIX}{lang.code}")
        for lang in disabled
    ]
    rows = _rows(buttons)
    rows.append([InlineKeyboardButton(text="🔙 Back", callback_data="lang_admin_menu")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def build_admin_disable_kb(enabled: Iterable[Language]) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(text=f"❌ {lang.label}", callback_data=f"{ADMIN_DISABLE_PREFIX}{lang.code}")
        for lang in enabled
        if lang.code != SOURCE_LANG
    ]
    rows = _rows(buttons)
    rows.append([InlineKeyboardButton(text="🔙 Back", callback_data="lang_admin_menu")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def parse_language_callback(data: Optional[str]) -> Optional[str]:
    """Code from ``lang_<code>`` callback data; admin callbacks are not user picks."""
    if not data or not data.startswith(LANG_PREFIX) or data.startswith("lang_admin"):
        return None
    code = data[len(LANG_PREFIX) :]
    if code == "detailed":
        return None
    return code or None


def split_emoji(text: str) -> Tuple[str, str, str]:
    """``(lead, core, trail)``: emoji and spacing around the translatable words."""
    match = EMOJI_EDGES_RE.match(text or "")
    if match is None:
        return "", text, ""
    return match.group(1), match.group(2), match.group(3)


async def translate_keyboard(
    markup: InlineKeyboardMarkup,
    translate: Callable[[str], Awaitable[str]],
) -> InlineKeyboardMarkup:
    """Копия клавиатуры с переведёнными подписями; эмодзи и callback_data не меняются."""
    rows = []
    for row in markup.inline_keyboard:
        new_row = []
        for button in row:
            lead, core, trail = split_emoji(button.text)
            if core:
                button = button.model_copy(update={"text": f"{lead}{await translate(core)}{trail}"})
            new_row.append(button)
        rows.append(new_row)
    return InlineKeyboardMarkup(inline_keyboard=rows)
