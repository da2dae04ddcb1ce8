"""Spoken prompts for the dialog engine in English and Russian.

Tables are keyed by the primary language subtag ("en", "ru"). Lookups for an
unknown language, or a key missing from a table, fall back to English.
"""

from __future__ import annotations

from typing import Any

FALLBACK_LANGUAGE = "en"

STRINGS: dict[str, dict[str, str]] = {
    "en": {
        "welcome_message": "Hello! I am your helper. What should I call you?",
        "default_user_name": "friend",
        "name_confirmation": "Nice to meet you, {name}. I will call you {name}.",
        "default_name_confirmation": "All right, I will call you {name}.",
        "final_settings_confirmation": (
            "Your settings: name {name}, language {language}, speech speed {speed}. "
            "Press the red button whenever you need me."
        ),
        "language_name": "English",
        "open_settings_prompt": "Settings. What would you like to change: name, language or speech speed?",
        "choose_name_prompt": "What name should I use?",
        "choose_language_prompt": "Which language: Russian or English?",
        "choose_speed_prompt": "Should I speak faster or slower?",
        "didnt_understand_rephrase": "Sorry, I did not understand. Say name, language or speed.",
        "language_not_recognized_reprompt": "Did you say {guess}? Please say Russian or English.",
        "language_not_recognized_exit": "Sorry, I could not recognize the language. Leaving settings.",
        "didnt_understand_speed": "Sorry, say faster or slower.",
        "command_not_recognized_exit": "Sorry, I did not understand the command. Leaving settings.",
        "language_set_confirmation": "Done. I will speak English now.",
        "speak_faster_confirmation": "Okay, I will speak faster.",
        "speak_slower_confirmation": "Okay, I will speak slower.",
        "speed_confirmation": "Done. My speech speed is now {speed}.",
        "speech_rate_slow": "slow",
        "speech_rate_normal": "normal",
        "speech_rate_fast": "fast",
        "llm_error_fallback": "Sorry, I could not get an answer right now. Please try again a bit later.",
        "nothing_to_repeat": "I have not said anything yet.",
        "screen_context_app": "App: ",
        "screen_context_unknown": "unknown",
        "screen_context_unavailable": "Screen content is unavailable.",
        "screen_context_text": "Text: ",
        "screen_context_description": "Description: ",
    },
    "ru": {
        "welcome_message": "Здравствуйте! Я ваш помощник. Как мне вас называть?",
        "default_user_name": "друг",
        "name_confirmation": "Приятно познакомиться, {name}. Буду называть вас {name}.",
        "default_name_confirmation": "Хорошо, буду называть вас {name}.",
        "final_settings_confirmation": (
            "Ваши настройки: имя {name}, язык {language}, скорость речи {speed}. "
            "Нажмите красную кнопку, когда я понадоблюсь."
        ),
        "language_name": "русский",
        "open_settings_prompt": "Настройки. Что хотите изменить: имя, язык или скорость речи?",
        "choose_name_prompt": "Как мне вас называть?",
        "choose_language_prompt": "Какой язык: русский или английский?",
        "choose_speed_prompt": "Говорить быстрее или медленнее?",
        "didnt_understand_rephrase": "Извините, я не поняла. Скажите: имя, язык или скорость.",
        "language_not_recognized_reprompt": "Вы сказали {guess}? Скажите: русский или английский.",
        "language_not_recognized_exit": "Извините, я не распознала язык. Выхожу из настроек.",
        "didnt_understand_speed": "Извините, скажите: быстрее или медленнее.",
        "command_not_recognized_exit": "Извините, я не поняла команду. Выхожу из настроек.",
        "language_set_confirmation": "Готово. Теперь я говорю по-русски.",
        "speak_faster_confirmation": "Хорошо, буду говорить быстрее.",
        "speak_slower_confirmation": "Хорошо, буду говорить медленнее.",
        "speed_confirmation": "Готово. Скорость речи теперь {speed}.",
        "speech_rate_slow": "медленная",
        "speech_rate_normal": "обычная",
        "speech_rate_fast": "быстрая",
        "llm_error_fallback": "Извините, сейчас не получилось получить ответ. Попробуйте чуть позже.",
        "nothing_to_repeat": "Я ещё ничего не говорила.",
        "screen_context_app": "Приложение: ",
        "screen_context_unknown": "неизвестно",
        "screen_context_unavailable": "Содержимое экрана недоступно.",
        "screen_context_text": "Текст: ",
        "screen_context_description": "Описание: ",
    },
}


def language_key(language_tag: str | None) -> str:
    """Map a BCP 47 tag such as ``ru-RU`` to its string table key."""
    primary = (language_tag or "").replace("_", "-").split("-", 1)[0].strip().lower()
    return primary if primary in STRINGS else FALLBACK_LANGUAGE


def localized(language_tag: str | None, key: str, **kwargs: Any) -> str:
    """Return the prompt ``key`` for ``language_tag``, formatted with ``kwargs``."""
    table = STRINGS[language_key(language_tag)]
    template = table.get(key)
    if template is None:
        template = STRINGS[FALLBACK_LANGUAGE][key]
    return template.format(**kwargs) if kwargs else template
