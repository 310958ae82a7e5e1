from __future__ import annotations

from typing import Any

MUSIC_RU = {
    "music.usage": "🎧 Поиск музыки: /{command} <название или исполнитель>",
    "music.search.empty": "🔍 По запросу «{keyword}» ничего не найдено.",
    "music.search.failed": "⚠️ Сервис музыки сейчас недоступен. Попробуйте позже.",
    "music.menu.header": "🎧 «{keyword}» · {source} · стр. {page}",
    "music.menu.hint_select": "Отправьте номер трека (1–{count}), чтобы получить голосовое.",
    "music.menu.hint_paging": "«{next_page}» — следующая страница, «{prev_page}» — предыдущая.",
    "music.menu.hint_exit": "«{exit_command}» — выйти из поиска.",
    "music.page.no_more": "Больше результатов нет.",
    "music.page.first": "Это уже первая страница.",
    "music.page.failed": "⚠️ Не удалось перелистнуть страницу. Попробуйте ещё раз.",
    "music.exit.ack": "Поиск музыки закрыт.",
    "music.selection.invalid": "Номера {index} нет в списке (1–{count}). Поиск закрыт, начните заново.",
    "music.timeout": "⌛ Время выбора истекло. Начните поиск заново.",
    "music.resolve.failed": (
        "⚠️ Не удалось получить ссылку на трек. Выберите качество пониже "
        "или включите принудительное перекодирование."
    ),
    "music.resolve.fragile": (
        "⚠️ Трек доступен только в формате WMA, который Telegram не воспроизводит по ссылке. "
        "Включите принудительное перекодирование."
    ),
    "music.delivery.duration": "⏱ Трек длится {duration}, а максимум — {limit}.",
    "music.delivery.capability": "⚠️ Перекодирование недоступно: на сервере не настроен ffmpeg.",
    "music.delivery.failed": (
        "⚠️ Не удалось отправить трек. Выберите качество пониже "
        "или включите принудительное перекодирование."
    ),
    "music.delivery.failed_link": (
        "⚠️ Telegram не смог загрузить трек по ссылке. "
        "Включите режим buffer или принудительное перекодирование."
    ),
    "music.error.generic": "⚠️ Что-то пошло не так. Попробуйте ещё раз.",
}


def t(key: str, /, **kwargs: Any) -> str:
    value = MUSIC_RU.get(key, key)
    if kwargs:
        try:
            return value.format(**kwargs)
        except Exception:
            return value
    return value


def format_duration(seconds: int | None) -> str:
    """Render ``seconds`` as ``m:ss``; unknown durations render as an empty string."""

    if seconds is None or seconds < 0:
        return ""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


__all__ = ["MUSIC_RU", "format_duration", "t"]
