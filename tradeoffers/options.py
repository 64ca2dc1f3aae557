from typing import Optional
import logging

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

MINIMUM_INTERVAL = 1000

# Коды, которые Steam понимает иначе, чем ISO
LANGUAGE_ALIASES = {
    "szh": ("zh", "schinese"),
    "tzh": ("zh", "tchinese"),
    "br": ("pt-BR", "brazilian"),
}

LANGUAGE_NAMES = {
    "ar": "arabic",
    "bg": "bulgarian",
    "cs": "czech",
    "da": "danish",
    "de": "german",
    "el": "greek",
    "en": "english",
    "es": "spanish",
    "fi": "finnish",
    "fr": "french",
    "hu": "hungarian",
    "it": "italian",
    "ja": "japanese",
    "ko": "koreana",
    "nl": "dutch",
    "no": "norwegian",
    "pl": "polish",
    "pt": "portuguese",
    "ro": "romanian",
    "ru": "russian",
    "sv": "swedish",
    "th": "thai",
    "tr": "turkish",
    "uk": "ukrainian",
    "vi": "vietnamese",
}


def resolve_language(language: Optional[str]):
    """Возвращает (код для API, имя для cookie Steam_Language) или (None, None)"""
    if not language:
        return None, None
    if language in LANGUAGE_ALIASES:
        return LANGUAGE_ALIASES[language]
    name = LANGUAGE_NAMES.get(language.lower())
    if not name:
        logger.warning(f"Unknown language {language!r}, item descriptions are disabled")
        return None, None
    return language, name


class ManagerOptions(BaseModel):
    """Настройки TradeOfferManager; интервалы в миллисекундах"""
    language: Optional[str] = None
    poll_interval: int = 30000
    minimum_poll_interval: int = MINIMUM_INTERVAL
    poll_full_update_interval: int = 120000
    cancel_time: Optional[int] = None
    pending_cancel_time: Optional[int] = None
    cancel_offer_count: Optional[int] = None
    cancel_offer_count_min_age: Optional[int] = 0
    global_asset_cache: bool = False
    asset_cache_max_items: int = 500
    asset_cache_gc_interval: int = 120000
    data_directory: Optional[str] = None
    gzip_data: bool = False
    save_poll_data: bool = False

    @field_validator("poll_interval")
    @classmethod
    def _check_poll_interval(cls, value: int) -> int:
        if value < 0:
            return value
        return _sanity_check("poll_interval", value)

    @field_validator("minimum_poll_interval", "poll_full_update_interval")
    @classmethod
    def _check_intervals(cls, value: int, info) -> int:
        return _sanity_check(info.field_name, value)

    @field_validator("cancel_offer_count_min_age")
    @classmethod
    def _check_min_age(cls, value: Optional[int]) -> int:
        return value or 0

    @field_validator("asset_cache_max_items", "asset_cache_gc_interval")
    @classmethod
    def _check_cache(cls, value: int, info) -> int:
        if value <= 0:
            return cls.model_fields[info.field_name].default
        return value


def _sanity_check(name: str, value: int) -> int:
    if value < MINIMUM_INTERVAL:
        logger.warning(
            f"Option {name} failed sanity check: provided value ({value}) is too low. "
            f"{name} has been forced to {MINIMUM_INTERVAL}."
        )
        return MINIMUM_INTERVAL
    return value
