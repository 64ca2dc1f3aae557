import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default=None):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    STEAM_API_KEY = os.getenv("STEAM_API_KEY")
    PROXY = os.getenv("PROXY")  # "http://user:pass@ip:port"
    DATA_DIRECTORY = os.getenv("DATA_DIRECTORY", "data")
    LANGUAGE = os.getenv("LANGUAGE", "en")

    POLL_INTERVAL = _int_env("POLL_INTERVAL", 30000)
    POLL_FULL_UPDATE_INTERVAL = _int_env("POLL_FULL_UPDATE_INTERVAL", 120000)
    CANCEL_TIME = _int_env("CANCEL_TIME")
    PENDING_CANCEL_TIME = _int_env("PENDING_CANCEL_TIME")
    CANCEL_OFFER_COUNT = _int_env("CANCEL_OFFER_COUNT")
    CANCEL_OFFER_COUNT_MIN_AGE = _int_env("CANCEL_OFFER_COUNT_MIN_AGE", 0)

    GLOBAL_ASSET_CACHE = _bool_env("GLOBAL_ASSET_CACHE", True)
    ASSET_CACHE_MAX_ITEMS = _int_env("ASSET_CACHE_MAX_ITEMS", 500)
    ASSET_CACHE_GC_INTERVAL = _int_env("ASSET_CACHE_GC_INTERVAL", 120000)
    GZIP_DATA = _bool_env("GZIP_DATA")
    SAVE_POLL_DATA = _bool_env("SAVE_POLL_DATA", True)

    LOGS_DIR = os.getenv("LOGS_DIR", "logs")

    @classmethod
    def manager_options(cls, **overrides) -> dict:
        """Настройки менеджера по умолчанию из окружения"""
        options = {
            "language": cls.LANGUAGE,
            "poll_interval": cls.POLL_INTERVAL,
            "poll_full_update_interval": cls.POLL_FULL_UPDATE_INTERVAL,
            "cancel_time": cls.CANCEL_TIME,
            "pending_cancel_time": cls.PENDING_CANCEL_TIME,
            "cancel_offer_count": cls.CANCEL_OFFER_COUNT,
            "cancel_offer_count_min_age": cls.CANCEL_OFFER_COUNT_MIN_AGE,
            "global_asset_cache": cls.GLOBAL_ASSET_CACHE,
            "asset_cache_max_items": cls.ASSET_CACHE_MAX_ITEMS,
            "asset_cache_gc_interval": cls.ASSET_CACHE_GC_INTERVAL,
            "data_directory": cls.DATA_DIRECTORY,
            "gzip_data": cls.GZIP_DATA,
            "save_poll_data": cls.SAVE_POLL_DATA,
        }
        options.update({k: v for k, v in overrides.items() if v is not None})
        return options
