from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional
import logging
import re

from .cache import DescriptionCache
from .exceptions import FetchError, OfferManagerError, RemoteProtocolError
from .models import ClassKey, EconItem

logger = logging.getLogger(__name__)

ITEMS_PER_CLASSINFO_REQUEST = 100
_CLASSINFO_KEY = re.compile(r"^\d+(_\d+)?$")


class DescriptionFetcher:
    """
    Получение описаний классов для ассетов офферов.

    Недостающие ключи сначала ищутся в хранилище кэша, затем запрашиваются
    через ISteamEconomy/GetAssetClassInfo пачками до 100 ключей на appid.
    Все успешно полученные пачки остаются в кэше, даже если другая пачка
    упала с ошибкой.
    """

    def __init__(self, api, cache: DescriptionCache, language: Optional[str] = None,
                 max_workers: int = 4, chunk_size: int = ITEMS_PER_CLASSINFO_REQUEST):
        self.api = api
        self.cache = cache
        self.language = language
        self.max_workers = max_workers
        self.chunk_size = chunk_size

    def has_description(self, item: Any, appid: Optional[int] = None) -> bool:
        return self.cache.exists(ClassKey.of(item, appid))

    def digest(self, descriptions: Iterable[Dict[str, Any]]) -> int:
        added = 0
        for description in descriptions or []:
            if not description or not description.get("appid") or not description.get("classid"):
                continue
            if self.cache.put(ClassKey.of(description), description):
                added += 1
        return added

    def describe(self, items: Iterable[Any], appid: Optional[int] = None,
                 contextid: Optional[str] = None) -> List[EconItem]:
        """Склеивает ассеты с описаниями из кэша (без сетевых запросов)"""
        described = []
        for item in items:
            data = dict(item)
            if appid:
                data["appid"] = appid
            if contextid:
                data["contextid"] = contextid
            described.append(EconItem.from_data(data, self.cache.get(ClassKey.of(data))))
        return described

    def resolve(self, items: Iterable[Dict[str, Any]]) -> List[EconItem]:
        items = list(items)
        self.request(items)
        return self.describe(items)

    def request(self, items: Iterable[Any]) -> int:
        """Загружает недостающие описания; возвращает число запрошенных ключей"""
        keys: List[ClassKey] = []
        seen = set()
        for item in items:
            key = ClassKey.of(item)
            if key in seen or self.cache.exists(key):
                continue
            seen.add(key)
            keys.append(key)

        if not keys:
            return 0

        self.cache.hydrate(keys)
        keys = [key for key in keys if not self.cache.exists(key)]
        if not keys:
            return 0

        chunks = []
        by_app: Dict[int, List[ClassKey]] = {}
        for key in keys:
            by_app.setdefault(key.appid, []).append(key)
        for appid, app_keys in by_app.items():
            for i in range(0, len(app_keys), self.chunk_size):
                chunks.append((appid, app_keys[i:i + self.chunk_size]))

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunks))) as executor:
            futures = [executor.submit(self._request_chunk, appid, chunk) for appid, chunk in chunks]

        first_error = None
        for future in futures:
            error = future.exception()
            if error is not None and first_error is None:
                first_error = error

        if first_error is not None:
            if isinstance(first_error, OfferManagerError):
                raise FetchError(
                    f"Descriptions: {first_error}", eresult=first_error.eresult,
                    cause=first_error.cause, body=first_error.body,
                ) from first_error
            raise first_error

        return len(keys)

    def _request_chunk(self, appid: int, chunk: List[ClassKey]):
        params: Dict[str, Any] = {"appid": appid, "class_count": len(chunk)}
        if self.language:
            params["language"] = self.language
        for index, key in enumerate(chunk):
            params[f"classid{index}"] = key.classid
            params[f"instanceid{index}"] = key.instanceid

        logger.debug(f"Requesting classinfo for {len(chunk)} items from app {appid}")
        body = self.api.call("GET", "GetAssetClassInfo", 1, params, iface="ISteamEconomy")

        result = body.get("result")
        if not isinstance(result, dict) or not result.get("success"):
            raise RemoteProtocolError("Invalid API response", body=body)

        descriptions = []
        for class_id, description in result.items():
            if not _CLASSINFO_KEY.match(class_id) or not isinstance(description, dict):
                continue
            description = dict(description)
            description["appid"] = appid
            descriptions.append(description)

        self.digest(descriptions)
