from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional
import json
import logging
import threading

from .models import ClassKey

logger = logging.getLogger(__name__)


def asset_filename(key: ClassKey) -> str:
    return f"asset_{key}.json"


class DescriptionCache:
    """
    Кэш описаний классов предметов (classKey -> описание).

    Записи неизменяемы и пишутся один раз на ключ, поэтому один экземпляр
    можно передавать нескольким менеджерам. Между чистками кэш может временно
    превышать max_items; чистка выбрасывает записи, к которым дольше всего
    не обращались.
    """

    def __init__(self, max_items: int = 500, gc_interval: int = 120000, storage=None):
        self.max_items = max_items
        self.gc_interval = gc_interval
        self.storage = storage
        self._entries: "OrderedDict[ClassKey, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._closed = False

        if gc_interval and gc_interval > 0:
            self._schedule_sweep()

    def get(self, key: ClassKey) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                return entry

        if not self.storage:
            return None

        loaded = self._load(key, self.storage.read(asset_filename(key)))
        if loaded is None:
            return None

        with self._lock:
            self._entries.setdefault(key, loaded)
            self._entries.move_to_end(key)
            return self._entries[key]

    def exists(self, key: ClassKey) -> bool:
        with self._lock:
            return key in self._entries

    def put(self, key: ClassKey, metadata: Dict[str, Any], persist: bool = True) -> bool:
        """Добавляет описание; повторная запись того же ключа игнорируется"""
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return False
            self._entries[key] = dict(metadata)

        if persist and self.storage:
            try:
                self.storage.write(asset_filename(key), json.dumps(metadata).encode("utf-8"))
            except OSError as e:
                logger.debug(f"Cannot write {asset_filename(key)}: {e}")

        return True

    def hydrate(self, keys: Iterable[ClassKey]) -> int:
        """Подгружает из хранилища описания, которых нет в памяти"""
        if not self.storage:
            return 0

        missing = {asset_filename(key): key for key in keys if not self.exists(key)}
        if not missing:
            return 0

        loaded = 0
        for filename, content in self.storage.read_many(list(missing)).items():
            key = missing.get(filename)
            if key is None:
                logger.debug(f"Unexpected description file {filename}")
                continue

            metadata = self._load(key, content)
            if metadata is not None and self.put(key, metadata, persist=False):
                loaded += 1

        return loaded

    def sweep(self) -> int:
        with self._lock:
            evicted = 0
            while len(self._entries) > self.max_items:
                self._entries.popitem(last=False)
                evicted += 1

        if evicted:
            logger.debug(f"Description cache sweep evicted {evicted} entries")
        return evicted

    def keys(self):
        with self._lock:
            return list(self._entries)

    def close(self):
        with self._lock:
            self._closed = True
            if self._timer:
                self._timer.cancel()
                self._timer = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        return self.exists(key)

    def _load(self, key: ClassKey, content: Optional[bytes]) -> Optional[Dict[str, Any]]:
        if content is None:
            return None
        try:
            return json.loads(content.decode("utf-8"))
        except ValueError as e:
            logger.debug(f"Error parsing description file {asset_filename(key)}: {e}")
            return None

    def _schedule_sweep(self):
        with self._lock:
            if self._closed:
                return
            self._timer = threading.Timer(self.gc_interval / 1000, self._run_sweep)
            self._timer.daemon = True
            self._timer.start()

    def _run_sweep(self):
        self.sweep()
        self._schedule_sweep()
