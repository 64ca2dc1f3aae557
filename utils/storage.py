import gzip
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class FileStorage:
    """Файловое хранилище для poll data и описаний предметов"""

    def __init__(self, data_directory: str, gzip_data: bool = False):
        self.base_dir = Path(data_directory)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.gzip_data = gzip_data

    def read_many(self, keys: Iterable[str]) -> Dict[str, Optional[bytes]]:
        """Чтение нескольких файлов; отсутствующие и битые возвращаются как None"""
        files = {}
        for key in keys:
            files[key] = self._read(key)
        return files

    def read(self, key: str) -> Optional[bytes]:
        return self._read(key)

    def write(self, key: str, content: bytes):
        """Запись файла; ошибки ввода-вывода пробрасываются вызывающему"""
        path = self._path(key)
        if self.gzip_data:
            content = gzip.compress(content)

        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(content)
        tmp_path.replace(path)

    def _read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Cannot read {path.name}: {e}")
            return None

        if not self.gzip_data:
            return content

        try:
            return gzip.decompress(content)
        except (OSError, EOFError) as e:
            logger.debug(f"Cannot gunzip {path.name}: {e}")
            return None

    def _path(self, key: str) -> Path:
        name = Path(key).name
        if self.gzip_data:
            name += ".gz"
        return self.base_dir / name
