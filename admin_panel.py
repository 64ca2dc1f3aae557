import json
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from config import Config
from tradeoffers.cache import DescriptionCache
from tradeoffers.events import Event
from tradeoffers.manager import TradeOfferManager
from tradeoffers.options import ManagerOptions
from tradeoffers.steam_client import SteamClientWrapper
from utils.logger import setup_logger
from utils.storage import FileStorage


def login_transport(account_config: Dict) -> SteamClientWrapper:
    """Логин через steampy и HTTP транспорт для менеджера"""
    return SteamClientWrapper.login(
        account_config['api_key'],
        account_config['username'],
        account_config['password'],
        account_config['ma_file'],
        proxy=account_config.get('proxy'),
    )


class ManagerRegistry:
    """Реестр менеджеров трейд-офферов по аккаунтам"""

    REQUIRED_FIELDS = ['name', 'steam_id', 'username', 'password', 'api_key', 'ma_file']

    def __init__(self, data_dir: str = None, transport_factory: Callable[[Dict], object] = None,
                 max_poll_failures: int = 5):
        self.data_dir = Path(data_dir or Config.DATA_DIRECTORY)
        self.transport_factory = transport_factory or login_transport
        self.max_poll_failures = max_poll_failures
        self.managers: Dict[str, TradeOfferManager] = {}
        self.manager_configs: Dict[str, Dict] = {}
        self.poll_failures: Dict[str, int] = {}
        self.shared_cache: Optional[DescriptionCache] = None
        self.logger = setup_logger("ManagerRegistry", Config.LOGS_DIR)
        self._load_manager_configs()

    @property
    def config_file(self) -> Path:
        return self.data_dir / "manager_configs.json"

    @property
    def notification_file(self) -> Path:
        return self.data_dir / "admin_notifications.json"

    def create_manager(self, account_config: Dict) -> Optional[str]:
        """
        Создание менеджера для аккаунта
        Обязательные поля:
        - name: str
        - steam_id: str (SteamID64)
        - username: str
        - password: str
        - api_key: str
        - ma_file: str (путь к файлу)
        Необязательные: proxy, options (dict с настройками ManagerOptions)
        """
        for field in self.REQUIRED_FIELDS:
            if field not in account_config or not account_config[field]:
                raise ValueError(f"Обязательное поле '{field}' отсутствует или пустое")

        manager_id = self._generate_manager_id()
        config = dict(account_config)
        config['created_at'] = datetime.now().isoformat()

        self.managers[manager_id] = self._build_manager(manager_id, config)
        self.manager_configs[manager_id] = config
        self._save_manager_configs()

        self.logger.info(f"Менеджер {config['name']} (ID: {manager_id}) создан")
        return manager_id

    def get_manager(self, manager_id: str) -> Optional[TradeOfferManager]:
        return self.managers.get(manager_id)

    def start_manager(self, manager_id: str) -> bool:
        manager = self.managers.get(manager_id)
        if manager is None:
            self.logger.warning(f"Менеджер {manager_id} не найден")
            return False
        manager.start()
        return True

    def pause_manager(self, manager_id: str) -> bool:
        manager = self.managers.get(manager_id)
        if manager is None:
            self.logger.warning(f"Менеджер {manager_id} не найден")
            return False
        manager.pause()
        self.logger.info(f"Опрос менеджера {manager_id} приостановлен")
        return True

    def resume_manager(self, manager_id: str) -> bool:
        if not self.start_manager(manager_id):
            return False
        self.poll_failures[manager_id] = 0
        self.logger.info(f"Опрос менеджера {manager_id} возобновлен")
        return True

    def force_poll(self, manager_id: str, full_update: bool = False) -> bool:
        manager = self.managers.get(manager_id)
        if manager is None or not manager.is_polling:
            return False
        manager.do_poll(full_update)
        return True

    def delete_manager(self, manager_id: str) -> bool:
        manager = self.managers.pop(manager_id, None)
        if manager is None:
            self.logger.warning(f"Менеджер {manager_id} не найден")
            return False

        manager.shutdown()
        self.manager_configs.pop(manager_id, None)
        self.poll_failures.pop(manager_id, None)
        self._save_manager_configs()
        self.logger.info(f"Менеджер {manager_id} удален")
        return True

    def get_manager_list(self, filters: Dict = None) -> List[Dict]:
        """
        Список менеджеров с фильтрами:
        - name: по названию
        - steam_id: по SteamID64
        - username: по стим логину
        """
        managers_info = []

        for manager_id, config in self.manager_configs.items():
            manager = self.managers.get(manager_id)
            info = {
                'manager_id': manager_id,
                'name': config.get('name', ''),
                'steam_id': config.get('steam_id', ''),
                'username': config.get('username', ''),
                'created_at': config.get('created_at', ''),
                'is_polling': manager.is_polling if manager else False,
                'poll_failures': self.poll_failures.get(manager_id, 0),
                'known_offers': (len(manager.poll_data.sent) + len(manager.poll_data.received)) if manager else 0,
            }

            if filters:
                if filters.get('name') and filters['name'].lower() not in info['name'].lower():
                    continue
                if filters.get('steam_id') and filters['steam_id'] != info['steam_id']:
                    continue
                if filters.get('username') and filters['username'].lower() not in info['username'].lower():
                    continue

            managers_info.append(info)

        return managers_info

    def start_all(self):
        for manager_id in list(self.managers):
            try:
                self.start_manager(manager_id)
            except Exception as e:
                self.logger.error(f"Ошибка запуска менеджера {manager_id}: {e}")

    def shutdown_all(self):
        for manager in self.managers.values():
            manager.shutdown()
        if self.shared_cache is not None:
            self.shared_cache.close()

    def get_admin_notifications(self) -> List[Dict]:
        """Уведомления админа, новые первыми"""
        notifications = []
        if self.notification_file.exists():
            with open(self.notification_file, 'r', encoding='utf-8') as f:
                for line in f:
                    if line.strip():
                        notifications.append(json.loads(line.strip()))

        notifications.sort(key=lambda x: x['timestamp'], reverse=True)
        return notifications

    def clear_admin_notifications(self) -> bool:
        if self.notification_file.exists():
            os.remove(self.notification_file)
        self.logger.info("Уведомления очищены")
        return True

    def _build_manager(self, manager_id: str, config: Dict) -> TradeOfferManager:
        transport = self.transport_factory(config)
        options = ManagerOptions(**Config.manager_options(**config.get('options', {})))

        cache = None
        if options.global_asset_cache:
            cache = self._get_shared_cache(options)

        manager = TradeOfferManager(
            transport,
            config['api_key'],
            steam_id=config['steam_id'],
            options=options,
            cache=cache,
            name=config.get('name') or manager_id,
        )

        manager.on(Event.SESSION_EXPIRED, lambda err: self._notify_admin(
            manager_id, f"Сессия истекла: {err}"))
        manager.on(Event.POLL_FAILURE, lambda err: self._on_poll_failure(manager_id, err))
        manager.on(Event.POLL_SUCCESS, lambda: self.poll_failures.__setitem__(manager_id, 0))
        return manager

    def _get_shared_cache(self, options: ManagerOptions) -> DescriptionCache:
        # Один кэш на все менеджеры процесса
        if self.shared_cache is None:
            storage = None
            if options.data_directory:
                storage = FileStorage(options.data_directory, options.gzip_data)
            self.shared_cache = DescriptionCache(
                options.asset_cache_max_items,
                options.asset_cache_gc_interval,
                storage=storage,
            )
        return self.shared_cache

    def _on_poll_failure(self, manager_id: str, error: Exception):
        count = self.poll_failures.get(manager_id, 0) + 1
        self.poll_failures[manager_id] = count
        self.logger.warning(f"Менеджер {manager_id}: ошибка опроса #{count}: {error}")
        if count == self.max_poll_failures:
            self._notify_admin(manager_id, f"{count} ошибок опроса подряд. Последняя: {error}")

    def _notify_admin(self, manager_id: str, message: str):
        notification = {
            'manager_id': manager_id,
            'name': self.manager_configs.get(manager_id, {}).get('name', ''),
            'message': message,
            'timestamp': datetime.now().isoformat()
        }

        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.notification_file, 'a', encoding='utf-8') as f:
            json.dump(notification, f, ensure_ascii=False)
            f.write('\n')

        self.logger.warning(f"[ADMIN ALERT] Менеджер {manager_id}: {message}")

    def _generate_manager_id(self) -> str:
        return f"manager_{len(self.manager_configs) + 1}_{int(datetime.now().timestamp())}"

    def _load_manager_configs(self):
        if not self.config_file.exists():
            return

        with open(self.config_file, 'r', encoding='utf-8') as f:
            self.manager_configs = json.load(f)

        for manager_id, config in self.manager_configs.items():
            try:
                self.managers[manager_id] = self._build_manager(manager_id, config)
            except Exception as e:
                self.logger.error(f"Ошибка восстановления менеджера {manager_id}: {e}")

    def _save_manager_configs(self):
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self.manager_configs, f, ensure_ascii=False, indent=2)
