import asyncio
import schedule
import time
import threading
from datetime import datetime, timedelta
from pathlib import Path

from admin_panel import ManagerRegistry
from config import Config
from tradeoffers.events import Event
from utils.logger import setup_logger


class ManagerOrchestrator:
    """Оркестратор для запуска менеджеров всех аккаунтов"""

    def __init__(self, registry: ManagerRegistry = None):
        self.registry = registry or ManagerRegistry()
        self.logger = setup_logger("ManagerOrchestrator", Config.LOGS_DIR)
        self.is_running = True

        # Настройка планировщика для автоматических задач
        self._setup_scheduler()

    async def run_all_managers(self):
        """Запуск всех менеджеров и ожидание остановки"""
        self.logger.info("Запуск менеджеров трейд-офферов")

        for manager_id, manager in self.registry.managers.items():
            self._attach_event_logging(manager_id, manager)

        # Первый цикл опроса синхронный, поэтому стартуем в потоках
        tasks = [
            asyncio.to_thread(self._start_manager, manager_id)
            for manager_id in list(self.registry.managers)
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        else:
            self.logger.warning("Нет менеджеров для запуска")

        # Запуск планировщика в отдельном потоке
        scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
        scheduler_thread.start()

        while self.is_running:
            await asyncio.sleep(1)

        self.registry.shutdown_all()

    def _start_manager(self, manager_id: str):
        try:
            self.registry.start_manager(manager_id)
            self.logger.info(f"Запущен менеджер {manager_id}")
        except Exception as e:
            self.logger.error(f"Ошибка запуска менеджера {manager_id}: {e}")

    def _attach_event_logging(self, manager_id: str, manager):
        manager_logger = setup_logger(f"Manager_{manager_id}", Config.LOGS_DIR)

        manager.on(Event.NEW_OFFER, lambda offer: manager_logger.info(
            f"Новый оффер #{offer.id} от {offer.partner}"))
        manager.on(Event.SENT_OFFER_CHANGED, lambda offer, old: manager_logger.info(
            f"Отправленный оффер #{offer.id}: {old.name} -> {offer.state.name}"))
        manager.on(Event.RECEIVED_OFFER_CHANGED, lambda offer, old: manager_logger.info(
            f"Полученный оффер #{offer.id}: {old.name} -> {offer.state.name}"))
        manager.on(Event.SENT_OFFER_CANCELED, lambda offer, reason: manager_logger.info(
            f"Оффер #{offer.id} отменен автоматически ({reason})"))
        manager.on(Event.SENT_PENDING_OFFER_CANCELED, lambda offer: manager_logger.info(
            f"Неподтвержденный оффер #{offer.id} отменен автоматически"))
        manager.on(Event.UNKNOWN_OFFER_SENT, lambda offer: manager_logger.info(
            f"Обнаружен оффер #{offer.id}, отправленный не через менеджер"))
        manager.on(Event.REAL_TIME_CONFIRMATION_REQUIRED, lambda offer: manager_logger.warning(
            f"Трейд #{offer.id} ждет подтверждения"))
        manager.on(Event.REAL_TIME_TRADE_COMPLETED, lambda offer: manager_logger.info(
            f"Трейд #{offer.id} завершен"))
        manager.on(Event.POLL_FAILURE, lambda err: manager_logger.error(f"Ошибка опроса: {err}"))
        manager.on(Event.SESSION_EXPIRED, lambda err: manager_logger.error(f"Сессия истекла: {err}"))

    def _setup_scheduler(self):
        """Настройка автоматических задач"""
        # Проверка здоровья менеджеров каждые 15 минут
        schedule.every(15).minutes.do(self._health_check_job)

        # Полная сверка офферов каждую ночь
        schedule.every().day.at("03:00").do(self._full_poll_job)

        # Очистка старых логов каждую неделю
        schedule.every().week.do(self._cleanup_old_logs)

    def _run_scheduler(self):
        """Запуск планировщика в отдельном потоке"""
        while self.is_running:
            schedule.run_pending()
            time.sleep(60)  # Проверка каждую минуту

    def _health_check_job(self):
        """Проверка здоровья всех менеджеров"""
        try:
            for info in self.registry.get_manager_list():
                manager_id = info['manager_id']

                if info['poll_failures'] >= self.registry.max_poll_failures:
                    self.logger.warning(f"Менеджер {manager_id} имеет {info['poll_failures']} ошибок опроса")

                # Перезапуск менеджеров, у которых опрос остановлен
                if not info['is_polling'] and manager_id in self.registry.managers:
                    self.logger.info(f"Попытка восстановления менеджера {manager_id}")
                    self.registry.resume_manager(manager_id)

        except Exception as e:
            self.logger.error(f"Ошибка при проверке здоровья менеджеров: {e}")

    def _full_poll_job(self):
        """Ночная полная сверка офферов"""
        for manager_id in list(self.registry.managers):
            try:
                if self.registry.force_poll(manager_id, full_update=True):
                    self.logger.info(f"Полная сверка менеджера {manager_id} выполнена")
            except Exception as e:
                self.logger.error(f"Ошибка полной сверки менеджера {manager_id}: {e}")

    def _cleanup_old_logs(self, days: int = 30):
        """Очистка старых лог-файлов"""
        try:
            cutoff_date = datetime.now() - timedelta(days=days)
            logs_dir = Path(Config.LOGS_DIR)

            if logs_dir.exists():
                for log_file in logs_dir.glob("**/*.log"):
                    if log_file.stat().st_mtime < cutoff_date.timestamp():
                        log_file.unlink()
                        self.logger.info(f"Удален старый лог: {log_file}")

        except OSError as e:
            self.logger.error(f"Ошибка очистки логов: {e}")

    def stop(self):
        """Остановка оркестратора"""
        self.is_running = False
        schedule.clear()
        self.logger.info("Оркестратор остановлен")


async def main():
    """Главная функция запуска"""
    print("=== Менеджер трейд-офферов Steam ===")
    print("Инициализация...")

    orchestrator = ManagerOrchestrator()

    if not orchestrator.registry.managers:
        print("Менеджеры не найдены. Добавьте аккаунт через API: python api_server.py")
        return

    try:
        print(f"Найдено менеджеров: {len(orchestrator.registry.managers)}")
        await orchestrator.run_all_managers()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nПолучен сигнал остановки...")
        orchestrator.stop()
        orchestrator.registry.shutdown_all()
        print("Менеджеры остановлены")


if __name__ == "__main__":
    asyncio.run(main())
