import logging
from datetime import datetime
from pathlib import Path


def setup_logger(name: str, logs_dir: str = "logs", level: int = logging.INFO) -> logging.Logger:
    log_dir = Path(logs_dir) / name
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Повторный вызов не должен дублировать записи
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    file_handler = logging.FileHandler(log_dir / f"{datetime.now().date()}.log", encoding="utf-8")
    file_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    return logger
