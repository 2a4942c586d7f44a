import logging
import os
from logging.handlers import RotatingFileHandler
from config.config import Config

APP_LOGGER = 'slotbook'

# Side effects and calendar checks run on worker threads
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s'


def setup_logger(name=APP_LOGGER, log_file=None, level=None):
    """Install the rotating file and console handlers on the application logger"""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO))

    if logger.handlers:
        return logger

    log_file = log_file or Config.LOG_FILE
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=5)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    # APScheduler logs every job execution at INFO; our queue logs outcomes itself
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    return logger


def get_logger(name=None):
    """Module logger under ``slotbook.`` so it shares the application handlers"""
    if not name:
        return logging.getLogger(APP_LOGGER)
    return logging.getLogger(f'{APP_LOGGER}.{name}')


logger = setup_logger()
