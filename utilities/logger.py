import logging
import multiprocessing
import shutil
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import Any

from simple_logger.logger import DuplicateFilter, WrapperLogFormatter

BASIC_LOGGER_NAME = "basic"
LOG_COLORS: dict[str, str] = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _attach_queue_handler(logger: logging.Logger, handler: QueueHandler, log_level: int) -> None:
    logger.setLevel(level=log_level)
    logger.handlers.clear()
    logger.addHandler(hdlr=handler)
    logger.propagate = False


def setup_logging(
    log_level: int | str,
    log_file: str = "/tmp/cri-image-tests.log",
    worker_name: str | None = None,
    enable_console: bool = True,
) -> QueueListener:
    """
    Route every logger through a single queue so that stress workers running in
    threads write interleaved but whole lines to the console and the log file.

    Args:
        log_level (int | str): log level, either a logging constant or its name
        log_file (str): logging output file
        worker_name (str | None): optional xdist worker id prefix, e.g. [gw0]
        enable_console (bool): also write to stderr

    Returns:
        QueueListener: started listener; stop it at session finish

    Eg:
       root QueueHandler ┐                         ┌> StreamHandler
                         ├> Queue -> QueueListener ┤
      basic QueueHandler ┘                         └> RotatingFileHandler
    """
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)

    basic_fmt_str = "%(message)s"
    root_fmt_str = "%(asctime)s %(name)s [%(threadName)s] %(log_color)s%(levelname)s%(reset)s %(message)s"

    if worker_name:
        basic_fmt_str = f"[{worker_name}] {basic_fmt_str}"
        root_fmt_str = f"[{worker_name}] {root_fmt_str}"

    log_file_handler = RotatingFileHandler(filename=log_file, maxBytes=50 * 1024 * 1024, backupCount=10)
    log_file_handler.setLevel(level=log_level)
    handlers: list[Any] = [log_file_handler]

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level=log_level)
        handlers.append(console_handler)

    log_queue = multiprocessing.Queue(maxsize=-1)  # type: ignore[var-annotated]
    log_listener = QueueListener(log_queue, *handlers)

    basic_queue_handler = QueueHandler(queue=log_queue)
    basic_queue_handler.set_name(name=BASIC_LOGGER_NAME)
    basic_queue_handler.setFormatter(fmt=logging.Formatter(fmt=basic_fmt_str))

    root_queue_handler = QueueHandler(queue=log_queue)
    root_queue_handler.set_name(name="root")
    root_queue_handler.setFormatter(
        fmt=WrapperLogFormatter(fmt=root_fmt_str, log_colors=LOG_COLORS, secondary_log_colors={})
    )

    _attach_queue_handler(
        logger=logging.getLogger(name=BASIC_LOGGER_NAME), handler=basic_queue_handler, log_level=log_level
    )

    # simple_logger hands out loggers with their own stream handlers; take them over.
    for name, logger in logging.root.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name != BASIC_LOGGER_NAME:
            logger.handlers.clear()
            logger.addHandler(hdlr=root_queue_handler)
            logger.propagate = False

    logging.root.handlers.clear()
    logging.root.setLevel(level=log_level)
    logging.root.addHandler(hdlr=root_queue_handler)
    logging.root.addFilter(filter=DuplicateFilter())

    log_listener.start()
    return log_listener


def separator(symbol_: str, val: str | None = None) -> str:
    terminal_width = shutil.get_terminal_size(fallback=(120, 40))[0]
    if not val:
        return f"{symbol_ * terminal_width}"

    sepa = int((terminal_width - len(val) - 2) // 2)
    return f"{symbol_ * sepa} {val} {symbol_ * sepa}"
