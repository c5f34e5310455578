"""Logging setup for the sync service.

Records go to the root logger. :func:`setup_logging` attaches a stdout handler, a
bounded in-memory :class:`TankHandler` a front-end can browse, and routes Qt's own
messages into Python logging.
"""
import collections
import logging
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
TANK_MAX_RECORDS = 10_000

VALID_LEVELS = (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)

# Qt message type -> Python logging level
QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}


def set_logging_level(level):
    """Change the level of the root logger and every handler attached to it.

    Raises:
        ValueError: If ``level`` is not one of the standard integer levels.
    """
    if isinstance(level, bool) or not isinstance(level, int) or level not in VALID_LEVELS:
        raise ValueError(f'Invalid logging level {level!r}, expected one of {VALID_LEVELS}.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """Forward a Qt message to the 'Qt' logger. A fatal message exits the process."""
    level = QT_LEVELS.get(mode, logging.WARNING)
    logging.getLogger('Qt').log(level, message.strip())
    if mode == QtMsgType.QtFatalMsg:
        sys.exit(1)


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=LOG_LEVEL):
    """Replace the root logger's handlers with the service's own.

    Args:
        enable_stream_handler (bool): Also write records to stdout.
        enable_qt_handler (bool): Route Qt's own messages through Python logging.
        log_level (int): Level for the root logger and all installed handlers.
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers = [TankHandler()]
    if enable_stream_handler:
        handlers.insert(0, logging.StreamHandler(sys.stdout))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


def get_tank():
    """Return the :class:`TankHandler` installed on the root logger, or None."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, TankHandler):
            return handler
    return None


class TankHandler(logging.Handler):
    """Keeps the most recent formatted records in memory.

    Attributes:
        tank (collections.deque[tuple[int, str]]): ``(level, message)`` pairs, oldest
            first. Holds at most ``max_records`` entries.
    """

    def __init__(self, max_records=TANK_MAX_RECORDS):
        super().__init__()
        self.max_records = max_records
        self.tank = collections.deque(maxlen=max_records)

    def emit(self, record):
        try:
            self.tank.append((record.levelno, self.format(record)))
        except Exception:
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET):
        """Return the stored messages with a level of at least ``level``, oldest first."""
        return [message for levelno, message in self.tank if levelno >= level]

    def clear_logs(self):
        self.tank.clear()
