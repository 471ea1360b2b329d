# treeline/core/logging.py
import logging
import sys
from datetime import datetime

# Applied to loggers created after set_default_level()
_default_level: int = logging.INFO

_RESET = '\033[0m'
_TIME = '\033[94m'
_TEXT = '\033[97m'

_LEVEL_STYLES = {
    logging.DEBUG: '\033[90m',
    logging.INFO: '\033[92m',
    logging.WARNING: '\033[93m',
    logging.ERROR: '\033[91m',
    logging.CRITICAL: '\033[1;91m',
}


class ColoredFormatter(logging.Formatter):
    """Single-line colored output: ``[time] [component] [LEVEL] message``.

    The component is the last dotted segment of the logger name, so
    ``treeline.engine.cascader`` renders as ``[cascader]``.
    """

    component_width = 14
    level_width = 10

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        component = f'[{record.name.rsplit(".", 1)[-1]}]'.ljust(self.component_width)
        level = f'[{record.levelname}]'.ljust(self.level_width)
        style = _LEVEL_STYLES.get(record.levelno, _TEXT)

        line = (
            f'{_TIME}[{stamp}]{_RESET} '
            f'{_TEXT}{component}{_RESET}'
            f'{style}{level}{_RESET}'
            f'{_TEXT}{record.getMessage()}{_RESET}'
        )
        if record.exc_info:
            line = f'{line}\n{self.formatException(record.exc_info)}'
        return line


def set_default_level(level: int) -> None:
    global _default_level
    _default_level = level


def get_logger(component_name: str) -> logging.Logger:
    """Return the ``treeline.<component_name>`` logger, configuring it on first use."""
    logger = logging.getLogger(f'treeline.{component_name}')
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter())
    handler.setLevel(_default_level)
    logger.addHandler(handler)
    logger.setLevel(_default_level)
    # Handled here; the root logger would print it twice
    logger.propagate = False
    return logger
