"""Process-wide logging setup for the governor.

One stderr handler, plus a file handler when ``LOG_FILE`` is set. The AWS SDK
loggers are held at WARNING unless the governor itself runs at DEBUG, so
per-request botocore chatter does not drown the execution audit lines.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from aws_action_governor.config import LoggingSettings, load_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
SDK_LOGGERS = ("boto3", "botocore", "urllib3")

_logger = logging.getLogger(__name__)


def configure_logging(settings: LoggingSettings | None = None) -> None:
    settings = settings or load_settings().logging
    level = getattr(logging, settings.level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file:
        try:
            Path(settings.file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(settings.file))
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.file, exc)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    sdk_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)
