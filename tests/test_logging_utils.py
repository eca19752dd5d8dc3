from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from aws_action_governor import logging_utils
from aws_action_governor.config import LoggingSettings


@pytest.fixture(autouse=True)
def restore_sdk_levels():
    saved = {name: logging.getLogger(name).level for name in logging_utils.SDK_LOGGERS}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


@patch("aws_action_governor.logging_utils.logging.basicConfig")
def test_configure_logging_stream_only(mock_basic_config: MagicMock) -> None:
    logging_utils.configure_logging(LoggingSettings())

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["force"] is True
    assert kwargs["level"] == logging.INFO
    assert len(kwargs["handlers"]) == 1
    assert kwargs["handlers"][0].formatter._fmt == logging_utils.LOG_FORMAT


@patch("aws_action_governor.logging_utils.load_settings")
@patch("aws_action_governor.logging_utils.logging.basicConfig")
def test_settings_loaded_when_omitted(
    mock_basic_config: MagicMock, mock_load_settings: MagicMock
) -> None:
    mock_load_settings.return_value.logging = LoggingSettings(level="WARNING")

    logging_utils.configure_logging()

    assert mock_basic_config.call_args.kwargs["level"] == logging.WARNING


@patch("aws_action_governor.logging_utils.logging.basicConfig")
def test_unknown_level_falls_back_to_info(mock_basic_config: MagicMock) -> None:
    logging_utils.configure_logging(LoggingSettings(level="chatty"))

    assert mock_basic_config.call_args.kwargs["level"] == logging.INFO


@patch("aws_action_governor.logging_utils.logging.basicConfig")
def test_file_handler_is_added(mock_basic_config: MagicMock, tmp_path) -> None:
    log_file = tmp_path / "logs" / "governor.log"

    logging_utils.configure_logging(LoggingSettings(file=str(log_file)))

    handlers = mock_basic_config.call_args.kwargs["handlers"]
    assert len(handlers) == 2
    assert isinstance(handlers[1], logging.FileHandler)
    assert log_file.parent.is_dir()
    handlers[1].close()


@patch(
    "aws_action_governor.logging_utils.logging.FileHandler",
    side_effect=OSError("permission denied"),
)
@patch("aws_action_governor.logging_utils._logger")
def test_file_handler_error_is_logged(
    mock_logger: MagicMock, _mock_file_handler: MagicMock, tmp_path
) -> None:
    with patch("aws_action_governor.logging_utils.logging.basicConfig") as mock_basic_config:
        logging_utils.configure_logging(LoggingSettings(file=str(tmp_path / "app.log")))

    mock_logger.warning.assert_called_once()
    assert len(mock_basic_config.call_args.kwargs["handlers"]) == 1


@patch("aws_action_governor.logging_utils.logging.basicConfig")
def test_sdk_loggers_are_quieted(_mock_basic_config: MagicMock) -> None:
    logging_utils.configure_logging(LoggingSettings(level="INFO"))

    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("urllib3").level == logging.WARNING


@patch("aws_action_governor.logging_utils.logging.basicConfig")
def test_sdk_loggers_follow_debug(_mock_basic_config: MagicMock) -> None:
    logging_utils.configure_logging(LoggingSettings(level="DEBUG"))

    assert logging.getLogger("boto3").level == logging.DEBUG
