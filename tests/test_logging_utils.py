from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from mailstack import logging_utils


def _settings(log_file: str | None, level: str = "WARNING") -> SimpleNamespace:
    return SimpleNamespace(
        logging=SimpleNamespace(level=level, file=log_file),
    )


@patch("mailstack.logging_utils.load_settings")
@patch("mailstack.logging_utils.logging.basicConfig")
def test_configure_logging_stream_only(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None, level="INFO")

    logging_utils.configure_logging()

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["force"] is True
    assert kwargs["level"] == logging.INFO
    assert len(kwargs["handlers"]) == 1


@patch("mailstack.logging_utils.load_settings")
@patch("mailstack.logging_utils.logging.basicConfig")
def test_override_wins_and_sdk_loggers_stay_quiet(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None)

    logging_utils.configure_logging("DEBUG")

    assert mock_basic_config.call_args.kwargs["level"] == logging.DEBUG
    assert logging.getLogger("botocore").level == logging.WARNING


@patch("mailstack.logging_utils.load_settings")
@patch("mailstack.logging_utils.logging.basicConfig")
def test_unknown_level_falls_back_to_warning(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None, level="CHATTY")

    logging_utils.configure_logging()

    assert mock_basic_config.call_args.kwargs["level"] == logging.WARNING


@patch("mailstack.logging_utils.load_settings")
@patch("mailstack.logging_utils.logging.FileHandler", side_effect=OSError("permission denied"))
@patch("mailstack.logging_utils._logger")
def test_configure_logging_file_handler_error(
    mock_logger: MagicMock,
    _mock_file_handler: MagicMock,
    mock_load_settings: MagicMock,
    tmp_path: Path,
) -> None:
    mock_load_settings.return_value = _settings(str(tmp_path / "logs" / "app.log"))

    logging_utils.configure_logging()

    mock_logger.warning.assert_called_once()
