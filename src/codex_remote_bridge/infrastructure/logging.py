"""Structured logging for the bridge (structlog on top of stdlib logging)."""

from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import structlog

DEFAULT_LOG_LEVEL = "INFO"

LATEST_LOG_FILE = "latest.log"
ERROR_LOG_FILE = "error.log"

# 依存ライブラリのロガーに適用するレベル
_THIRD_PARTY_LEVELS: dict[str, int] = {
    "mcp": logging.INFO,
    "httpx": logging.WARNING,
}


def _resolve_level(log_level: str) -> int:
    """ログレベル名を数値に変換する（不正な名前は INFO に戻す）."""
    level = logging.getLevelName(log_level.strip().upper())
    if isinstance(level, int):
        return level
    print(
        f"Warning: Invalid log level '{log_level}', defaulting to {DEFAULT_LOG_LEVEL}",
        file=sys.stderr,
    )
    return logging.INFO


def _rotating_handler(
    path: Path,
    level: int,
    backup_count: int,
    formatter: logging.Formatter,
) -> TimedRotatingFileHandler:
    """日次ローテーションするファイルハンドラーを作成する."""
    handler = TimedRotatingFileHandler(
        path, when="midnight", backupCount=backup_count, encoding="utf-8"
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    log_level: str = DEFAULT_LOG_LEVEL,
    log_dir: str = "logs",
    log_backup_count: int = 7,
) -> None:
    """
    構造化ロギングを設定する.

    出力先:
    - stderr: ERROR以上
    - <log_dir>/latest.log: log_level 以上
    - <log_dir>/error.log: WARNING以上

    ディレクトリを作成できない場合は stderr のみで続行する。

    Args:
        log_level: latest.log の最低レベル（大文字小文字は問わない）
        log_dir: ログ出力ディレクトリ
        log_backup_count: ローテーション後に保持するファイル数
    """
    latest_level = _resolve_level(log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.ERROR)
    console.setFormatter(formatter)
    root.addHandler(console)

    for name, level in _THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    directory = Path(log_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(
            f"Warning: Failed to create log directory '{log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        return

    root.addHandler(
        _rotating_handler(
            directory / LATEST_LOG_FILE, latest_level, log_backup_count, formatter
        )
    )
    root.addHandler(
        _rotating_handler(
            directory / ERROR_LOG_FILE, logging.WARNING, log_backup_count, formatter
        )
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """構造化ロガーを取得する（通常は __name__ を渡す）."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
