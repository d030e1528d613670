"""logging設定と直近ログのリングバッファを初期化するヘルパー。"""
from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Deque

import yaml


_CONFIGURED = False
_RECENT_HANDLER: "RecentLogHandler" | None = None
_LOGGER_NAME = "hotness_analyzer"


class RecentLogHandler(logging.Handler):
    """APIの /logs/recent で返す直近ログのリングバッファ。"""

    def __init__(self, capacity: int = 200) -> None:
        super().__init__()
        self._capacity = capacity
        self._lock = Lock()
        self._buffer: Deque[str] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        message = self.format(record)
        with self._lock:
            self._buffer.append(message)

    def lines(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._buffer)


def configure_logging(config_path: Path = Path("config.yaml"), *, force: bool = False) -> RecentLogHandler:
    """設定ファイルを元に logging を初期化し、リングバッファ用ハンドラを返す。"""

    global _CONFIGURED, _RECENT_HANDLER
    if _CONFIGURED and _RECENT_HANDLER is not None and not force:
        return _RECENT_HANDLER

    config: dict[str, object]
    try:
        config = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except Exception:
        config = {}

    # エラーカタログのサポートリンクは設定変更に追随できるようクリア
    from domain.errors import _load_support_links, _load_error_support_map

    _load_support_links.cache_clear()
    _load_error_support_map.cache_clear()

    logging_cfg = config.get("logging", {}) if isinstance(config, dict) else {}
    if not isinstance(logging_cfg, dict):
        logging_cfg = {}
    level_name = str(logging_cfg.get("level", "INFO"))
    level = getattr(logging, level_name.upper(), logging.INFO)
    log_path = Path(logging_cfg.get("path", "logs/app.log"))
    rotate_keep = logging_cfg.get("rotate_keep", 7)
    try:
        rotate_keep = int(rotate_keep)
    except (TypeError, ValueError):
        rotate_keep = 7
    buffer_size = logging_cfg.get("buffer_lines", 200)
    try:
        buffer_size = max(int(buffer_size), 1)
    except (TypeError, ValueError):
        buffer_size = 200
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        fallback = Path.cwd() / log_path.name
        fallback.parent.mkdir(parents=True, exist_ok=True)
        log_path = fallback

    logger = logging.getLogger()
    logger.setLevel(level)

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = TimedRotatingFileHandler(
        filename=str(log_path),
        when="midnight",
        backupCount=max(rotate_keep, 0),
        encoding="utf-8",
        utc=False,
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)

    recent_handler = RecentLogHandler(capacity=buffer_size)
    recent_handler.setLevel(level)
    recent_handler.setFormatter(formatter)

    # 既存ハンドラを削除して二重登録を防ぐ
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.addHandler(recent_handler)

    # プロジェクト用ロガー名を揃える
    logging.getLogger(_LOGGER_NAME).setLevel(level)

    _CONFIGURED = True
    _RECENT_HANDLER = recent_handler
    return recent_handler


def recent_log_lines() -> tuple[str, ...]:
    """直近のログラインを取得する。"""

    if _RECENT_HANDLER is None:
        return ()
    return _RECENT_HANDLER.lines()
