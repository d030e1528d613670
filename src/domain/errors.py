"""アプリ全体で共通利用するエラー定義。"""
from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml


_SUPPORT_DOC = "docs/hotness_score.md"

INVALID_INPUT = "E-SCORE-INPUT"
INVALID_PARAMETER = "E-BATCH-PARAM"
INSTRUMENT_FAILURE = "E-SCORE-INSTRUMENT"
PERSISTENCE_FAILURE = "E-STORE-WRITE"
STORE_READ_FAILURE = "E-STORE-READ"


DEFAULT_ERROR_CATALOG: Mapping[str, dict[str, Any]] = {
    INVALID_INPUT: {
        "message": "スコア計算に必要な価格データが不正です。",
        "guidance": "有効な平均価格が2件以上あり、過去平均が0でないことを確認してください。",
        "support_url": _SUPPORT_DOC,
        "status": 400,
    },
    INVALID_PARAMETER: {
        "message": "パラメータが範囲外です。",
        "guidance": "batchSize は 1〜1000、スコアパラメータは各推奨レンジ内で指定してください。",
        "support_url": _SUPPORT_DOC,
        "status": 400,
    },
    INSTRUMENT_FAILURE: {
        "message": "銘柄のスコア計算に失敗しました。",
        "guidance": "該当銘柄の価格履歴を再取得してから再計算してください。",
        "support_url": _SUPPORT_DOC,
        "status": 500,
    },
    PERSISTENCE_FAILURE: {
        "message": "スコアの保存に失敗しました。",
        "guidance": "同じ continueFromId で再実行してください。このバッチのスコアは反映されていません。",
        "support_url": _SUPPORT_DOC,
        "status": 500,
    },
    STORE_READ_FAILURE: {
        "message": "銘柄データの読み込みに失敗しました。",
        "guidance": "DuckDB ファイルのパスとアクセス権を確認してください。",
        "support_url": _SUPPORT_DOC,
        "status": 500,
    },
    "E-PRICE-PARAM": {
        "message": "価格取得パラメータが不正です。",
        "guidance": "numberOfDaysInPeriod は正の整数、amountOfPeriods は 1〜10 で指定してください。",
        "support_url": _SUPPORT_DOC,
        "status": 400,
    },
    "E-PRICE-NODATA": {
        "message": "価格データを取得できませんでした。",
        "guidance": "ティッカーと取引所が正しいか確認してください（例: TSX は TO）。",
        "support_url": "https://pypi.org/project/yfinance/",
        "status": 404,
    },
    "E-PRICE-INSUFFICIENT": {
        "message": "期間平均の計算に必要なデータが不足しています。",
        "guidance": "期間日数を短くするか、上場直後の銘柄は時間をおいて再実行してください。",
        "support_url": _SUPPORT_DOC,
        "status": 422,
    },
    "E-PRICE-FETCH": {
        "message": "価格データの取得に失敗しました。",
        "guidance": "ネットワーク状態や外部APIのレート制限を確認し、数分後に再実行してください。",
        "support_url": "https://pypi.org/project/yfinance/",
        "status": 502,
    },
    "E-INSTRUMENT-NOTFOUND": {
        "message": "銘柄が見つかりません。",
        "guidance": "銘柄IDまたはコードを確認してください。削除済みの銘柄は対象外です。",
        "support_url": _SUPPORT_DOC,
        "status": 404,
    },
    "E-INSTRUMENT-DUPLICATE": {
        "message": "同じコードの銘柄が既に登録されています。",
        "guidance": "既存の銘柄を更新するか、削除済みであれば復元してください。",
        "support_url": _SUPPORT_DOC,
        "status": 409,
    },
    "E-UNEXPECTED": {
        "message": "予期しないエラーが発生しました。",
        "guidance": "ログを確認し、再実行しても改善しない場合は開発者に問い合わせてください。",
        "support_url": _SUPPORT_DOC,
        "status": 500,
    },
}


@lru_cache()
def _load_support_links(config_path: Path = Path("config.yaml")) -> dict[str, str]:
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except Exception:
        return {}
    links = data.get("support_links") if isinstance(data, dict) else None
    return {str(k): str(v) for k, v in links.items()} if isinstance(links, dict) else {}


@lru_cache()
def _load_error_support_map(config_path: Path = Path("config.yaml")) -> dict[str, str]:
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except Exception:
        return {}
    app_cfg = data.get("app") if isinstance(data, dict) else None
    mapping = app_cfg.get("error_support") if isinstance(app_cfg, dict) else None
    return {str(k): str(v) for k, v in mapping.items()} if isinstance(mapping, dict) else {}


@dataclass(slots=True)
class AppError(Exception):
    """コード付きのアプリケーションエラー。"""

    code: str
    user_message: str | None = None
    detail: str | None = None
    symbol: str | None = None
    payload: dict[str, Any] | None = None
    guidance: str | None = None
    support_url: str | None = None

    def __post_init__(self) -> None:
        meta = DEFAULT_ERROR_CATALOG.get(self.code, {})
        if not self.user_message:
            self.user_message = meta.get("message", "エラーが発生しました。")
        if self.guidance is None:
            self.guidance = meta.get("guidance")
        if self.support_url is None:
            self.support_url = _resolve_support_url(self.code, meta.get("support_url"))

    def __str__(self) -> str:
        message = self.user_message or "エラーが発生しました。"
        base = f"[{self.code}] {message}"
        if self.symbol:
            base = f"{self.symbol}: {base}"
        if self.detail:
            return f"{base} ({self.detail})"
        return base

    @property
    def http_status(self) -> int:
        meta = DEFAULT_ERROR_CATALOG.get(self.code, {})
        return int(meta.get("status", 500))

    def for_log(self) -> str:
        base = str(self)
        if self.payload:
            return f"{base} | payload={self.payload}"
        return base

    def with_symbol(self, symbol: str) -> "AppError":
        return replace(self, symbol=symbol)

    def as_response(self) -> dict[str, Any]:
        """APIレスポンス用の辞書に変換する。"""

        body: dict[str, Any] = {"error": self.user_message, "code": self.code}
        if self.detail:
            body["detail"] = self.detail
        if self.symbol:
            body["symbol"] = self.symbol
        if self.guidance:
            body["guidance"] = self.guidance
        return body


def app_error(code: str, **kwargs: Any) -> AppError:
    """カタログに基づき AppError を生成する。"""

    return AppError(code=code, **kwargs)


def ensure_app_error(
    exc: Exception,
    *,
    code: str = "E-UNEXPECTED",
    message: str | None = None,
    symbol: str | None = None,
) -> AppError:
    """任意の例外を AppError へ正規化する。"""

    if isinstance(exc, AppError):
        return exc
    info = DEFAULT_ERROR_CATALOG.get(code, {})
    user_message = message or info.get("message", "予期しないエラーが発生しました。")
    return AppError(
        code=code,
        user_message=user_message,
        detail=str(exc) or None,
        symbol=symbol,
        guidance=info.get("guidance"),
        support_url=_resolve_support_url(code, info.get("support_url")),
    )


def _resolve_support_url(code: str, default_url: str | None) -> str | None:
    mapping = _load_error_support_map()
    links = _load_support_links()
    ref = mapping.get(code)
    if ref:
        return links.get(ref, default_url)
    return default_url
