"""取引所ごとのYahoo表記変換・コード正規化ヘルパー。"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ExchangeRule:
    exchange: str
    suffix: str


# カナダ株は取引所サフィックスが必要。それ以外はコードをそのまま使う
_EXCHANGE_RULES: tuple[ExchangeRule, ...] = (
    ExchangeRule(exchange="TO", suffix=".TO"),
    ExchangeRule(exchange="V", suffix=".V"),
)


def normalize_code(code: str) -> str:
    """前後の空白を除いて大文字化する（ピリオド、ハイフン等は維持）。"""
    return (code or "").strip().upper()


def normalize_exchange(exchange: str | None) -> str:
    return (exchange or "").strip().upper()


def to_yahoo_symbol(code: str, exchange: str | None) -> str:
    """銘柄コードと取引所から Yahoo Finance のティッカーを組み立てる。"""
    cleaned = normalize_code(code)
    market = normalize_exchange(exchange)
    for rule in _EXCHANGE_RULES:
        if market == rule.exchange and not cleaned.endswith(rule.suffix):
            return f"{cleaned}{rule.suffix}"
    return cleaned
