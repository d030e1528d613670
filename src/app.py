from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

from domain.errors import AppError
from domain.models import BatchResult
from domain.settings import PRESETS, preset
from services.config import settings_from_config
from services.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ホットネススコア アナライザー")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="設定ファイル")
    sub = parser.add_subparsers(dest="command", required=True)

    recompute = sub.add_parser("recompute", help="ホットネススコアをバッチで再計算する")
    recompute.add_argument("--batch-size", type=int, default=None, help="1回あたりの銘柄数 (1-1000)")
    recompute.add_argument("--preset", choices=sorted(PRESETS), default=None, help="パラメータプリセット")
    recompute.add_argument("--continue-from", default=None, help="前回の lastProcessedId")
    recompute.add_argument("--all", action="store_true", help="hasMore が偽になるまで繰り返す")

    refresh = sub.add_parser("refresh", help="銘柄の直近価格期間を取得し直す")
    refresh.add_argument("code")
    refresh.add_argument("exchange", nargs="?", default="")
    refresh.add_argument("--days", type=int, default=None, help="1期間あたりの日数")
    refresh.add_argument("--periods", type=int, default=None, help="期間数 (1-10)")
    refresh.add_argument("--force", action="store_true", help="鮮度に関わらず取得する")

    sub.add_parser("stats", help="ダッシュボード統計を表示する")

    serve = sub.add_parser("serve", help="HTTP API を起動する")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def _print_batch(result: BatchResult, batch_no: int) -> None:
    print(
        f"[{batch_no}] processed={result.processed_count} skipped={result.skipped_count} "
        f"failed={result.failed_count} hasMore={result.has_more} lastProcessedId={result.resume_token}"
    )


def _run_recompute(args: argparse.Namespace, config_path: Path) -> int:
    from services.recompute import HotnessRecomputeService

    settings = settings_from_config(config_path)
    service = HotnessRecomputeService(settings=settings)
    params = preset(args.preset) if args.preset else None
    if args.all:
        sweep = service.run_sweep(
            args.batch_size,
            params,
            resume_after=args.continue_from,
            progress_callback=_print_batch,
        )
        print(f"Processed {sweep.processed_count} symbols in {sweep.batches} batches")
        for line in sweep.errors:
            print(line, file=sys.stderr)
        return 0 if sweep.failed_count == 0 else 1
    result = service.run_batch(args.batch_size, params, args.continue_from)
    _print_batch(result, 1)
    for line in result.errors:
        print(line, file=sys.stderr)
    return 0 if result.failed_count == 0 else 1


def _run_refresh(args: argparse.Namespace, config_path: Path) -> int:
    from services.prices import PriceHistoryService

    service = PriceHistoryService(settings=settings_from_config(config_path))
    result = service.update_recent_prices(
        args.code, args.exchange, args.days, args.periods, force=args.force
    )
    print(result.message)
    print(json.dumps([p.as_dict() for p in result.periods], ensure_ascii=False, indent=2))
    return 0


def _run_stats(config_path: Path) -> int:
    from data.store import InstrumentRepo

    settings = settings_from_config(config_path)
    stats = InstrumentRepo(settings.duckdb_path).dashboard_stats(
        stale_after=timedelta(hours=settings.stale_after_hours)
    )
    print(json.dumps(stats.as_dict(), indent=2))
    return 0


def _run_serve(args: argparse.Namespace, config_path: Path) -> int:
    import uvicorn

    from api.app import create_app

    app = create_app(settings=settings_from_config(config_path))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.config)
    try:
        if args.command == "recompute":
            return _run_recompute(args, args.config)
        if args.command == "refresh":
            return _run_refresh(args, args.config)
        if args.command == "stats":
            return _run_stats(args.config)
        return _run_serve(args, args.config)
    except AppError as err:
        logger.error(err.for_log())
        print(str(err), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
