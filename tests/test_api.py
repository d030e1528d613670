from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from data.store import InstrumentRepo
from domain.models import PricePeriod, ScoreUpdate
from domain.settings import DEFAULT_PARAMS, RECOMMENDED_PARAMS, ServiceSettings
from services.prices import PriceHistoryService
from services.recompute import HotnessRecomputeService

NOW = datetime(2024, 6, 21, 12, 0, tzinfo=timezone.utc)


def _history(*averages: float) -> list[dict]:
    return [
        {
            "label": f"p{i}",
            "startOffsetDays": i * 5,
            "endOffsetDays": (i + 1) * 5,
            "averagePrice": avg,
            "highPrice": avg,
            "lowPrice": avg,
        }
        for i, avg in enumerate(averages)
    ]


class OfflinePriceService(PriceHistoryService):
    def _download_with_retry(self, symbol: str, total_days: int) -> pd.DataFrame | None:  # type: ignore[override]
        index = pd.date_range(end="2024-06-21", periods=10, freq="D")
        return pd.DataFrame({"Close": [float(v) for v in range(50, 60)]}, index=index)


@pytest.fixture
def repo(tmp_path):
    return InstrumentRepo(db_path=tmp_path / "api.duckdb")


@pytest.fixture
def client(repo):
    settings = ServiceSettings(duckdb_path=repo.db_path, batch_size=2)
    app = create_app(
        settings=settings,
        repo=repo,
        recompute_service=HotnessRecomputeService(repo=repo, settings=settings, clock=lambda: NOW),
        price_service=OfflinePriceService(repo=repo, settings=settings, clock=lambda: NOW),
    )
    return TestClient(app)


def _seed(repo: InstrumentRepo, code: str, *averages: float) -> str:
    inst = repo.create_instrument(code)
    repo.replace_price_history(inst.id, [PricePeriod.from_dict(p) for p in _history(*averages)], NOW)
    return inst.id


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_recompute_pages_through_all_instruments(client, repo):
    for code in ("A", "B", "C"):
        _seed(repo, code, 68, 101, 102, 101, 100)

    first = client.post("/scores/recompute", json={})
    body = first.json()
    assert first.status_code == 200
    assert body["processed"] == 2
    assert body["hasMore"] is True
    assert body["paramsUsed"] == DEFAULT_PARAMS.as_dict()
    assert body["message"] == "Successfully processed 2 symbols"

    second = client.post("/scores/recompute", json={"continueFromId": body["lastProcessedId"]}).json()
    assert second["processed"] == 1
    assert second["hasMore"] is False
    assert second["lastProcessedId"] is None

    symbols = client.get("/symbols/hotness").json()["symbols"]
    assert [s["hotnessScore"] for s in symbols] == [85, 85, 85]


def test_recompute_without_body_uses_defaults(client, repo):
    _seed(repo, "A", 99, 101, 102, 101, 100)
    response = client.post("/scores/recompute")
    assert response.status_code == 200
    assert response.json()["processed"] == 1


def test_recompute_with_preset_and_explicit_params(client):
    by_preset = client.post("/scores/recompute", json={"preset": "recommended"}).json()
    assert by_preset["paramsUsed"] == RECOMMENDED_PARAMS.as_dict()

    explicit = dict(DEFAULT_PARAMS.as_dict(), dropSensitivity=20)
    by_params = client.post(
        "/scores/recompute", json={"preset": "recommended", "params": explicit}
    ).json()
    assert by_params["paramsUsed"]["dropSensitivity"] == 20.0


@pytest.mark.parametrize(
    "payload",
    [
        {"batchSize": 0},
        {"batchSize": 1001},
        {"preset": "unknown"},
        {"params": dict(DEFAULT_PARAMS.as_dict(), dropMaxScore=99)},
    ],
)
def test_recompute_rejects_bad_parameters(client, payload):
    response = client.post("/scores/recompute", json=payload)
    assert response.status_code == 400
    assert response.json()["code"] == "E-BATCH-PARAM"


def test_recompute_reports_per_instrument_failures(client, repo):
    _seed(repo, "GOOD", 68, 101, 102, 101, 100)
    _seed(repo, "ZERO", 5, 0, 0)
    body = client.post("/scores/recompute", json={"batchSize": 10}).json()
    assert body["processed"] == 1
    assert body["failed"] == 1
    assert body["errors"][0].startswith("ZERO:")


def test_preview_scores_without_persisting(client, repo):
    response = client.post("/scores/preview", json={"prices": [99, 101, 102, 101, 100]})
    assert response.status_code == 200
    body = response.json()
    assert body["score"] == pytest.approx(29.7)
    assert body["persistedScore"] == 30
    assert client.get("/symbols/stats").json()["totalSymbols"] == 0


def test_preview_rejects_too_few_prices(client):
    response = client.post("/scores/preview", json={"prices": [5, None]})
    assert response.status_code == 400
    assert response.json()["code"] == "E-SCORE-INPUT"


def test_presets_listing(client):
    presets = client.get("/scores/presets").json()["presets"]
    assert set(presets) == {"default", "recommended", "aggressive"}


def test_recent_prices_refresh_and_stats(client, repo):
    response = client.post(
        "/symbols/recent-prices",
        json={"symbol": "ry", "exchange": "TO", "numberOfDaysInPeriod": 5, "amountOfPeriods": 2},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["symbol"] == "RY"
    assert body["updated"] is True
    assert [p["averagePrice"] for p in body["data"]] == [57.0, 52.0]
    assert body["data"][1]["direction"] == "down"

    stats = client.get("/symbols/stats").json()
    assert stats["totalSymbols"] == 1
    assert stats["symbolsWithHotnessScore"] == 0


def test_recent_prices_validation(client):
    response = client.post("/symbols/recent-prices", json={"symbol": "RY", "amountOfPeriods": 11})
    assert response.status_code == 400
    assert response.json()["code"] == "E-PRICE-PARAM"

    missing = client.post("/symbols/recent-prices", json={})
    assert missing.status_code == 422


def test_hotness_list_includes_unscored(client, repo):
    scored = repo.create_instrument("BBB")
    repo.create_instrument("AAA")
    repo.apply_score_updates([ScoreUpdate(scored.id, 64, NOW)])
    symbols = client.get("/symbols/hotness").json()["symbols"]
    assert symbols == [
        {"code": "AAA", "exchange": "", "hotnessScore": None},
        {"code": "BBB", "exchange": "", "hotnessScore": 64},
    ]


def test_recent_logs_endpoint(client):
    response = client.get("/logs/recent")
    assert response.status_code == 200
    assert isinstance(response.json()["lines"], list)


@pytest.mark.parametrize("prices", [[-10, 5, 5], [1e308, 1e308, 1e308]])
def test_preview_degenerate_prices_are_bad_requests(client, prices):
    response = client.post("/scores/preview", json={"prices": prices})
    assert response.status_code == 400
    assert response.json()["code"] == "E-SCORE-INPUT"
