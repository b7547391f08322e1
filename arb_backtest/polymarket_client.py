from __future__ import annotations

import logging
from typing import Any

import requests

from .config import EngineConfig, Settings
from .models import Snapshot

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    parsed = _as_float(value)
    if parsed is None:
        return None
    return int(parsed)


class PolymarketClient:
    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    @property
    def engine(self) -> EngineConfig:
        return self.settings.engine

    def fetch_price_history(
        self,
        token_id: str,
        start_time: int,
        end_time: int,
        *,
        fidelity_minutes: int = 1,
    ) -> list[dict[str, Any]]:
        payload = self._request_json(
            "GET",
            "/prices-history",
            params={
                "market": token_id,
                "startTs": int(start_time),
                "endTs": int(end_time),
                "fidelity": fidelity_minutes,
            },
        )
        history = payload.get("history", [])
        if not isinstance(history, list):
            return []
        return [row for row in history if isinstance(row, dict)]

    def fetch_snapshots(
        self,
        market_id: str,
        token_ids: list[str],
        start_time: int,
        end_time: int,
        *,
        fidelity_minutes: int = 1,
    ) -> list[Snapshot]:
        if len(token_ids) != 2:
            raise ValueError(f"expected two outcome token ids for market {market_id}, got {len(token_ids)}")
        snapshots: list[Snapshot] = []
        for side, token_id in zip((self.engine.side_a, self.engine.side_b), token_ids):
            history = self.fetch_price_history(
                token_id, start_time, end_time, fidelity_minutes=fidelity_minutes
            )
            skipped = 0
            for point in history:
                timestamp = _as_int(point.get("t"))
                price = _as_float(point.get("p"))
                if timestamp is None or price is None or not 0.0 <= price <= 1.0:
                    skipped += 1
                    continue
                snapshots.append(
                    Snapshot(
                        market_id=market_id,
                        timestamp=timestamp,
                        side=side,
                        mid_price=price,
                        last_price=price,
                    )
                )
            logger.info(
                "price_history_fetched market_id=%s side=%s points=%s skipped=%s",
                market_id,
                side,
                len(history),
                skipped,
            )
        snapshots.sort(key=lambda row: (row.timestamp, row.side))
        return snapshots

    def _request_json(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.settings.polymarket_base_url.rstrip('/')}{path}"
        response = self.session.request(
            method=method,
            url=url,
            params=params,
            headers={"Accept": "application/json"},
            timeout=self.settings.request_timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict):
            return payload
        return {"data": payload}
