import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .formatting import DEFAULT_CURRENCY, DEFAULT_TX_EXPLORER_URL
from .query import SORT_DIRECTIONS


@dataclass
class IndexerConfig:
    endpoint: str = ""
    timeout_seconds: float = 15.0
    count_limit: int = 1000


@dataclass
class ListConfig:
    page_size: int = 10
    sort_field: str = ""
    sort_direction: str = "desc"


def _staking_defaults() -> ListConfig:
    return ListConfig(page_size=10, sort_field="totalClaimedRewardAmount")


def _offline_defaults() -> ListConfig:
    return ListConfig(page_size=20, sort_field="blockTimestamp")


@dataclass
class ExplorerConfig:
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    staking: ListConfig = field(default_factory=_staking_defaults)
    offline: ListConfig = field(default_factory=_offline_defaults)
    currency_symbol: str = DEFAULT_CURRENCY
    tx_explorer_url: str = DEFAULT_TX_EXPLORER_URL


def load_json_config(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def build_list_config(raw: Optional[Dict[str, Any]], defaults: ListConfig) -> ListConfig:
    payload = raw or {}
    sort_direction = str(payload.get("sort_direction", defaults.sort_direction)).lower()
    if sort_direction not in SORT_DIRECTIONS:
        raise ValueError("Unsupported sort direction: %s" % sort_direction)
    page_size = int(payload.get("page_size", defaults.page_size))
    if page_size <= 0:
        raise ValueError("page_size must be > 0, got %d" % page_size)
    return ListConfig(
        page_size=page_size,
        sort_field=str(payload.get("sort_field", defaults.sort_field)),
        sort_direction=sort_direction,
    )


def build_explorer_config(raw: Optional[Dict[str, Any]]) -> ExplorerConfig:
    payload = raw or {}

    indexer_payload = payload.get("indexer", {})
    indexer = IndexerConfig(
        endpoint=str(indexer_payload.get("endpoint", "")),
        timeout_seconds=float(
            indexer_payload.get("timeout_seconds", IndexerConfig.timeout_seconds)
        ),
        count_limit=int(indexer_payload.get("count_limit", IndexerConfig.count_limit)),
    )

    return ExplorerConfig(
        indexer=indexer,
        staking=build_list_config(payload.get("staking"), _staking_defaults()),
        offline=build_list_config(payload.get("offline"), _offline_defaults()),
        currency_symbol=str(payload.get("currency_symbol", DEFAULT_CURRENCY)),
        tx_explorer_url=str(payload.get("tx_explorer_url", DEFAULT_TX_EXPLORER_URL)),
    )
