import argparse
import asyncio
import copy
import json
from typing import Any, Dict, Optional

from .config import ExplorerConfig, ListConfig, build_explorer_config, load_json_config
from .errors import QueryError
from .formatting import (
    format_address,
    format_amount,
    format_duration,
    format_slash_type,
    format_timestamp,
    format_tx_hash,
)
from .indexer import (
    IndexerClient,
    MachineEventSource,
    OfflineMachineFetcher,
    StakingMachineFetcher,
    fetch_slashed_records,
)
from .observability import ConsoleSink
from .query import ASC, DESC, QueryCoordinator, clean_filters
from .reports import ReportHistory

VIEWS = ("staking", "offline", "reports", "slashed")

STAKING_AMOUNT_FIELDS = (
    "extra_rent_fee",
    "total_claimed_reward_amount",
    "burned_rent_fee",
    "total_reserved_amount",
)


def _bool_arg(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError("expected true or false, got %r" % value)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Query machine staking, offline and slashing records from the indexer."
    )
    parser.add_argument("--config", help="Path to JSON config file.")
    parser.add_argument("--endpoint", help="GraphQL endpoint of the machine indexer.")
    parser.add_argument(
        "--view",
        choices=VIEWS,
        default="staking",
        help="Which records to list (default: staking).",
    )
    parser.add_argument(
        "--machine-id", help="Machine id filter, or the subject of reports/slashed."
    )
    parser.add_argument("--holder", help="Holder address filter.")
    parser.add_argument(
        "--is-rented", type=_bool_arg, help="Filter staking machines by rent state."
    )
    parser.add_argument(
        "--online", type=_bool_arg, help="Filter staking machines by online state."
    )
    parser.add_argument(
        "--registered", type=_bool_arg, help="Filter staking machines by registration."
    )
    parser.add_argument("--page", type=int, default=1, help="Page number, starting at 1.")
    parser.add_argument("--page-size", type=int, help="Rows per page.")
    parser.add_argument("--sort-by", help="Indexer field to sort by.")
    parser.add_argument("--sort-direction", choices=[ASC, DESC], help="Sort direction.")
    parser.add_argument(
        "--timeout-seconds", type=float, help="Indexer request timeout in seconds."
    )
    return parser.parse_args(argv)


def merged_config_from_cli(args: argparse.Namespace) -> ExplorerConfig:
    raw: Dict[str, Any] = {}
    if args.config:
        raw = load_json_config(args.config)

    merged = copy.deepcopy(raw)
    merged.setdefault("indexer", {})

    if args.endpoint:
        merged["indexer"]["endpoint"] = args.endpoint
    if args.timeout_seconds is not None:
        merged["indexer"]["timeout_seconds"] = args.timeout_seconds

    if args.view in ("staking", "offline"):
        view = merged.setdefault(args.view, {})
        if args.page_size is not None:
            view["page_size"] = args.page_size
        if args.sort_by:
            view["sort_field"] = args.sort_by
        if args.sort_direction:
            view["sort_direction"] = args.sort_direction

    return build_explorer_config(merged)


def validate_config(config: ExplorerConfig, args: argparse.Namespace) -> None:
    if not config.indexer.endpoint:
        raise ValueError("an indexer endpoint is required (--endpoint or config file)")
    if args.view in ("reports", "slashed") and not args.machine_id:
        raise ValueError("--machine-id is required for the %s view" % args.view)
    if args.page < 1:
        raise ValueError("--page must be >= 1")


def _render_staking(row: Dict[str, Any], currency: str) -> Dict[str, Any]:
    for name in STAKING_AMOUNT_FIELDS:
        row["%s_display" % name] = format_amount(row[name], currency)
    row["holder_display"] = format_address(row["holder"])
    return row


def _render_offline(row: Dict[str, Any]) -> Dict[str, Any]:
    row["holder_display"] = format_address(row["holder"])
    row["offline_time_display"] = format_timestamp(row["offline_time"])
    row["transaction_hash_display"] = format_tx_hash(row["transaction_hash"])
    return row


def _render_interval(row: Dict[str, Any]) -> Dict[str, Any]:
    row["start_display"] = format_timestamp(row["start"])
    if row["end"] is not None:
        row["end_display"] = format_timestamp(row["end"])
    if row["duration_seconds"] is not None:
        row["duration_display"] = format_duration(row["duration_seconds"])
    return row


async def _run_list(
    args: argparse.Namespace,
    client: IndexerClient,
    list_config: ListConfig,
    count_limit: int,
    sink: ConsoleSink,
) -> Dict[str, Any]:
    if args.view == "staking":
        fetcher = StakingMachineFetcher(client, count_limit)
        filters = {
            "machineId": args.machine_id,
            "holder": args.holder,
            "isRented": args.is_rented,
            "online": args.online,
            "registered": args.registered,
        }
    else:
        fetcher = OfflineMachineFetcher(client, count_limit)
        filters = {"machineId": args.machine_id, "holder": args.holder}

    coordinator = QueryCoordinator(
        fetcher,
        resource="%s-machines" % args.view,
        sink=sink,
        filters=clean_filters(filters),
        sort_field=list_config.sort_field,
        sort_direction=list_config.sort_direction,
        page=args.page,
        page_size=list_config.page_size,
    )
    await coordinator.fetch()
    return coordinator.snapshot().as_dict()


async def run(args: argparse.Namespace, config: ExplorerConfig) -> Dict[str, Any]:
    sink = ConsoleSink()
    async with IndexerClient(
        config.indexer.endpoint, timeout_seconds=config.indexer.timeout_seconds
    ) as client:
        if args.view == "staking":
            payload = await _run_list(
                args, client, config.staking, config.indexer.count_limit, sink
            )
            payload["items"] = [
                _render_staking(row, config.currency_symbol) for row in payload["items"]
            ]
            return payload

        if args.view == "offline":
            payload = await _run_list(
                args, client, config.offline, config.indexer.count_limit, sink
            )
            payload["items"] = [_render_offline(row) for row in payload["items"]]
            return payload

        if args.view == "reports":
            history = ReportHistory(args.machine_id, MachineEventSource(client), sink)
            await history.load()
            payload = history.snapshot()
            payload["intervals"] = [_render_interval(row) for row in payload["intervals"]]
            return payload

        try:
            records = await fetch_slashed_records(client, args.machine_id)
        except QueryError as exc:
            sink.record_fetch_failure("slashed-records", str(exc), 1)
            return {"machine_id": args.machine_id, "items": [], "error": str(exc)}
        items = []
        for record in records:
            row = record.as_dict()
            row["slash_type_display"] = format_slash_type(record.slash_type)
            row["slash_amount_display"] = format_amount(
                record.slash_amount, config.currency_symbol
            )
            row["slash_time_display"] = format_timestamp(record.slash_time)
            items.append(row)
        return {"machine_id": args.machine_id, "items": items, "error": None}


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    config = merged_config_from_cli(args)
    validate_config(config, args)

    payload = asyncio.run(run(args, config))
    print(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False), flush=True)
    return 1 if payload.get("error") else 0


if __name__ == "__main__":
    raise SystemExit(main())
