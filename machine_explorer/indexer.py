import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .errors import FetchError, ValidationError
from .events import RawEvent, decode_timestamp, events_from_streams, require_field
from .query import ASC, DESC, PageResult

DEFAULT_COUNT_LIMIT = 1000

STAKING_FIELDS = """
      machineId
      holder
      extraRentFee
      totalClaimedRewardAmount
      burnedRentFee
      totalReservedAmount
      isRented
      online
      registered"""

OFFLINE_FIELDS = """
      id
      machineId
      holder
      blockNumber
      blockTimestamp
      transactionHash"""

# filter name -> (where clause, GraphQL variable type)
STAKING_FILTERS = (
    ("machineId", "machineId_contains: $machineId", "String!"),
    ("holder", "holder_contains: $holder", "String!"),
    ("isRented", "isRented: $isRented", "Boolean!"),
    ("online", "online: $online", "Boolean!"),
    ("registered", "registered: $registered", "Boolean!"),
)

OFFLINE_FILTERS = (
    ("machineId", "machineId_contains: $machineId", "String!"),
    ("holder", "holder_contains: $holder", "String!"),
)

MACHINE_HISTORY_QUERY = """
query GetMachineHistory($machineId: String!) {
  machineOfflineRecords(
    orderBy: blockTimestamp
    orderDirection: desc
    where: { machineId: $machineId }
  ) {
    id
    machineId
    blockTimestamp
    transactionHash
  }
  machineReOnlineRecords(
    orderBy: blockTimestamp
    orderDirection: desc
    where: { machineId: $machineId }
  ) {
    id
    machineId
    blockTimestamp
    transactionHash
  }
  machineUnregisterRecords(
    orderBy: blockTimestamp
    orderDirection: desc
    where: { machineId: $machineId }
  ) {
    id
    machineId
    blockTimestamp
    transactionHash
  }
}
"""

MACHINE_SLASHED_QUERY = """
query GetMachineSlashedRecords($machineId: String!) {
  machineSlashedRecords(
    where: { machineId: $machineId }
    orderBy: blockTimestamp
    orderDirection: desc
  ) {
    id
    machineId
    holder
    renter
    slashAmount
    slashType
    rentStatTime
    rentEndTime
    blockNumber
    blockTimestamp
    transactionHash
  }
}
"""

MACHINE_UNREGISTER_QUERY = """
query GetMachineUnregisterRecords($machineId: String!) {
  machineUnregisterRecords(
    where: { machineId: $machineId }
    orderBy: blockTimestamp
    orderDirection: desc
  ) {
    id
    machineId
    blockNumber
    blockTimestamp
    transactionHash
  }
}
"""


class IndexerClient:
    """Thin GraphQL-over-HTTP client for the machine indexer."""

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 15.0,
        session: Optional[Any] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "IndexerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def query(self, query: str, variables: Mapping[str, Any]) -> Dict[str, Any]:
        session = self._get_session()
        payload = {"query": query, "variables": dict(variables)}
        try:
            async with session.post(
                self.endpoint,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as resp:
                if resp.status != 200:
                    raise FetchError("HTTP error! status: %d" % resp.status)
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError("Indexer request failed: %s" % (str(exc) or type(exc).__name__))
        except ValueError as exc:
            raise ValidationError("Indexer returned invalid JSON: %s" % exc)

        if not isinstance(body, dict):
            raise ValidationError("Indexer response must be a JSON object")
        errors = body.get("errors")
        if errors:
            messages = [
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            ]
            raise FetchError("GraphQL errors: %s" % ", ".join(messages))
        data = body.get("data")
        if not isinstance(data, dict):
            raise ValidationError("Indexer response has no data object")
        return data


def _decode_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError("Field %r is not an integer: %r" % (name, value))
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("Field %r is not an integer: %r" % (name, value))


def _decode_list(data: Mapping[str, Any], name: str) -> List[Mapping[str, Any]]:
    rows = data.get(name)
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ValidationError("Field %r must be a list" % name)
    return rows


def _count(data: Mapping[str, Any]) -> int:
    return len(_decode_list(data, "totalCount"))


def _build_where(filters: Mapping[str, Any], filter_specs: tuple, base: str) -> tuple:
    clauses = [base]
    declarations: List[str] = []
    variables: Dict[str, Any] = {}
    for name, clause, graphql_type in filter_specs:
        value = filters.get(name)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        clauses.append(clause)
        declarations.append("$%s: %s" % (name, graphql_type))
        variables[name] = value
    where = "\n        ".join(clauses)
    return where, declarations, variables


def build_staking_query(
    filters: Mapping[str, Any], count_limit: int = DEFAULT_COUNT_LIMIT
) -> tuple:
    where, declarations, variables = _build_where(
        filters, STAKING_FILTERS, "isStaking: true"
    )
    declarations = [
        "$limit: Int!",
        "$offset: Int!",
        "$orderBy: String!",
        "$sort: String!",
    ] + declarations
    query = """
query GetStakingMachines(%s) {
  machineInfos(
      first: $limit
      skip: $offset
      where: {
        %s
      }
      orderBy: $orderBy, orderDirection: $sort) {%s
  }
  totalCount: machineInfos(
      first: %d
      where: {
        %s
      }) {
      id
  }
}
""" % (", ".join(declarations), where, STAKING_FIELDS, count_limit, where)
    return query, variables


def build_offline_query(
    filters: Mapping[str, Any], count_limit: int = DEFAULT_COUNT_LIMIT
) -> tuple:
    where, declarations, variables = _build_where(
        filters, OFFLINE_FILTERS, "isActive: true"
    )
    declarations = [
        "$limit: Int!",
        "$offset: Int!",
        "$orderBy: String!",
        "$sort: String!",
    ] + declarations
    query = """
query GetOfflineMachines(%s) {
  machineOfflineRecords(
      first: $limit
      skip: $offset
      where: {
        %s
      }
      orderBy: $orderBy, orderDirection: $sort) {%s
  }
  totalCount: machineOfflineRecords(
      first: %d
      where: {
        %s
      }) {
      id
  }
}
""" % (", ".join(declarations), where, OFFLINE_FIELDS, count_limit, where)
    return query, variables


def _paging_variables(
    page: int, page_size: int, sort_field: str, sort_direction: str
) -> Dict[str, Any]:
    return {
        "limit": page_size,
        "offset": (page - 1) * page_size,
        "orderBy": sort_field,
        "sort": sort_direction if sort_direction in (ASC, DESC) else DESC,
    }


@dataclass
class StakingMachine:
    machine_id: str
    holder: str
    extra_rent_fee: int
    total_claimed_reward_amount: int
    burned_rent_fee: int
    total_reserved_amount: int
    is_rented: bool
    online: bool
    registered: bool

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "StakingMachine":
        return cls(
            machine_id=str(require_field(record, "machineId")),
            holder=str(record.get("holder") or ""),
            extra_rent_fee=_decode_int(record.get("extraRentFee", 0), "extraRentFee"),
            total_claimed_reward_amount=_decode_int(
                record.get("totalClaimedRewardAmount", 0), "totalClaimedRewardAmount"
            ),
            burned_rent_fee=_decode_int(record.get("burnedRentFee", 0), "burnedRentFee"),
            total_reserved_amount=_decode_int(
                record.get("totalReservedAmount", 0), "totalReservedAmount"
            ),
            is_rented=bool(record.get("isRented")),
            online=bool(record.get("online")),
            registered=bool(record.get("registered")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "machine_id": self.machine_id,
            "holder": self.holder,
            "extra_rent_fee": self.extra_rent_fee,
            "total_claimed_reward_amount": self.total_claimed_reward_amount,
            "burned_rent_fee": self.burned_rent_fee,
            "total_reserved_amount": self.total_reserved_amount,
            "is_rented": self.is_rented,
            "online": self.online,
            "registered": self.registered,
        }


@dataclass
class OfflineRecord:
    id: str
    machine_id: str
    holder: str
    block_number: int
    offline_time: int
    transaction_hash: Optional[str]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "OfflineRecord":
        return cls(
            id=str(require_field(record, "id")),
            machine_id=str(require_field(record, "machineId")),
            holder=str(record.get("holder") or ""),
            block_number=_decode_int(record.get("blockNumber", 0), "blockNumber"),
            offline_time=decode_timestamp(require_field(record, "blockTimestamp")),
            transaction_hash=record.get("transactionHash") or None,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "machine_id": self.machine_id,
            "holder": self.holder,
            "block_number": self.block_number,
            "offline_time": self.offline_time,
            "transaction_hash": self.transaction_hash,
        }


@dataclass
class SlashRecord:
    id: str
    machine_id: str
    holder: str
    renter: str
    slash_amount: int
    slash_type: int
    rent_start_time: int
    rent_end_time: int
    slash_time: int
    transaction_hash: Optional[str]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SlashRecord":
        return cls(
            id=str(require_field(record, "id")),
            machine_id=str(require_field(record, "machineId")),
            holder=str(record.get("holder") or ""),
            renter=str(record.get("renter") or ""),
            slash_amount=_decode_int(record.get("slashAmount", 0), "slashAmount"),
            slash_type=_decode_int(record.get("slashType", 0), "slashType"),
            rent_start_time=decode_timestamp(require_field(record, "rentStatTime")),
            rent_end_time=decode_timestamp(require_field(record, "rentEndTime")),
            slash_time=decode_timestamp(require_field(record, "blockTimestamp")),
            transaction_hash=record.get("transactionHash") or None,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "machine_id": self.machine_id,
            "holder": self.holder,
            "renter": self.renter,
            "slash_amount": self.slash_amount,
            "slash_type": self.slash_type,
            "rent_start_time": self.rent_start_time,
            "rent_end_time": self.rent_end_time,
            "slash_time": self.slash_time,
            "transaction_hash": self.transaction_hash,
        }


@dataclass
class UnregisterRecord:
    id: str
    machine_id: str
    block_number: int
    block_timestamp: int
    transaction_hash: Optional[str]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "UnregisterRecord":
        return cls(
            id=str(require_field(record, "id")),
            machine_id=str(require_field(record, "machineId")),
            block_number=_decode_int(record.get("blockNumber", 0), "blockNumber"),
            block_timestamp=decode_timestamp(require_field(record, "blockTimestamp")),
            transaction_hash=record.get("transactionHash") or None,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "machine_id": self.machine_id,
            "block_number": self.block_number,
            "block_timestamp": self.block_timestamp,
            "transaction_hash": self.transaction_hash,
        }


class StakingMachineFetcher:
    def __init__(self, client: IndexerClient, count_limit: int = DEFAULT_COUNT_LIMIT) -> None:
        self.client = client
        self.count_limit = count_limit

    async def __call__(
        self,
        filters: Dict[str, Any],
        page: int,
        page_size: int,
        sort_field: str,
        sort_direction: str,
    ) -> PageResult:
        query, variables = build_staking_query(filters, self.count_limit)
        variables.update(_paging_variables(page, page_size, sort_field, sort_direction))
        data = await self.client.query(query, variables)
        items = [
            StakingMachine.from_record(row) for row in _decode_list(data, "machineInfos")
        ]
        return PageResult(items=items, total=_count(data))


class OfflineMachineFetcher:
    def __init__(self, client: IndexerClient, count_limit: int = DEFAULT_COUNT_LIMIT) -> None:
        self.client = client
        self.count_limit = count_limit

    async def __call__(
        self,
        filters: Dict[str, Any],
        page: int,
        page_size: int,
        sort_field: str,
        sort_direction: str,
    ) -> PageResult:
        query, variables = build_offline_query(filters, self.count_limit)
        variables.update(
            _paging_variables(
                page, page_size, sort_field or "blockTimestamp", sort_direction
            )
        )
        data = await self.client.query(query, variables)
        items = [
            OfflineRecord.from_record(row)
            for row in _decode_list(data, "machineOfflineRecords")
        ]
        return PageResult(items=items, total=_count(data))


class MachineEventSource:
    """Offline, re-online and unregister history of one machine as events."""

    def __init__(self, client: IndexerClient) -> None:
        self.client = client

    async def __call__(self, machine_id: str) -> List[RawEvent]:
        data = await self.client.query(MACHINE_HISTORY_QUERY, {"machineId": machine_id})
        return events_from_streams(
            machine_id,
            _decode_list(data, "machineOfflineRecords"),
            _decode_list(data, "machineReOnlineRecords"),
            _decode_list(data, "machineUnregisterRecords"),
        )


async def fetch_slashed_records(client: IndexerClient, machine_id: str) -> List[SlashRecord]:
    data = await client.query(MACHINE_SLASHED_QUERY, {"machineId": machine_id})
    return [
        SlashRecord.from_record(row) for row in _decode_list(data, "machineSlashedRecords")
    ]


async def fetch_unregister_records(
    client: IndexerClient, machine_id: str
) -> List[UnregisterRecord]:
    data = await client.query(MACHINE_UNREGISTER_QUERY, {"machineId": machine_id})
    return [
        UnregisterRecord.from_record(row)
        for row in _decode_list(data, "machineUnregisterRecords")
    ]
