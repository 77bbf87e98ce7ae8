import asyncio
from dataclasses import asdict, dataclass, is_dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .errors import QueryError, ValidationError
from .observability import NULL_SINK, ObservabilitySink

# (function_name, machine_id) -> decoded contract return value
ContractReader = Callable[[str, str], Awaitable[Any]]
UnregisterSource = Callable[[str], Awaitable[Sequence[Any]]]


@dataclass
class RentStatus:
    can_rent: bool
    reason: str
    in_white_list: bool


@dataclass
class MachineInfo:
    holder: str
    calc_point: int
    start_at: int
    end_at: int
    next_renter_can_rent_at: int
    reserved_amount: int
    is_online: bool
    is_registered: bool


def _expect_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("%s must be a bool, got %s" % (name, type(value).__name__))
    return value


def _expect_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("%s must be an integer, got %s" % (name, type(value).__name__))
    return value


def decode_rent_status(results: Sequence[Any]) -> RentStatus:
    if not isinstance(results, (list, tuple)) or len(results) != 3:
        raise ValidationError("Expected 3 rent status values, got %r" % (results,))
    can_rent, reason, in_white_list = results
    if not isinstance(reason, str):
        raise ValidationError("reason must be a string, got %s" % type(reason).__name__)
    return RentStatus(
        can_rent=_expect_bool(can_rent, "canRent"),
        reason=reason,
        in_white_list=_expect_bool(in_white_list, "inRentWhiteList"),
    )


def decode_machine_info(result: Any) -> MachineInfo:
    if not isinstance(result, (list, tuple)):
        raise ValidationError("Expected array result, got: %s" % type(result).__name__)
    if len(result) != 8:
        raise ValidationError("Expected 8 return values, got: %d" % len(result))
    holder = result[0]
    if not isinstance(holder, str):
        raise ValidationError("holder must be a string, got %s" % type(holder).__name__)
    return MachineInfo(
        holder=holder,
        calc_point=_expect_int(result[1], "calcPoint"),
        start_at=_expect_int(result[2], "startAtTimestamp"),
        end_at=_expect_int(result[3], "endAtTimestamp"),
        next_renter_can_rent_at=_expect_int(result[4], "nextRenterCanRentAt"),
        reserved_amount=_expect_int(result[5], "reservedAmount"),
        is_online=_expect_bool(result[6], "isOnline"),
        is_registered=_expect_bool(result[7], "isRegistered"),
    )


class Section:
    def __init__(self) -> None:
        self.value: Any = None
        self.loading = False
        self.error: Optional[str] = None
        self.request_token = 0

    def as_dict(self) -> Dict[str, Any]:
        value = self.value
        if isinstance(value, list):
            value = [item.as_dict() if hasattr(item, "as_dict") else item for item in value]
        elif is_dataclass(value):
            value = asdict(value)
        return {"value": value, "loading": self.loading, "error": self.error}


class MachineDetailLoader:
    """Rent status, machine info and unregister history of one machine.

    Sections load concurrently and fail independently; a failed section keeps
    whatever value it held before.
    """

    def __init__(
        self,
        machine_id: str,
        contract_reader: ContractReader,
        unregister_source: UnregisterSource,
        sink: Optional[ObservabilitySink] = None,
    ) -> None:
        self.machine_id = machine_id
        self.contract_reader = contract_reader
        self.unregister_source = unregister_source
        self.sink = sink or NULL_SINK
        self.rent_status = Section()
        self.machine_info = Section()
        self.unregister_records = Section()

    async def _run(
        self, name: str, section: Section, loader: Callable[[], Awaitable[Any]]
    ) -> None:
        section.request_token += 1
        token = section.request_token
        section.loading = True
        section.error = None
        try:
            value = await loader()
        except QueryError as exc:
            if token != section.request_token:
                return
            section.error = str(exc) or exc.__class__.__name__
            section.loading = False
            self.sink.record_fetch_failure(name, section.error, token)
            return
        except Exception:
            if token == section.request_token:
                section.loading = False
            raise

        if token != section.request_token:
            return
        section.value = value
        section.loading = False

    async def _read_rent_status(self) -> RentStatus:
        results: List[Any] = await asyncio.gather(
            self.contract_reader("canRent", self.machine_id),
            self.contract_reader("resonFoCanNotRent", self.machine_id),
            self.contract_reader("inRentWhiteList", self.machine_id),
        )
        return decode_rent_status(results)

    async def _read_machine_info(self) -> MachineInfo:
        return decode_machine_info(
            await self.contract_reader("getMachineInfo", self.machine_id)
        )

    async def _read_unregister_records(self) -> List[Any]:
        return list(await self.unregister_source(self.machine_id))

    async def load(self) -> None:
        if not self.machine_id:
            return
        await asyncio.gather(
            self._run("rent-status", self.rent_status, self._read_rent_status),
            self._run("machine-info", self.machine_info, self._read_machine_info),
            self._run(
                "unregister-records",
                self.unregister_records,
                self._read_unregister_records,
            ),
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "machine_id": self.machine_id,
            "rent_status": self.rent_status.as_dict(),
            "machine_info": self.machine_info.as_dict(),
            "unregister_records": self.unregister_records.as_dict(),
        }
