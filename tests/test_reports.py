import asyncio
import unittest
from typing import Any, List

from machine_explorer.errors import FetchError
from machine_explorer.events import CLOSE_BY_RECOVERY, OPEN, RawEvent
from machine_explorer.observability import MemorySink
from machine_explorer.reports import ReportHistory


def _events(*pairs: Any) -> List[RawEvent]:
    return [RawEvent(subject_id="m1", timestamp=ts, kind=kind) for ts, kind in pairs]


class TestReportHistory(unittest.IsolatedAsyncioTestCase):
    async def test_load_reconciles_events(self) -> None:
        sink = MemorySink()
        requested: List[str] = []

        async def source(machine_id: str) -> List[RawEvent]:
            requested.append(machine_id)
            return _events((300, OPEN), (100, OPEN), (200, CLOSE_BY_RECOVERY), (50, CLOSE_BY_RECOVERY))

        history = ReportHistory("m1", source, sink)
        await history.load()

        self.assertEqual(requested, ["m1"])
        self.assertEqual([interval.start for interval in history.intervals], [300, 100])
        self.assertTrue(history.currently_open)
        self.assertFalse(history.loading)
        self.assertIsNone(history.error)
        self.assertEqual(len(sink.anomalies), 1)

        snapshot = history.snapshot()
        self.assertEqual(snapshot["intervals"][1]["duration_seconds"], 100)
        self.assertTrue(snapshot["currently_open"])

    async def test_failure_keeps_previous_intervals(self) -> None:
        calls = {"count": 0}

        async def source(machine_id: str) -> List[RawEvent]:
            calls["count"] += 1
            if calls["count"] > 1:
                raise FetchError("GraphQL errors: down")
            return _events((100, OPEN), (160, CLOSE_BY_RECOVERY))

        history = ReportHistory("m1", source)
        await history.load()
        await history.load()

        self.assertEqual(history.error, "GraphQL errors: down")
        self.assertEqual(len(history.intervals), 1)
        self.assertFalse(history.currently_open)
        self.assertFalse(history.loading)

    async def test_late_response_is_dropped(self) -> None:
        futures: List["asyncio.Future[Any]"] = []

        async def source(machine_id: str) -> Any:
            future = asyncio.get_running_loop().create_future()
            futures.append(future)
            return await future

        history = ReportHistory("m1", source)
        first = asyncio.ensure_future(history.load())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(history.load())
        await asyncio.sleep(0)

        futures[1].set_result(_events((100, OPEN), (110, CLOSE_BY_RECOVERY)))
        await second
        futures[0].set_result(_events((500, OPEN)))
        await first

        self.assertEqual(len(history.intervals), 1)
        self.assertFalse(history.currently_open)

    async def test_unexpected_error_clears_loading(self) -> None:
        async def source(machine_id: str) -> List[RawEvent]:
            raise RuntimeError("decoder bug")

        history = ReportHistory("m1", source)
        with self.assertRaises(RuntimeError):
            await history.load()
        self.assertFalse(history.loading)
        self.assertIsNone(history.error)

    async def test_empty_machine_id_does_nothing(self) -> None:
        async def source(machine_id: str) -> List[RawEvent]:
            raise AssertionError("should not be called")

        history = ReportHistory("", source)
        await history.load()
        self.assertEqual(history.intervals, [])


if __name__ == "__main__":
    unittest.main()
