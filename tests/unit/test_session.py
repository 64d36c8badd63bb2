"""Tests for the maintenance session read model and state file."""

import asyncio
import json

import pytest

from slimage.config import SlimageConfig
from slimage.errors import BatchBusyError, StoreError
from slimage.models import ErrorLogEntry
from slimage.runner import BatchRunner, CancelToken
from slimage.scanner import BatchScanner
from slimage.security import atomic_write_json
from slimage.session import MaintenanceSession, SessionPhase, SessionState, state_file_for
from slimage.stores import JsonRecordStore

HEAVY = 900_000


class FakeOrchestrator:
    def __init__(self, gate: asyncio.Event | None = None, fail: set[str] = frozenset()):
        self.gate = gate
        self.fail = set(fail)
        self.calls: list[str] = []

    async def optimize(self, record):
        self.calls.append(record.id)
        if self.gate is not None:
            await self.gate.wait()
        if record.id in self.fail:
            raise StoreError("write refused")
        return record.with_image(record.image_ref + "?opt=1")

    async def test_connection(self) -> str:
        return "https://cdn.test/ok.webp?opt=1"


@pytest.fixture
def state_file(tmp_state_dir):
    return tmp_state_dir / "slimage.abc123.state.json"


@pytest.fixture
def make_session(memory_store, records_factory, stub_probe, state_file):
    def factory(count: int = 10, orchestrator=None, sizes=None):
        store = memory_store(records_factory(count))
        probe = stub_probe(sizes or {}, default=HEAVY)
        scanner = BatchScanner(store, probe, window_size=4, yield_delay=0)
        runner = BatchRunner(orchestrator or FakeOrchestrator(), pacing_delay=0)
        return MaintenanceSession(store, scanner, runner, state_file=state_file)

    return factory


class TestSessionState:
    """Tests for state serialization."""

    def test_round_trip(self) -> None:
        state = SessionState(
            cursor=30,
            force_all=True,
            unknown_count=2,
            candidates=["r1", "r2"],
            errors=[ErrorLogEntry("Soup", "Timeout")],
        )
        restored = SessionState.from_dict(json.loads(json.dumps(state.to_dict())))
        assert restored.cursor == 30
        assert restored.force_all
        assert restored.candidates == ["r1", "r2"]
        assert restored.errors == [ErrorLogEntry("Soup", "Timeout")]

    def test_negative_values_clamped(self) -> None:
        state = SessionState.from_dict({"cursor": -5, "unknown_count": -1})
        assert state.cursor == 0
        assert state.unknown_count == 0


class TestStateFile:
    """Tests for state file naming, saving and resuming."""

    def test_name_depends_on_collection(self, tmp_path) -> None:
        a = SlimageConfig.model_validate(
            {"state_dir": str(tmp_path), "store": {"records_file": str(tmp_path / "a.json")}}
        )
        b = SlimageConfig.model_validate(
            {"state_dir": str(tmp_path), "store": {"records_file": str(tmp_path / "b.json")}}
        )
        assert state_file_for(a) == state_file_for(a)
        assert state_file_for(a) != state_file_for(b)
        assert state_file_for(a).parent == tmp_path
        assert state_file_for(a).name.startswith("slimage.")

    @pytest.mark.asyncio
    async def test_scan_persists_and_resumes(self, make_session, state_file) -> None:
        session = make_session()
        await session.scan_window()
        session.errors.append(ErrorLogEntry("Recipe 9", "Timeout"))
        session.save_state()

        data = json.loads(state_file.read_text(encoding="utf-8"))
        assert data["cursor"] == 4
        assert data["candidates"] == ["r0", "r1", "r2", "r3"]

        resumed = make_session()
        assert await resumed.load_state()
        snapshot = resumed.snapshot()
        assert snapshot.cursor == 4
        assert snapshot.total == 10
        assert [r.id for r in snapshot.candidates] == ["r0", "r1", "r2", "r3"]
        assert [str(e) for e in snapshot.errors] == ["Error (Recipe 9): Timeout"]

    @pytest.mark.asyncio
    async def test_vanished_candidates_dropped(self, make_session, state_file) -> None:
        state_file.write_text(
            json.dumps({"cursor": 3, "candidates": ["r1", "gone", "r2"]}), encoding="utf-8"
        )
        session = make_session(count=5)
        await session.load_state()
        assert session.candidates.ids() == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_corrupt_file_ignored(self, make_session, state_file) -> None:
        state_file.write_text("{not json", encoding="utf-8")
        session = make_session()
        assert not await session.load_state()
        assert session.snapshot().cursor == 0

    @pytest.mark.asyncio
    async def test_missing_file(self, make_session) -> None:
        session = make_session(count=7)
        assert not await session.load_state()
        assert session.snapshot().total == 7


class TestPhases:
    """Scanning and running never overlap."""

    @pytest.mark.asyncio
    async def test_run_rejects_scan_and_reset(self, make_session) -> None:
        gate = asyncio.Event()
        session = make_session(orchestrator=FakeOrchestrator(gate=gate))
        await session.scan_window()

        run = asyncio.create_task(session.start_run())
        await asyncio.sleep(0.01)
        assert session.phase is SessionPhase.RUNNING
        assert session.snapshot().phase == "running"

        with pytest.raises(BatchBusyError):
            await session.scan_window()
        with pytest.raises(BatchBusyError):
            session.reset_cursor()
        with pytest.raises(BatchBusyError):
            session.clear_candidates()
        with pytest.raises(BatchBusyError):
            session.set_force_all(True)

        gate.set()
        result = await run
        assert result.progress.success == 4
        assert session.phase is SessionPhase.IDLE

    @pytest.mark.asyncio
    async def test_stop_keeps_remaining(self, make_session, state_file) -> None:
        session = make_session()
        await session.scan_window()
        assert not session.stop()

        def on_progress(progress) -> None:
            if progress.success == 1:
                session.stop()

        result = await session.start_run(on_progress=on_progress)

        assert result.cancelled
        assert session.candidates.ids() == ["r1", "r2", "r3"]
        data = json.loads(state_file.read_text(encoding="utf-8"))
        assert data["candidates"] == ["r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_run_saves_once_per_item(self, make_session, state_file, monkeypatch) -> None:
        writes = []

        def counting_write(path, data, *args, **kwargs):
            writes.append(list(data["candidates"]))
            return atomic_write_json(path, data, *args, **kwargs)

        session = make_session()
        await session.scan_window()
        monkeypatch.setattr("slimage.session.atomic_write_json", counting_write)
        on_disk = []

        def on_progress(progress) -> None:
            if progress.success == 2 and not on_disk:
                on_disk.append(json.loads(state_file.read_text(encoding="utf-8"))["candidates"])

        await session.start_run(on_progress=on_progress)

        # One write per finished item plus the final save
        assert writes == [["r1", "r2", "r3"], ["r2", "r3"], ["r3"], [], []]
        assert on_disk == [["r2", "r3"]]

    @pytest.mark.asyncio
    async def test_errors_accumulate_across_runs(self, make_session) -> None:
        session = make_session(orchestrator=FakeOrchestrator(fail={"r0", "r4"}))
        await session.scan_window()
        await session.start_run(token=CancelToken())
        await session.scan_window()
        await session.start_run()

        assert [e.record_title for e in session.errors] == ["Recipe 0", "Recipe 4"]
        session.clear_errors()
        assert session.snapshot().errors == []


class TestHousekeeping:
    """Tests for reset, clear and single-record actions."""

    @pytest.mark.asyncio
    async def test_reset_cursor_clears_everything(self, make_session) -> None:
        session = make_session(sizes={"https://img.test/0.jpg": 0})
        await session.scan_all()
        session.errors.append(ErrorLogEntry("x", "y"))

        session.reset_cursor()

        snapshot = session.snapshot()
        assert snapshot.cursor == 0
        assert snapshot.candidates == []
        assert snapshot.unknown_count == 0
        assert snapshot.errors == []

    @pytest.mark.asyncio
    async def test_scan_complete_without_candidates(self, make_session) -> None:
        session = make_session(count=3, sizes={f"https://img.test/{i}.jpg": 10 for i in range(3)})
        await session.scan_all()
        snapshot = session.snapshot()
        assert snapshot.scan_complete
        assert snapshot.to_dict()["candidates"] == []

    @pytest.mark.asyncio
    async def test_force_all_persisted(self, make_session, state_file) -> None:
        session = make_session()
        session.set_force_all(True)
        assert json.loads(state_file.read_text(encoding="utf-8"))["force_all"] is True

    @pytest.mark.asyncio
    async def test_optimize_record_discards_candidate(self, make_session) -> None:
        session = make_session()
        await session.scan_window()

        original, updated = await session.optimize_record("r2")

        assert original.id == "r2"
        assert updated.image_ref.endswith("?opt=1")
        assert "r2" not in session.candidates

    @pytest.mark.asyncio
    async def test_optimize_unknown_record(self, make_session) -> None:
        with pytest.raises(StoreError, match="not found"):
            await make_session().optimize_record("nope")

    @pytest.mark.asyncio
    async def test_test_connection(self, make_session) -> None:
        assert (await make_session().test_connection()).endswith("opt=1")


class TestFromConfig:
    """Tests for building a session from configuration."""

    @pytest.mark.asyncio
    async def test_local_backend(self, tmp_path, tmp_state_dir, new_record) -> None:
        records_file = tmp_path / "records.json"
        records_file.write_text(
            json.dumps([new_record(i).to_dict() for i in range(3)]), encoding="utf-8"
        )
        config = SlimageConfig.model_validate(
            {
                "state_dir": str(tmp_state_dir),
                "store": {"records_file": str(records_file), "assets_dir": str(tmp_path / "a")},
                "scan": {"force_all": True, "window_size": 2},
                "convert": {"browser": False},
            }
        )

        async with MaintenanceSession.from_config(config) as session:
            assert isinstance(session.records, JsonRecordStore)
            assert session.state_file == state_file_for(config)
            await session.load_state()
            results = await session.scan_all()

        assert [r.processed for r in results] == [2, 1]
        assert session.candidates.ids() == ["r0", "r1", "r2"]
        assert session.state_file.exists()
