"""Tests for MutationCoordinator: optimistic writes, rollback and resync."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from mctracker.core.clock import FixedClock, SteppingClock
from mctracker.core.exceptions import (
    DuplicateManuscriptError,
    ManuscriptNotFoundError,
    ManuscriptValidationError,
    PersistenceError,
)
from mctracker.engine.coordinator import MutationCoordinator
from mctracker.engine.entity_store import EntityStore
from mctracker.models.manuscript import Manuscript, ManuscriptChanges, Priority, Status
from mctracker.models.settings import UserSchedule, UserSettings
from tests.fakes import FlakyGateway

T = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)
EARLIER = T - timedelta(days=2)


def _m(id_: str, key: str, **overrides) -> Manuscript:
    fields = {
        "id": id_, "manuscript_id": key, "journal_code": "JOC",
        "date_received": EARLIER, "date_updated": EARLIER,
    }
    fields.update(overrides)
    return Manuscript(**fields)


@pytest.fixture
def seed():
    return [_m("x", "J-1"), _m("y", "J-2"), _m("z", "J-3", status=Status.PENDING_JM)]


@pytest.fixture
def gateway(seed):
    return FlakyGateway(seed)


@pytest.fixture
def coordinator(gateway, seed):
    return MutationCoordinator(gateway, store=EntityStore(seed), clock=FixedClock(T))


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_reads_entities_and_settings(self, seed):
        settings = UserSettings(target_per_cycle=12)
        gateway = FlakyGateway(seed, settings)
        coordinator = MutationCoordinator(gateway)
        await coordinator.load()
        assert len(coordinator.store) == 3
        assert coordinator.settings.target_per_cycle == 12

    @pytest.mark.asyncio
    async def test_load_failure_raises_persistence_error(self, gateway):
        gateway.fail_on.add("list")
        coordinator = MutationCoordinator(gateway)
        with pytest.raises(PersistenceError):
            await coordinator.load()
        assert len(coordinator.store) == 0

    @pytest.mark.asyncio
    async def test_reload_replaces_store(self, coordinator, gateway):
        await gateway.create(_m("w", "J-9"))
        entities = await coordinator.reload()
        assert {m.id for m in entities} == {"w", "x", "y", "z"}


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_prepends_and_stamps(self, coordinator, gateway):
        created = await coordinator.create_entity(
            Manuscript(manuscript_id="J-4", journal_code="PHY", priority=Priority.HIGH)
        )
        assert coordinator.store.all()[0] is created
        assert created.date_updated == T
        assert created.date_status_changed == T
        assert created.completed_date is None
        assert gateway.calls == ["create"]

    @pytest.mark.asyncio
    async def test_create_as_worked_sets_completed_date(self, coordinator):
        created = await coordinator.create_entity(
            Manuscript(manuscript_id="J-4", journal_code="PHY", status=Status.WORKED)
        )
        assert created.completed_date == T

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected_before_gateway(self, coordinator, gateway):
        # Scenario: an existing "J-1" blocks a new "j-1".
        with pytest.raises(DuplicateManuscriptError):
            await coordinator.create_entity(Manuscript(manuscript_id="j-1", journal_code="JOC"))
        assert gateway.calls == []
        assert len(coordinator.store) == 3

    @pytest.mark.asyncio
    async def test_missing_required_fields_rejected(self, coordinator, gateway):
        with pytest.raises(ManuscriptValidationError):
            await coordinator.create_entity(Manuscript(manuscript_id="", journal_code="JOC"))
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_store_untouched(self, coordinator, gateway):
        gateway.fail_on.add("create")
        with pytest.raises(PersistenceError):
            await coordinator.create_entity(Manuscript(manuscript_id="J-4", journal_code="JOC"))
        assert [m.id for m in coordinator.store] == ["x", "y", "z"]


class TestUpdateEntity:
    @pytest.mark.asyncio
    async def test_status_change_derives_dates(self, coordinator):
        edited = coordinator.get("x").model_copy(update={"status": Status.WORKED})
        saved = await coordinator.update_entity(edited)
        assert saved.date_status_changed == T
        assert saved.completed_date == T
        assert coordinator.get("x") is saved

    @pytest.mark.asyncio
    async def test_non_worked_save_clears_completed_date(self, coordinator):
        edited = coordinator.get("x").model_copy(update={"status": Status.PENDING_TL, "completed_date": T})
        saved = await coordinator.update_entity(edited)
        assert saved.completed_date is None

    @pytest.mark.asyncio
    async def test_renaming_onto_another_key_rejected(self, coordinator, gateway):
        edited = coordinator.get("x").model_copy(update={"manuscript_id": "j-2"})
        with pytest.raises(DuplicateManuscriptError):
            await coordinator.update_entity(edited)
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_keeping_own_key_is_not_a_duplicate(self, coordinator):
        edited = coordinator.get("x").model_copy(update={"journal_code": "PHY"})
        saved = await coordinator.update_entity(edited)
        assert saved.journal_code == "PHY"

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self, coordinator):
        with pytest.raises(ManuscriptNotFoundError):
            await coordinator.update_entity(_m("nope", "J-99"))

    @pytest.mark.asyncio
    async def test_save_entity_routes_by_id(self, coordinator, gateway):
        await coordinator.save_entity(coordinator.get("y").model_copy(update={"journal_code": "PHY"}))
        await coordinator.save_entity(Manuscript(manuscript_id="J-5", journal_code="JOC"))
        assert gateway.calls == ["update", "create"]


class TestQuickUpdate:
    @pytest.mark.asyncio
    async def test_mark_worked_sets_bookkeeping_dates(self, coordinator):
        # Scenario: UNTOUCHED -> WORKED at T with no prior completion.
        saved = await coordinator.quick_update("x", {"status": Status.WORKED})
        assert saved.status == Status.WORKED
        assert saved.completed_date == T
        assert saved.date_status_changed == T
        assert coordinator.get("x") == saved

    @pytest.mark.asyncio
    async def test_existing_completed_date_is_preserved(self, coordinator):
        saved = await coordinator.quick_update(
            "x", ManuscriptChanges(status=Status.WORKED, completed_date=EARLIER)
        )
        assert saved.completed_date == EARLIER

    @pytest.mark.asyncio
    async def test_auto_remark_added_on_status_change(self, coordinator):
        saved = await coordinator.mark_worked("z")
        assert saved.notes[0].content == "JM Query Resolved / Submitted"
        assert saved.notes[0].timestamp == T

    @pytest.mark.asyncio
    async def test_auto_remarks_can_be_disabled(self, gateway, seed):
        coordinator = MutationCoordinator(gateway, store=EntityStore(seed), clock=FixedClock(T), auto_remarks=False)
        saved = await coordinator.mark_worked("x")
        assert saved.notes == ()

    @pytest.mark.asyncio
    async def test_priority_change_adds_no_remark(self, coordinator):
        saved = await coordinator.quick_update("x", {"priority": "Urgent"})
        assert saved.priority == Priority.URGENT
        assert saved.notes == ()
        assert saved.date_status_changed is None

    @pytest.mark.asyncio
    async def test_failure_restores_exact_snapshot(self, coordinator, gateway):
        snapshot = coordinator.get("x")
        gateway.fail_on.add("update")
        with pytest.raises(PersistenceError):
            await coordinator.quick_update("x", {"status": Status.WORKED, "priority": "High"})
        assert coordinator.get("x") is snapshot
        assert coordinator.get("x").model_dump() == snapshot.model_dump()

    @pytest.mark.asyncio
    async def test_change_is_visible_while_in_flight(self, coordinator, gateway):
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(coordinator.quick_update("y", {"status": Status.PENDING_CED}))
        await asyncio.sleep(0)
        assert coordinator.get("y").status == Status.PENDING_CED
        gateway.gate.set()
        saved = await task
        assert saved.notes[0].content == "Emailed to CED"

    @pytest.mark.asyncio
    async def test_unknown_id_is_a_noop(self, coordinator, gateway):
        assert await coordinator.quick_update("missing", {"status": Status.WORKED}) is None
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_rename_rejected(self, coordinator, gateway):
        with pytest.raises(DuplicateManuscriptError):
            await coordinator.quick_update("x", {"manuscript_id": "J-3"})
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_raise_query_records_reason(self, coordinator):
        saved = await coordinator.raise_query("x", "Missing figure 3")
        assert saved.status == Status.PENDING_JM
        assert saved.date_queried == T
        assert saved.query_reason == "Missing figure 3"
        assert saved.notes[0].content == "Queried to JM"

    @pytest.mark.asyncio
    async def test_date_updated_never_moves_backwards(self):
        later = T + timedelta(hours=1)
        entity = _m("x", "J-1", date_updated=later)
        gateway = FlakyGateway([entity])
        coordinator = MutationCoordinator(gateway, store=EntityStore([entity]), clock=FixedClock(T))
        saved = await coordinator.quick_update("x", {"priority": "High"})
        assert saved.date_updated == later

    @pytest.mark.asyncio
    async def test_failed_update_rolls_back_only_its_own_entity(self, coordinator, gateway):
        snapshot = coordinator.get("x")
        gateway.fail_ids.add("x")
        gateway.gate = asyncio.Event()
        failing = asyncio.create_task(coordinator.quick_update("x", {"priority": "High"}))
        passing = asyncio.create_task(coordinator.quick_update("y", {"priority": "Urgent"}))
        await asyncio.sleep(0)
        gateway.gate.set()
        failed, saved = await asyncio.gather(failing, passing, return_exceptions=True)
        assert isinstance(failed, PersistenceError)
        assert coordinator.get("x") is snapshot
        assert saved.priority == Priority.URGENT
        assert coordinator.get("y") == saved

    @pytest.mark.asyncio
    async def test_newer_value_survives_failed_earlier_update(self, coordinator, gateway):
        gateway.fail_once.add("update")
        gateway.gate = asyncio.Event()
        earlier = asyncio.create_task(coordinator.quick_update("x", {"priority": "High"}))
        await asyncio.sleep(0)
        newer = asyncio.create_task(coordinator.quick_update("x", {"journal_code": "PHY"}))
        await asyncio.sleep(0)
        gateway.gate.set()
        failed, saved = await asyncio.gather(earlier, newer, return_exceptions=True)
        assert isinstance(failed, PersistenceError)
        assert coordinator.get("x") == saved
        assert saved.journal_code == "PHY"
        assert saved.priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_invalid_change_value_raises_validation_error(self, coordinator, gateway):
        with pytest.raises(ManuscriptValidationError):
            await coordinator.quick_update("x", {"status": "BOGUS"})
        assert gateway.calls == []


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_after_gateway(self, coordinator, gateway):
        await coordinator.delete_entity("y")
        assert "y" not in coordinator.store
        assert "y" not in {m.id for m in await gateway.list()}

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_entity(self, coordinator, gateway):
        gateway.fail_on.add("delete")
        with pytest.raises(PersistenceError):
            await coordinator.delete_entity("y")
        assert "y" in coordinator.store


class TestBulkUpdate:
    @pytest.mark.asyncio
    async def test_applies_shared_changes(self, coordinator, gateway):
        changed = await coordinator.bulk_update(["x", "y"], {"status": Status.WORKED})
        assert [m.id for m in changed] == ["x", "y"]
        for m in changed:
            assert m.status == Status.WORKED
            assert m.completed_date == T
            assert m.date_status_changed == T
        assert gateway.calls == ["update_many"]
        stored = {m.id: m for m in await gateway.list()}
        assert stored["x"].status == Status.WORKED
        assert stored["z"].status == Status.PENDING_JM

    @pytest.mark.asyncio
    async def test_failure_resyncs_from_gateway(self, coordinator, gateway):
        # Scenario: the gateway rejects a bulk PENDING_JM change.
        await gateway.create(_m("w", "J-9", date_updated=T))
        gateway.fail_on.add("update_many")
        with pytest.raises(PersistenceError):
            await coordinator.bulk_update(["x", "y"], {"status": Status.PENDING_JM})
        assert gateway.calls[-1] == "list"
        assert list(coordinator.store.all()) == await gateway.list()
        assert coordinator.get("x").status == Status.UNTOUCHED
        assert "w" in coordinator.store

    @pytest.mark.asyncio
    async def test_failed_resync_restores_snapshots(self, coordinator, gateway):
        snapshot = coordinator.get("x")
        gateway.fail_on.update({"update_many", "list"})
        with pytest.raises(PersistenceError):
            await coordinator.bulk_update(["x"], {"priority": "Urgent"})
        assert coordinator.get("x") is snapshot

    @pytest.mark.asyncio
    async def test_manuscript_id_cannot_be_bulk_assigned(self, coordinator, gateway):
        with pytest.raises(ManuscriptValidationError):
            await coordinator.bulk_update(["x", "y"], {"manuscript_id": "J-7"})
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_empty_ids_is_a_noop(self, coordinator, gateway):
        assert await coordinator.bulk_update([], {"status": Status.WORKED}) == []
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_mark_reported_stamps_date_emailed(self, coordinator):
        changed = await coordinator.mark_reported(["x", "z", "x"])
        assert {m.id for m in changed} == {"x", "z"}
        assert all(m.date_emailed == T for m in changed)
        assert coordinator.get("z").status == Status.PENDING_JM

    @pytest.mark.asyncio
    async def test_date_updated_never_moves_backwards(self):
        later = T + timedelta(hours=1)
        ahead = _m("x", "J-1", date_updated=later)
        behind = _m("y", "J-2")
        gateway = FlakyGateway([ahead, behind])
        coordinator = MutationCoordinator(gateway, store=EntityStore([ahead, behind]), clock=FixedClock(T))
        await coordinator.bulk_update(["x", "y"], {"priority": "High"})
        durable = {m.id: m for m in await gateway.list()}
        for entity_id in ("x", "y"):
            assert coordinator.get(entity_id).date_updated == later
            assert durable[entity_id].date_updated == later

    @pytest.mark.asyncio
    async def test_invalid_change_value_raises_validation_error(self, coordinator, gateway):
        with pytest.raises(ManuscriptValidationError):
            await coordinator.bulk_update(["x"], {"status": "BOGUS"})
        assert gateway.calls == []
        assert coordinator.get("x").status == Status.UNTOUCHED


class TestImport:
    @pytest.mark.asyncio
    async def test_skips_existing_and_repeated_keys(self, gateway, seed):
        coordinator = MutationCoordinator(gateway, store=EntityStore(seed), clock=SteppingClock(T))
        result = await coordinator.import_entities([
            Manuscript(manuscript_id="J-10", journal_code="JOC"),
            Manuscript(manuscript_id="j-1", journal_code="JOC"),
            Manuscript(manuscript_id="J-11", journal_code="JOC"),
            Manuscript(manuscript_id="j-10", journal_code="JOC"),
        ])
        assert [m.manuscript_id for m in result.created] == ["J-10", "J-11"]
        assert result.skipped == ("j-1", "j-10")
        assert [m.manuscript_id for m in coordinator.store.all()[:2]] == ["J-10", "J-11"]
        assert gateway.calls == ["create", "create"]

    @pytest.mark.asyncio
    async def test_invalid_draft_rejects_whole_batch(self, coordinator, gateway):
        with pytest.raises(ManuscriptValidationError):
            await coordinator.import_entities([
                Manuscript(manuscript_id="J-10", journal_code="JOC"),
                Manuscript(manuscript_id="J-11", journal_code=" "),
            ])
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_failure_resyncs_from_gateway(self, coordinator, gateway):
        gateway.fail_on.add("create")
        with pytest.raises(PersistenceError):
            await coordinator.import_entities([Manuscript(manuscript_id="J-10", journal_code="JOC")])
        assert gateway.calls == ["create", "list"]
        assert {m.id for m in coordinator.store} == {"x", "y", "z"}


class TestSettings:
    @pytest.mark.asyncio
    async def test_update_target_keeps_schedule(self, coordinator, gateway):
        schedule = UserSchedule(days_off=frozenset({date(2024, 5, 10)}))
        await coordinator.update_schedule(schedule)
        saved = await coordinator.update_target(35)
        assert saved.target_per_cycle == 35
        assert saved.user_schedule == schedule
        assert (await gateway.get_settings()) == saved

    @pytest.mark.asyncio
    async def test_failure_restores_previous_settings(self, coordinator, gateway):
        previous = coordinator.settings
        gateway.fail_on.add("update_settings")
        with pytest.raises(PersistenceError):
            await coordinator.update_target(10)
        assert coordinator.settings is previous
