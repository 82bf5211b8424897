"""
Tests for the node reconciler.

Runs the real maintenance coordinator over an in-memory lease lock and a fake
drainer; the device update engine is replaced by a scripted stand-in.
"""

import pytest

from conftest import FakeDrainer
from flashgate.coordination.coordinator import MaintenanceCoordinator
from flashgate.db.base import get_session
from flashgate.db.repositories import FlashNodeRepository
from flashgate.engine.errors import EmptyFirmwareURL, FlashGateError, ModuleUpdateFailed
from flashgate.models import (
    ApplyStopReason,
    ConditionStatus,
    DeviceGroup,
    DeviceRecord,
    FlashConditionReason,
    FlashNode,
    FlashNodeSpec,
    HssiSpec,
    MacSpec,
    UpdateOutcome,
    UpdateReport,
    UpdateStepResult,
)
from flashgate.reconcile.node import FlashNodeReconciler, success_message, verify_spec

NAMESPACE = "flashgate"
NODE = "node-1"
MAC = "64:4c:36:11:1b:a8"
CARD = "0000:1d:00.0"
URL = "http://images.example.com/nvmupdate.tar.gz"

INVENTORY = [
    DeviceGroup(
        card_address=CARD,
        devices=[DeviceRecord(mac=MAC, card_address=CARD, interface="npac0", firmware_version="2.40")],
    )
]


class FakeInventory:
    def __init__(self):
        self.error = None

    async def get_inventory(self):
        if self.error:
            raise self.error
        return INVENTORY


class FakeEngine:
    """Scripted device update engine."""

    def __init__(self):
        self.inventory = FakeInventory()
        self.precondition_error = None
        self.flash_error = None
        self.stop_reason = ApplyStopReason.CONVERGED
        self.flashed = []
        self.during_flash = None

    async def verify_all(self, targets):
        if self.precondition_error:
            raise self.precondition_error

    async def flash_node(self, targets, cancelled=None):
        self.flashed.append([t.selector for t in targets])
        if self.during_flash:
            await self.during_flash()
        if self.flash_error:
            raise self.flash_error
        return [
            UpdateReport(selector=t.selector, card_address=CARD, passes=1, stop_reason=self.stop_reason)
            for t in targets
        ]


def spec(macs=(MAC,), firmware_url=URL, **kwargs):
    return FlashNodeSpec(
        hssi=HssiSpec(firmware_url=firmware_url, macs=[MacSpec(mac=m) for m in macs]),
        **kwargs,
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def make_reconciler(session_factory, engine, lease_lock, recorded_sleep):
    def make(drainer=None):
        drainer = drainer or FakeDrainer()
        coordinator = MaintenanceCoordinator(
            lease_lock,
            drainer,
            node_name=NODE,
            namespace=NAMESPACE,
            lease_name="flashgate-daemon-lease",
            sleep=recorded_sleep,
        )
        reconciler = FlashNodeReconciler(
            session_factory, engine, coordinator, node_name=NODE, namespace=NAMESPACE
        )
        return reconciler, drainer

    return make


async def store_node(session_factory, node_spec):
    async with get_session(session_factory) as session:
        await FlashNodeRepository(session).create(FlashNode(name=NODE, namespace=NAMESPACE, spec=node_spec))


async def load_node(session_factory):
    async with get_session(session_factory) as session:
        return await FlashNodeRepository(session).get(NAMESPACE, NODE)


def test_duplicate_macs_are_invalid():
    verify_spec(spec(macs=(MAC, "64:4c:36:11:1b:a9")))
    with pytest.raises(FlashGateError, match="Duplicate MAC"):
        verify_spec(spec(macs=(MAC, MAC.upper())))


def test_success_message_mentions_step_limit():
    converged = UpdateReport(selector="a", stop_reason=ApplyStopReason.CONVERGED)
    limited = UpdateReport(selector="b", stop_reason=ApplyStopReason.STEP_LIMIT)
    assert success_message([converged]) == "Flashed successfully"
    assert success_message([converged, limited]) == "Flashed successfully; step limit reached for: b"


@pytest.mark.asyncio
async def test_records_for_other_nodes_are_ignored(make_reconciler, session_factory):
    reconciler, drainer = make_reconciler()

    assert await reconciler.reconcile(NAMESPACE, "node-2") is None
    assert await reconciler.reconcile("other", NODE) is None
    assert await load_node(session_factory) is None
    assert drainer.calls == []


@pytest.mark.asyncio
async def test_missing_record_is_created_with_inventory(make_reconciler, session_factory):
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.FALSE
    assert condition.reason == FlashConditionReason.NOT_REQUESTED.value
    assert condition.message == "Inventory up to date"
    assert condition.observed_generation == 1
    assert node.status.inventory == INVENTORY
    assert drainer.calls == []
    assert (await load_node(session_factory)).status == node.status


@pytest.mark.asyncio
async def test_successful_flash(make_reconciler, session_factory, engine, lease_lock):
    await store_node(session_factory, spec())
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.TRUE
    assert condition.reason == FlashConditionReason.SUCCEEDED.value
    assert condition.message == "Flashed successfully"
    assert engine.flashed == [[MAC]]
    assert drainer.calls == ["cordon", "drain", "uncordon"]
    assert all(lease.holder_identity == "" for lease in lease_lock.leases.values())


@pytest.mark.asyncio
async def test_handled_generation_is_not_flashed_again(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    reconciler, _ = make_reconciler()

    await reconciler.reconcile(NAMESPACE, NODE)
    await reconciler.reconcile(NAMESPACE, NODE)

    assert engine.flashed == [[MAC]]


@pytest.mark.asyncio
async def test_new_generation_is_flashed_again(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    reconciler, _ = make_reconciler()
    await reconciler.reconcile(NAMESPACE, NODE)

    async with get_session(session_factory) as session:
        await FlashNodeRepository(session).update_spec(NAMESPACE, NODE, spec(dry_run=True))

    node = await reconciler.reconcile(NAMESPACE, NODE)

    assert engine.flashed == [[MAC], [MAC]]
    assert node.flash_condition().observed_generation == 2


@pytest.mark.asyncio
async def test_previous_condition_shows_in_progress_while_flashing(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    reconciler, _ = make_reconciler()
    await reconciler.reconcile(NAMESPACE, NODE)

    async with get_session(session_factory) as session:
        await FlashNodeRepository(session).update_spec(NAMESPACE, NODE, spec(dry_run=True))

    seen = []

    async def capture():
        seen.append((await load_node(session_factory)).flash_condition())

    engine.during_flash = capture
    await reconciler.reconcile(NAMESPACE, NODE)

    assert seen[0].reason == FlashConditionReason.IN_PROGRESS.value
    assert seen[0].status is ConditionStatus.FALSE
    assert seen[0].message == "Flash started"
    # still points at the generation handled before
    assert seen[0].observed_generation == 1


@pytest.mark.asyncio
async def test_precondition_failure_marks_failed_without_draining(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec(firmware_url=""))
    engine.precondition_error = EmptyFirmwareURL()
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.FALSE
    assert condition.reason == FlashConditionReason.FAILED.value
    assert condition.message == "Empty firmware URL"
    assert drainer.calls == []
    assert engine.flashed == []


@pytest.mark.asyncio
async def test_invalid_spec_marks_failed(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec(macs=(MAC, MAC)))
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    assert node.flash_condition().reason == FlashConditionReason.FAILED.value
    assert engine.flashed == []
    assert drainer.calls == []


@pytest.mark.asyncio
async def test_update_failure_marks_failed(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    engine.flash_error = ModuleUpdateFailed(MAC, "NVM", "8000191B", "Failed")
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.FALSE
    assert condition.reason == FlashConditionReason.FAILED.value
    assert "Invalid update result: Failed" in condition.message
    assert drainer.count("uncordon") == 1


@pytest.mark.asyncio
async def test_drain_failure_marks_unknown(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    reconciler, drainer = make_reconciler(FakeDrainer(drain_failures=5))

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.UNKNOWN
    assert condition.reason == FlashConditionReason.UNKNOWN.value
    assert "Failed to drain node" in condition.message
    assert engine.flashed == []
    assert drainer.count("uncordon") == 1


@pytest.mark.asyncio
async def test_drain_skip_leaves_node_schedulable(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec(drain_skip=True))
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    assert node.flash_condition().status is ConditionStatus.TRUE
    assert drainer.calls == ["uncordon"]


@pytest.mark.asyncio
async def test_step_limit_is_reported_as_success(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    engine.stop_reason = ApplyStopReason.STEP_LIMIT
    reconciler, _ = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.TRUE
    assert condition.message == f"Flashed successfully; step limit reached for: {MAC}"


@pytest.mark.asyncio
async def test_inventory_refresh_failure_keeps_previous_inventory(make_reconciler, session_factory, engine):
    reconciler, _ = make_reconciler()
    await reconciler.reconcile(NAMESPACE, NODE)

    async with get_session(session_factory) as session:
        await FlashNodeRepository(session).update_spec(NAMESPACE, NODE, spec())
    engine.inventory.error = FlashGateError("fpgainfo not found")

    node = await reconciler.reconcile(NAMESPACE, NODE)

    assert node.flash_condition().status is ConditionStatus.TRUE
    assert node.status.inventory == INVENTORY


def test_module_versions_lists_updated_modules():
    report = UpdateReport(
        selector=MAC,
        stop_reason=ApplyStopReason.CONVERGED,
        results=[
            UpdateStepResult(module_type="NVM", module_version="8000191B", outcome=UpdateOutcome.SUCCESS, result="Success"),
            UpdateStepResult(module_type="OROM", module_version="1.2829.0", outcome=UpdateOutcome.SUCCESS, result="Success"),
        ],
    )
    assert report.module_versions() == "NVM 8000191B, OROM 1.2829.0"
    assert UpdateReport(selector=MAC, stop_reason=ApplyStopReason.DRY_RUN).module_versions() == ""


@pytest.mark.asyncio
async def test_unexpected_flash_error_is_terminal_for_the_generation(make_reconciler, session_factory, engine):
    """A non-FlashGate error still records a Failed condition, so the generation is not re-flashed."""
    await store_node(session_factory, spec())
    engine.flash_error = FileNotFoundError(2, "No such file or directory", "/usr/bin/rsu")
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)
    await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.status is ConditionStatus.FALSE
    assert condition.reason == FlashConditionReason.FAILED.value
    assert "/usr/bin/rsu" in condition.message
    assert condition.observed_generation == 1
    assert engine.flashed == [[MAC]]
    assert drainer.count("uncordon") == 1


@pytest.mark.asyncio
async def test_unexpected_precondition_error_marks_failed(make_reconciler, session_factory, engine):
    await store_node(session_factory, spec())
    engine.precondition_error = PermissionError(13, "Permission denied", "/var/lib/flashgate")
    reconciler, drainer = make_reconciler()

    node = await reconciler.reconcile(NAMESPACE, NODE)

    condition = node.flash_condition()
    assert condition.reason == FlashConditionReason.FAILED.value
    assert "Permission denied" in condition.message
    assert engine.flashed == []
    assert drainer.calls == []
