"""Node reconciler - drives this node's FlashNode record to its desired firmware."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flashgate.coordination.coordinator import MaintenanceCoordinator
from flashgate.db.base import get_session
from flashgate.db.repositories import FlashNodeRepository
from flashgate.engine.errors import FlashGateError, InvalidSpec, MaintenanceError
from flashgate.engine.updater import DeviceUpdateEngine
from flashgate.models import (
    FLASH_CONDITION,
    Condition,
    ConditionStatus,
    FlashConditionReason,
    FlashNode,
    FlashNodeSpec,
    FlashNodeStatus,
    UpdateReport,
    normalize_mac,
    set_status_condition,
)
from flashgate.observability.metrics import metrics

logger = logging.getLogger(__name__)


def verify_spec(spec: FlashNodeSpec) -> None:
    """Reject specs that cannot be turned into a consistent set of update targets."""
    if spec.hssi is None:
        return
    seen: set[str] = set()
    for mac_spec in spec.hssi.macs:
        mac = normalize_mac(mac_spec.mac)
        if mac in seen:
            raise InvalidSpec(f"Duplicate MAC in spec: {mac_spec.mac}")
        seen.add(mac)


def success_message(reports: list[UpdateReport]) -> str:
    limited = [r.selector for r in reports if r.step_limit_reached]
    if limited:
        return f"Flashed successfully; step limit reached for: {', '.join(limited)}"
    return "Flashed successfully"


class FlashNodeReconciler:
    """
    Reconciles the FlashNode record named after this node.

    Requests for other nodes or namespaces are ignored. A generation whose
    ``Flashed`` condition was already written is not processed again.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: DeviceUpdateEngine,
        coordinator: MaintenanceCoordinator,
        *,
        node_name: str,
        namespace: str,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.coordinator = coordinator
        self.node_name = node_name
        self.namespace = namespace

    async def reconcile(self, namespace: str, name: str) -> Optional[FlashNode]:
        if namespace != self.namespace:
            logger.debug(f"Unexpected namespace {namespace} - ignoring (expected {self.namespace})")
            return None
        if name != self.node_name:
            logger.debug(f"FlashNode {name} intended for another node - ignoring")
            return None

        node = await self._get_or_create()
        if node.is_generation_observed():
            logger.debug(f"Generation {node.generation} of {name} already handled")
            return node

        try:
            verify_spec(node.spec)
        except InvalidSpec as e:
            logger.error(f"Invalid spec for {name}: {e.message}")
            return await self._set_flash_condition(
                node, ConditionStatus.FALSE, FlashConditionReason.FAILED, e.message
            )

        targets = node.spec.to_targets()
        if not targets:
            logger.debug("Nothing to do")
            return await self._set_flash_condition(
                node,
                ConditionStatus.FALSE,
                FlashConditionReason.NOT_REQUESTED,
                "Inventory up to date",
            )

        current = node.flash_condition()
        if current is not None:
            node = await self._write_status(
                node,
                current.model_copy(
                    update={
                        "status": ConditionStatus.FALSE,
                        "reason": FlashConditionReason.IN_PROGRESS.value,
                        "message": "Flash started",
                    }
                ),
            )

        metrics.inc_counter("flash.attempts")
        try:
            await self.engine.verify_all(targets)
        except FlashGateError as e:
            metrics.inc_counter("flash.failed")
            logger.error(f"Preconditions not met for {name}: {e.message}")
            return await self._set_flash_condition(
                node, ConditionStatus.FALSE, FlashConditionReason.FAILED, e.message
            )
        except Exception as e:
            metrics.inc_counter("flash.failed")
            logger.error(f"Unexpected error verifying preconditions for {name}: {e}", exc_info=True)
            return await self._set_flash_condition(
                node, ConditionStatus.FALSE, FlashConditionReason.FAILED, str(e)
            )

        async def work(lost: asyncio.Event) -> list[UpdateReport]:
            return await self.engine.flash_node(targets, cancelled=lost)

        try:
            with metrics.timed("flash.duration_seconds"):
                reports = await self.coordinator.run(work, requires_drain=not node.spec.drain_skip)
        except MaintenanceError as e:
            metrics.inc_counter("flash.unknown")
            logger.error(f"Maintenance window failed on {name}: {e.message}")
            return await self._set_flash_condition(
                node, ConditionStatus.UNKNOWN, FlashConditionReason.UNKNOWN, e.message
            )
        except FlashGateError as e:
            metrics.inc_counter("flash.failed")
            logger.error(f"Unable to flash devices on {name}: {e.message}")
            return await self._set_flash_condition(
                node, ConditionStatus.FALSE, FlashConditionReason.FAILED, e.message
            )
        except Exception as e:
            # Terminal for this generation; hardware may be half-written
            metrics.inc_counter("flash.failed")
            logger.error(f"Unexpected error flashing devices on {name}: {e}", exc_info=True)
            return await self._set_flash_condition(
                node, ConditionStatus.FALSE, FlashConditionReason.FAILED, str(e)
            )

        metrics.inc_counter("flash.succeeded")
        for report in reports:
            logger.info(f"Flashed {report.selector}: {report.module_versions() or 'no module changes'}")
        logger.info(f"Reconciled {name}")
        return await self._set_flash_condition(
            node, ConditionStatus.TRUE, FlashConditionReason.SUCCEEDED, success_message(reports)
        )

    async def _get_or_create(self) -> FlashNode:
        async with get_session(self.session_factory) as session:
            repo = FlashNodeRepository(session)
            node = await repo.get(self.namespace, self.node_name)
            if node is not None:
                return node
            logger.info(f"FlashNode {self.namespace}/{self.node_name} not found - creating")
            return await repo.create(FlashNode(name=self.node_name, namespace=self.namespace))

    async def _set_flash_condition(
        self,
        node: FlashNode,
        status: ConditionStatus,
        reason: FlashConditionReason,
        message: str,
    ) -> FlashNode:
        condition = Condition(
            type=FLASH_CONDITION,
            status=status,
            reason=reason.value,
            message=message,
            observed_generation=node.generation,
        )
        return await self._write_status(node, condition)

    async def _write_status(self, node: FlashNode, condition: Condition) -> FlashNode:
        """Persist a condition together with a fresh inventory snapshot."""
        inventory = node.status.inventory
        try:
            inventory = await self.engine.inventory.get_inventory()
        except FlashGateError as e:
            logger.error(f"Failed to refresh inventory for {node.name}: {e}")

        status = FlashNodeStatus(
            conditions=set_status_condition(node.status.conditions, condition),
            inventory=inventory,
        )
        async with get_session(self.session_factory) as session:
            return await FlashNodeRepository(session).update_status(
                node.namespace, node.name, status
            )
