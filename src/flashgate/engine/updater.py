"""Device update engine.

Drives network interfaces through package staging and the vendor tool's
refresh/update convergence loop, then power-cycles the cards that were written.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from flashgate.artifacts import ArtifactStore, verify_no_symlinks
from flashgate.config import Settings
from flashgate.engine.errors import (
    EmptyFirmwareURL,
    FlashGateError,
    LeadershipLost,
    ModuleUpdateFailed,
    TargetNotFound,
)
from flashgate.engine.result_file import read_update_result
from flashgate.inventory import InventoryProvider
from flashgate.models import ApplyStopReason, UpdateReport, UpdateStepResult, UpdateTarget, find_device
from flashgate.observability.metrics import metrics
from flashgate.runner import CommandRunner

logger = logging.getLogger(__name__)


class DeviceUpdateEngine:
    """Stages the vendor update package and applies it device by device."""

    def __init__(
        self,
        runner: CommandRunner,
        inventory: InventoryProvider,
        artifacts: ArtifactStore,
        *,
        workdir: Path,
        package_path: Path,
        install_path: Path,
        tool_binary: str,
        tool_config_path: Path,
        result_path: Path,
        step_count: int = 2,
        rsu_path: str = "rsu",
    ):
        if step_count < 1:
            raise ValueError(f"step_count must be at least 1, got {step_count}")
        self.runner = runner
        self.inventory = inventory
        self.artifacts = artifacts
        self.workdir = workdir
        self.package_path = package_path
        self.install_path = install_path
        self.tool_binary = tool_binary
        self.tool_config_path = tool_config_path
        self.result_path = result_path
        self.step_count = step_count
        self.rsu_path = rsu_path

    @classmethod
    def from_settings(
        cls,
        runner: CommandRunner,
        inventory: InventoryProvider,
        artifacts: ArtifactStore,
        settings: Settings,
    ) -> "DeviceUpdateEngine":
        return cls(
            runner,
            inventory,
            artifacts,
            workdir=settings.workdir,
            package_path=settings.package_path,
            install_path=settings.install_path,
            tool_binary=settings.nvmupdate_binary,
            tool_config_path=settings.tool_config_path,
            result_path=settings.update_result_path,
            step_count=settings.update_step_count,
            rsu_path=settings.rsu_path,
        )

    @property
    def tool_path(self) -> Path:
        return self.install_path / self.tool_binary

    # =========================================================================
    # Preconditions
    # =========================================================================

    async def verify_preconditions(self, target: UpdateTarget) -> None:
        """Check a single target can be updated and stage its package."""
        await self.verify_all([target])

    async def verify_all(self, targets: Sequence[UpdateTarget]) -> None:
        """
        Check every target can be updated and stage the packages they need.

        Order matters: URL and inventory checks come first, and the package
        checksum is verified before anything is extracted or executed from it.

        Raises:
            EmptyFirmwareURL: A target has no package URL
            TargetNotFound: A selector does not resolve to an attached device
            ChecksumMismatch: The downloaded package digest differs from the declared one
            ArtifactError: Download, extraction or package layout failure
        """
        for target in targets:
            if not target.firmware_url:
                raise EmptyFirmwareURL()

        groups = await self.inventory.get_inventory()
        for target in targets:
            if find_device(groups, target.selector) is None:
                raise TargetNotFound(target.selector)

        staged: set[tuple[str, Optional[str]]] = set()
        for target in targets:
            key = (target.firmware_url, target.checksum)
            if key in staged:
                continue
            await self._stage(target)
            staged.add(key)

    async def _stage(self, target: UpdateTarget) -> None:
        self.artifacts.ensure_folder(self.workdir)
        await self.artifacts.fetch(target.firmware_url, self.package_path, target.checksum)
        await self.artifacts.extract(self.package_path, self.workdir)
        verify_no_symlinks([self.tool_path, self.tool_config_path])
        logger.info(f"Update package staged in {self.install_path}")

    # =========================================================================
    # Convergence loop
    # =========================================================================

    async def apply(self, target: UpdateTarget) -> UpdateReport:
        """
        Run refresh/update passes for one device until the tool reports no
        further update, the pass budget is spent, or a module fails.

        In dry-run mode both tool invocations are no-ops and the loop stops
        after the first pass, since no result file is produced.
        """
        resolved = await self.inventory.find(target.selector)
        if resolved is None:
            raise TargetNotFound(target.selector)
        group, _ = resolved

        results: list[UpdateStepResult] = []
        passes = 0
        while True:
            passes += 1
            logger.info(f"Refreshing devices before update pass {passes} for {target.selector}")
            await self.runner.run_streaming(
                [self.tool_binary, "-i"], cwd=self.install_path, dry_run=target.dry_run
            )

            if not target.dry_run:
                self.result_path.unlink(missing_ok=True)
            logger.info(f"Updating {target.selector}")
            await self.runner.run_streaming(
                [
                    self.tool_binary,
                    "-u",
                    "-m",
                    target.tool_selector,
                    "-c",
                    str(self.tool_config_path),
                    "-o",
                    str(self.result_path),
                    "-l",
                ],
                cwd=self.install_path,
                dry_run=target.dry_run,
            )

            if target.dry_run:
                logger.info(f"Dry run device update succeeded for {target.selector}")
                stop_reason = ApplyStopReason.DRY_RUN
                break

            outcome = read_update_result(self.result_path, pass_number=passes)
            results.extend(outcome.modules)
            for failure in outcome.failures():
                raise ModuleUpdateFailed(
                    target.selector, failure.module_type, failure.module_version, failure.result
                )
            for module in outcome.modules:
                logger.info(
                    f"Module {module.module_type} updated to {module.module_version} "
                    f"on {target.selector}"
                )

            if not outcome.next_update_available:
                stop_reason = ApplyStopReason.CONVERGED
                break
            if passes >= self.step_count:
                logger.info(
                    f"Update still available for {target.selector} after {passes} passes; "
                    "step limit reached"
                )
                stop_reason = ApplyStopReason.STEP_LIMIT
                break
            logger.info(f"Next update available for {target.selector}, running another pass")

        return UpdateReport(
            selector=target.selector,
            card_address=group.card_address,
            passes=passes,
            stop_reason=stop_reason,
            results=results,
        )

    async def power_cycle(self, card_addresses: Sequence[str], dry_run: bool = False) -> None:
        """Reset each card so new firmware becomes active. Failures are logged only."""
        for address in card_addresses:
            logger.info(f"Power cycling card {address}")
            try:
                await self.runner.run([self.rsu_path, "bmcimg", address], dry_run=dry_run)
            except FlashGateError as e:
                metrics.inc_counter("flash.power_cycle.failed")
                logger.error(f"Failed to power cycle card {address}: {e}")

    # =========================================================================
    # Whole node
    # =========================================================================

    async def flash_node(
        self,
        targets: Sequence[UpdateTarget],
        cancelled: Optional[asyncio.Event] = None,
    ) -> list[UpdateReport]:
        """
        Update every target in order, then power-cycle each card that was touched.

        An in-flight device update is never interrupted. ``cancelled`` is only
        checked between devices; once set, remaining targets are skipped and
        ``LeadershipLost`` is raised after the touched cards are power-cycled.
        """
        reports: list[UpdateReport] = []
        cards: list[str] = []
        dry_run = any(t.dry_run for t in targets)
        try:
            for index, target in enumerate(targets):
                if cancelled is not None and cancelled.is_set():
                    raise LeadershipLost([t.selector for t in targets[index:]])

                metrics.inc_counter("flash.device.attempts")
                with metrics.timed("flash.device.duration_seconds"):
                    report = await self.apply(target)
                metrics.inc_counter(f"flash.device.stop.{report.stop_reason.value}")
                reports.append(report)
                if report.card_address not in cards:
                    cards.append(report.card_address)
        finally:
            if cards:
                await self.power_cycle(cards, dry_run=dry_run)
        return reports
