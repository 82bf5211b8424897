"""FlashGate node daemon - reconciles this node's FlashNode record."""

import argparse
import asyncio
import logging
import signal
from typing import Optional

from flashgate.artifacts import ArtifactStore
from flashgate.config import Settings, settings
from flashgate.coordination.coordinator import MaintenanceCoordinator
from flashgate.coordination.drain import KubeNodeDrainer
from flashgate.coordination.lease import SqlLeaseLock
from flashgate.db.base import close_db, get_session_factory, init_db
from flashgate.engine.updater import DeviceUpdateEngine
from flashgate.instance import detect_node_name, validate_node_name
from flashgate.integrations.kube import KubeClient
from flashgate.inventory import InventoryProvider
from flashgate.reconcile.node import FlashNodeReconciler
from flashgate.runner import ProcessRunner
from flashgate.tasks.reconcile_loop import ReconcileLoop

logger = logging.getLogger("flashgate.daemon")


class NodeDaemon:
    """Wires the update engine, maintenance coordinator and store for one node."""

    def __init__(self, config: Settings):
        self.config = config
        runner = ProcessRunner()
        self.kube = KubeClient.from_settings(config)
        self.artifacts = ArtifactStore(
            runner,
            timeout_seconds=config.artifact_timeout_seconds,
            connect_retries=config.artifact_connect_retries,
            tar_path=config.tar_path,
        )
        inventory = InventoryProvider(
            runner,
            fpgainfo_path=config.fpgainfo_path,
            ethtool_path=config.ethtool_path,
            lspci_path=config.lspci_path,
            sysfs_pci_root=config.sysfs_pci_root,
        )
        engine = DeviceUpdateEngine.from_settings(runner, inventory, self.artifacts, config)

        session_factory = get_session_factory()
        drainer = KubeNodeDrainer(
            self.kube,
            config.node_name,
            timeout_seconds=config.drain_timeout_seconds,
            poll_interval_seconds=config.drain_poll_interval_seconds,
        )
        coordinator = MaintenanceCoordinator.from_settings(
            SqlLeaseLock(session_factory), drainer, config
        )
        self.reconciler = FlashNodeReconciler(
            session_factory,
            engine,
            coordinator,
            node_name=config.node_name,
            namespace=config.namespace,
        )
        self.loop = ReconcileLoop(self.reconciler, config.reconcile_interval_seconds)

    async def close(self) -> None:
        await self.artifacts.close()
        await self.kube.close()


async def run_daemon(config: Settings, once: bool = False) -> None:
    await init_db()
    daemon = NodeDaemon(config)
    try:
        if once:
            await daemon.loop.run_once()
            return

        stop = asyncio.Event()
        event_loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            event_loop.add_signal_handler(sig, stop.set)

        daemon.loop.start()
        await stop.wait()
        logger.info("Shutdown requested, waiting for the current reconcile to finish")
        await daemon.loop.stop()
    finally:
        await daemon.close()
        await close_db()
        logger.info("Shutdown complete")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="FlashGate node daemon")
    parser.add_argument(
        "--node-name",
        default=None,
        help="Node this daemon manages (default: NODE_NAME or host name)",
    )
    parser.add_argument(
        "--namespace",
        default=None,
        help=f"Namespace of the FlashNode record (default: {settings.namespace})",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Reconcile a single time and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Log level (default: {settings.log_level})",
    )
    args = parser.parse_args(argv)

    if args.node_name:
        settings.node_name = args.node_name
    elif not settings.node_name:
        settings.node_name = detect_node_name()
    if args.namespace:
        settings.namespace = args.namespace
    if args.log_level:
        settings.log_level = args.log_level

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    validate_node_name(settings.node_name)
    logger.info(f"Starting FlashGate daemon for node {settings.node_name} in {settings.namespace}")

    asyncio.run(run_daemon(settings, once=args.once))


if __name__ == "__main__":
    main()
