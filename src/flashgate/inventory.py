"""Device inventory discovery.

Cards are enumerated with ``fpgainfo bmc``; the network interfaces behind each
card are found in sysfs and described with ``ethtool -i`` and ``lspci -Dm``.
The provider has no side effects and caches nothing, so every call reflects the
topology at that moment.
"""

import logging
import re
import shlex
from pathlib import Path
from typing import Optional

from flashgate.engine.errors import FlashGateError
from flashgate.models import DeviceGroup, DeviceRecord, find_device
from flashgate.runner import CommandRunner

logger = logging.getLogger(__name__)

BMC_SECTION_BANNER = "//****** BMC SENSORS ******//"
BMC_PCI_KEY = "PCIe s:b:d.f"

bmc_regex = re.compile(r"^(.*?)\s*:\s(.*)$")
ethtool_regex = re.compile(r"^([a-z-]+?)(?:\s*:\s)(.+)$")


def parse_bmc_output(output: str) -> list[str]:
    """Extract the PCI address of every card from ``fpgainfo bmc`` output."""
    addresses = []
    for section in output.split(BMC_SECTION_BANNER):
        for line in section.splitlines():
            match = bmc_regex.match(line.strip())
            if match and match.group(1).strip() == BMC_PCI_KEY:
                addresses.append(match.group(2).strip())
                break
    return addresses


def parse_ethtool_output(output: str) -> dict[str, str]:
    """Parse ``ethtool -i`` key/value lines."""
    fields = {}
    for line in output.splitlines():
        match = ethtool_regex.match(line.strip())
        if match:
            fields[match.group(1)] = match.group(2).strip()
    return fields


def parse_lspci_device_name(output: str) -> Optional[str]:
    """Return the device name column of the first ``lspci -Dm`` record."""
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            fields = shlex.split(line)
        except ValueError as e:
            raise FlashGateError(f"Failed to parse lspci output {line!r}: {e}") from e
        # slot, class, vendor, device, ...
        if len(fields) >= 4:
            return fields[3]
        return None
    return None


class InventoryProvider:
    """Enumerates accelerator cards and their network interfaces."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        fpgainfo_path: str = "fpgainfo",
        ethtool_path: str = "ethtool",
        lspci_path: str = "lspci",
        sysfs_pci_root: Path = Path("/sys/bus/pci/devices"),
    ):
        self.runner = runner
        self.fpgainfo_path = fpgainfo_path
        self.ethtool_path = ethtool_path
        self.lspci_path = lspci_path
        self.sysfs_pci_root = sysfs_pci_root

    async def list_cards(self) -> list[str]:
        result = await self.runner.run([self.fpgainfo_path, "bmc"])
        return parse_bmc_output(result.output)

    def _netdev_paths(self, card_address: str) -> list[Path]:
        card = self.sysfs_pci_root / card_address
        return sorted(card.glob("fpga_region/region*/dfl-fme.0/dfl*/net/*"))

    async def list_nics(self, card_address: str) -> list[DeviceRecord]:
        records = []
        for netdev in self._netdev_paths(card_address):
            try:
                mac = (netdev / "address").read_text().strip()
            except OSError as e:
                logger.error(f"Unable to read MAC address of {netdev.name}: {e}")
                continue

            record = DeviceRecord(mac=mac, card_address=card_address, interface=netdev.name)
            try:
                result = await self.runner.run([self.ethtool_path, "-i", netdev.name])
                record.firmware_version = parse_ethtool_output(result.output).get(
                    "firmware-version", ""
                )
            except FlashGateError as e:
                logger.error(f"Unable to get ethtool info for interface {netdev.name}: {e}")

            try:
                result = await self.runner.run([self.lspci_path, "-Dm", "-s", card_address])
                record.name = parse_lspci_device_name(result.output) or ""
            except FlashGateError as e:
                logger.error(f"Unable to get lspci info for interface {netdev.name}: {e}")

            records.append(record)
        return records

    async def get_inventory(self) -> list[DeviceGroup]:
        """Current snapshot of all cards and their interfaces."""
        groups = []
        for card_address in await self.list_cards():
            groups.append(
                DeviceGroup(card_address=card_address, devices=await self.list_nics(card_address))
            )
        return groups

    async def find(self, selector: str) -> Optional[tuple[DeviceGroup, DeviceRecord]]:
        return find_device(await self.get_inventory(), selector)
