"""Device inventory models."""

from typing import Optional

from pydantic import BaseModel, Field


def normalize_mac(mac: str) -> str:
    """Canonical MAC form used for comparisons (lowercase, colon separated)."""
    return mac.strip().lower().replace("-", ":")


class DeviceRecord(BaseModel):
    """A network interface discovered on an accelerator card."""

    mac: str
    card_address: str = Field(..., description="PCI address of the owning card (grouping key)")
    interface: str = ""
    firmware_version: str = ""
    name: str = ""

    def matches(self, selector: str) -> bool:
        return normalize_mac(self.mac) == normalize_mac(selector)


class DeviceGroup(BaseModel):
    """All interfaces behind one accelerator card."""

    card_address: str
    devices: list[DeviceRecord] = Field(default_factory=list)


def find_device(
    groups: list[DeviceGroup], selector: str
) -> Optional[tuple[DeviceGroup, DeviceRecord]]:
    """Resolve a selector (MAC) against an inventory snapshot."""
    for group in groups:
        for device in group.devices:
            if device.matches(selector):
                return group, device
    return None
