"""Update target model - one device to bring to the desired firmware."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class UpdateTarget(BaseModel):
    """Desired firmware for a single device."""

    selector: str = Field(..., description="Device MAC address")
    firmware_url: str = Field(default="", description="Vendor update package URL")
    checksum: Optional[str] = Field(
        default=None,
        pattern=r"^[a-fA-F0-9]{32}$",
        description="MD5 of the package; verification is skipped when absent",
    )
    dry_run: bool = False

    @field_validator("checksum", mode="before")
    @classmethod
    def empty_checksum_is_absent(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @property
    def tool_selector(self) -> str:
        """Selector in the form the vendor tool expects: no separators, uppercase."""
        return self.selector.replace(":", "").upper()
