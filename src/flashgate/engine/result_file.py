"""Vendor update tool result file parsing.

The update tool writes an XML report after each ``-u`` pass::

    <DeviceUpdate lang="en">
      <Instance vendor="8086" device="1593" ...>
        <Module type="NVM" version="8000191B" previous_version="80001518">
          <Status result="Success" id="0">All operations completed successfully.</Status>
        </Module>
      </Instance>
      <NextUpdateAvailable>1</NextUpdateAvailable>
    </DeviceUpdate>
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

from flashgate.engine.errors import UpdateResultParseError
from flashgate.models import UpdateOutcome, UpdateStepResult

logger = logging.getLogger(__name__)

SUCCESS_RESULT = "Success"


@dataclass
class DeviceUpdateResult:
    """Parsed content of one result file."""

    modules: list[UpdateStepResult] = field(default_factory=list)
    next_update_available: bool = False

    def failures(self) -> list[UpdateStepResult]:
        return [m for m in self.modules if m.outcome is UpdateOutcome.FAILURE]


def parse_update_result(text: str, source: str = "<string>", pass_number: int = 1) -> DeviceUpdateResult:
    """Parse result XML into per-module outcomes.

    Modules without a ``Status`` element were not touched by the pass and are skipped.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise UpdateResultParseError(source, str(e)) from e

    next_text = (root.findtext("NextUpdateAvailable") or "0").strip()
    try:
        next_available = int(next_text) == 1
    except ValueError as e:
        raise UpdateResultParseError(source, f"invalid NextUpdateAvailable {next_text!r}") from e

    modules = []
    for module in root.iterfind("Instance/Module"):
        status = module.find("Status")
        if status is None:
            continue
        result = status.get("result", "")
        modules.append(
            UpdateStepResult(
                module_type=module.get("type", ""),
                module_version=module.get("version", ""),
                outcome=UpdateOutcome.SUCCESS if result == SUCCESS_RESULT else UpdateOutcome.FAILURE,
                result=result,
                next_update_available=next_available,
                pass_number=pass_number,
            )
        )

    return DeviceUpdateResult(modules=modules, next_update_available=next_available)


def read_update_result(path: Path, pass_number: int = 1) -> DeviceUpdateResult:
    """Read and parse the result file written by the update tool."""
    try:
        text = path.read_text()
    except OSError as e:
        raise UpdateResultParseError(str(path), e.strerror or str(e)) from e
    return parse_update_result(text, source=str(path), pass_number=pass_number)
