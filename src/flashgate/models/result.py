"""Update results produced by the device update engine."""

from pydantic import BaseModel, Field

from flashgate.models.enums import ApplyStopReason, UpdateOutcome


class UpdateStepResult(BaseModel):
    """Outcome of one module in one update tool invocation."""

    module_type: str
    module_version: str
    outcome: UpdateOutcome
    result: str = Field(..., description="Result string as reported by the tool")
    next_update_available: bool = False
    pass_number: int = 1


class UpdateReport(BaseModel):
    """Accumulated results for one device."""

    selector: str
    card_address: str = ""
    passes: int = 0
    stop_reason: ApplyStopReason
    results: list[UpdateStepResult] = Field(default_factory=list)

    @property
    def step_limit_reached(self) -> bool:
        return self.stop_reason is ApplyStopReason.STEP_LIMIT

    def module_versions(self) -> str:
        return ", ".join(f"{r.module_type} {r.module_version}" for r in self.results)
