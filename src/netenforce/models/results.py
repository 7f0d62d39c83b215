"""Structured results of enforcement steps."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StepResult(BaseModel):
    """Outcome of a single external step, e.g. one ipset or iptables call."""

    step: str
    ok: bool = True
    message: str = ""


class OperationReport(BaseModel):
    """Collects the step results of one enforcement operation.

    Steps never abort the operation, the report is how callers find out
    which of them failed.
    """

    operation: str
    steps: list[StepResult] = Field(default_factory=list)
    skipped: str | None = None

    @property
    def ok(self) -> bool:
        """Return True if every recorded step succeeded."""
        return all(step.ok for step in self.steps)

    @property
    def failed(self) -> list[StepResult]:
        return [step for step in self.steps if not step.ok]

    def add(self, *results: StepResult | OperationReport) -> None:
        """Record step results, flattening nested reports."""
        for result in results:
            if isinstance(result, OperationReport):
                self.steps.extend(result.steps)
            else:
                self.steps.append(result)
