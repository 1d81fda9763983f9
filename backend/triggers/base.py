"""Trigger events and results."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from core.constants import TriggerType
from core.utils import utc_now


@dataclass
class TriggerEvent:
    """A single trigger firing.

    This is the payload passed from a trigger channel to the execution
    engine: ``payload`` becomes the workflow input, the rest is exposed
    to steps under ``context["trigger"]``.
    """

    trigger_id: str
    trigger_type: TriggerType
    workflow_id: str
    timestamp: datetime = field(default_factory=utc_now)
    payload: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_context(self) -> dict[str, Any]:
        return {
            "trigger": {
                "id": self.trigger_id,
                "type": self.trigger_type.value,
                "firedAt": self.timestamp.isoformat(),
                **self.metadata,
            }
        }


@dataclass
class TriggerResult:
    """Result of a trigger operation (fire/validate)."""

    success: bool
    message: str
    trigger_id: str
    execution_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def execution_id(self) -> Optional[str]:
        """First execution started by the firing, if any."""
        return self.execution_ids[0] if self.execution_ids else None
