"""Work units and dispatch results."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class WorkUnit:
    """One independent piece of generative work."""

    id: str
    prompt: str
    enhanced_prompt: str | None = None
    suggested_size: str | None = None
    suggested_style: str | None = None
    position: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_prompt(self) -> str:
        """The prompt actually sent to providers."""
        return self.enhanced_prompt or self.prompt

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkUnit":
        """Build a unit from a JSON object (snake_case or camelCase keys)."""
        prompt = data.get("prompt") or data.get("original_prompt") or data.get("originalPrompt")
        if not data.get("id") or not prompt:
            raise ValueError("Work unit requires 'id' and 'prompt'")
        return cls(
            id=str(data["id"]),
            prompt=prompt,
            enhanced_prompt=data.get("enhanced_prompt") or data.get("enhancedPrompt"),
            suggested_size=data.get("suggested_size") or data.get("suggestedSize"),
            suggested_style=data.get("suggested_style") or data.get("suggestedStyle"),
            position=data.get("position"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class DispatchResult:
    """Outcome of processing one work unit."""

    unit_id: str
    success: bool
    provider: str | None = None
    model: str | None = None
    artifact_refs: list[str] = field(default_factory=list)
    content: str | None = None
    error: str | None = None
    elapsed_ms: float = 0.0
    cost: float = 0.0
    attempted: list[str] = field(default_factory=list)
    alt_text: str | None = None
    # Kept so a retry pass can re-run the same unit
    unit: WorkUnit | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary (without the unit)."""
        return {
            "unit_id": self.unit_id,
            "success": self.success,
            "provider": self.provider,
            "model": self.model,
            "artifact_refs": list(self.artifact_refs),
            "content": self.content,
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "cost": round(self.cost, 6),
            "attempted": list(self.attempted),
            "alt_text": self.alt_text,
        }
