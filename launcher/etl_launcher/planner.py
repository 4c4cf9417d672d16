from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List

@dataclass
class PlanAction:
    action: str          # skip|copy_map|download_map|...
    target: str
    detail: str
    paths: Dict[str, str]
    will_change: bool
    severity: str = "info"  # info|warn|error

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

@dataclass
class Plan:
    ok: bool
    actions: List[PlanAction] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def changes(self) -> List[PlanAction]:
        return [a for a in self.actions if a.will_change]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "changes": len(self.changes()),
            "actions": [a.to_dict() for a in self.actions],
            "notes": list(self.notes),
        }
