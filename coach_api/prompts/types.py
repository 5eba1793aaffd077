from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from coach_api.config import MAX_PAUSES


def _str_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{field_name} must be a list of strings")
    return list(value)


@dataclass(frozen=True)
class TechniqueDefinition:
    id: str
    name: str
    description: str
    look_fors: List[str] = field(default_factory=list)
    exemplar_phrases: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, obj: Any) -> "TechniqueDefinition":
        if not isinstance(obj, dict):
            raise ValueError("technique must be an object")
        for key in ("id", "name", "description"):
            if not isinstance(obj.get(key), str) or not obj.get(key).strip():
                raise ValueError(f"technique {key} is required")
        return cls(
            id=obj["id"],
            name=obj["name"],
            description=obj["description"],
            look_fors=_str_list(obj.get("lookFors"), "lookFors"),
            exemplar_phrases=_str_list(obj.get("exemplarPhrases"), "exemplarPhrases"),
        )


@dataclass(frozen=True)
class PauseInfo:
    start_time: float
    end_time: float
    duration: float
    preceding_text: str
    following_text: str


@dataclass(frozen=True)
class PauseSummary:
    count: int
    average_duration: float
    max_duration: float
    total_pause_time: float


@dataclass(frozen=True)
class PauseData:
    pauses: List[PauseInfo]
    summary: PauseSummary

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "PauseData":
        if not isinstance(obj, dict):
            raise ValueError("pauseData must be an object")
        summary = obj.get("summary") or {}
        if len(obj.get("pauses") or []) > MAX_PAUSES:
            raise ValueError(f"at most {MAX_PAUSES} pauses are allowed")
        pauses = [
            PauseInfo(
                start_time=float(p.get("startTime", 0.0)),
                end_time=float(p.get("endTime", 0.0)),
                duration=float(p.get("duration", 0.0)),
                preceding_text=str(p.get("precedingText", "")),
                following_text=str(p.get("followingText", "")),
            )
            for p in (obj.get("pauses") or [])
        ]
        return cls(
            pauses=pauses,
            summary=PauseSummary(
                count=int(summary.get("count", len(pauses))),
                average_duration=float(summary.get("averageDuration", 0.0)),
                max_duration=float(summary.get("maxDuration", 0.0)),
                total_pause_time=float(summary.get("totalPauseTime", 0.0)),
            ),
        )
