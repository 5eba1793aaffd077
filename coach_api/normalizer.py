from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from coach_api.errors import MalformedResponse

logger = logging.getLogger("teacher_coach.normalizer")

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```")


@dataclass
class TechniqueEvaluation:
    technique_id: str
    was_observed: bool
    rating: Optional[int] = None
    evidence: List[str] = field(default_factory=list)
    feedback: str = ""
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "technique_id": self.technique_id,
            "was_observed": self.was_observed,
            "rating": self.rating,
            "evidence": list(self.evidence),
            "feedback": self.feedback,
            "suggestions": list(self.suggestions),
        }


@dataclass
class AnalysisResult:
    overall_summary: str = ""
    strengths: List[str] = field(default_factory=list)
    growth_areas: List[str] = field(default_factory=list)
    actionable_next_steps: List[str] = field(default_factory=list)
    technique_evaluations: List[TechniqueEvaluation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_summary": self.overall_summary,
            "strengths": list(self.strengths),
            "growth_areas": list(self.growth_areas),
            "actionable_next_steps": list(self.actionable_next_steps),
            "technique_evaluations": [te.to_dict() for te in self.technique_evaluations],
        }


def _as_str_list(val: Any) -> List[str]:
    out: List[str] = []
    if isinstance(val, list):
        for x in val:
            if isinstance(x, str) and x.strip():
                out.append(x.strip())
    elif isinstance(val, str) and val.strip():
        out.append(val.strip())
    return out


def _as_rating(val: Any) -> Optional[int]:
    # bool is an int subclass; a stray true/false is not a rating
    if isinstance(val, bool) or val is None:
        return None
    if isinstance(val, float) and val.is_integer():
        val = int(val)
    if isinstance(val, int) and 1 <= val <= 5:
        return val
    return None


def extract_json_text(raw_text: str) -> str:
    """Return the interior of a ```json fence if present, else the whole text."""
    match = _JSON_FENCE.search(raw_text)
    if match:
        return match.group(1)
    return raw_text


def _decode(raw_text: str) -> Any:
    candidate = extract_json_text(raw_text).strip()
    try:
        return json.loads(candidate)
    except (ValueError, RecursionError):
        pass
    # Prose around an unfenced object: fall back to the outermost braces
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(candidate[start:end + 1])
        except (ValueError, RecursionError):
            pass
    raise MalformedResponse("response is not valid JSON", text_length=len(raw_text))


def _evaluation(obj: Dict[str, Any]) -> TechniqueEvaluation:
    return TechniqueEvaluation(
        technique_id=str(obj.get("techniqueId") or ""),
        was_observed=obj.get("wasObserved") is True,
        rating=_as_rating(obj.get("rating")),
        evidence=_as_str_list(obj.get("evidence")),
        feedback=obj.get("feedback") if isinstance(obj.get("feedback"), str) else "",
        suggestions=_as_str_list(obj.get("suggestions")),
    )


def normalize(raw_text: Optional[str]) -> AnalysisResult:
    """Map model output onto AnalysisResult.

    Missing lists default to empty and a missing summary to "". Output that is
    not a JSON object at all raises MalformedResponse. The raw text is never
    logged, only its length.
    """
    if not raw_text or not raw_text.strip():
        raise MalformedResponse("empty response text", text_length=0)
    try:
        obj = _decode(raw_text)
    except MalformedResponse:
        logger.error(json.dumps({"event": "analysis_parse_error", "reason": "invalid_json", "length": len(raw_text)}))
        raise
    if not isinstance(obj, dict):
        logger.error(json.dumps({"event": "analysis_parse_error", "reason": "not_an_object", "length": len(raw_text)}))
        raise MalformedResponse("response JSON is not an object", text_length=len(raw_text))

    evaluations_raw = obj.get("techniqueEvaluations")
    evaluations = [
        _evaluation(te)
        for te in (evaluations_raw if isinstance(evaluations_raw, list) else [])
        if isinstance(te, dict)
    ]
    summary = obj.get("overallSummary")
    return AnalysisResult(
        overall_summary=summary.strip() if isinstance(summary, str) else "",
        strengths=_as_str_list(obj.get("strengths")),
        growth_areas=_as_str_list(obj.get("growthAreas")),
        actionable_next_steps=_as_str_list(obj.get("actionableNextSteps")),
        technique_evaluations=evaluations,
    )
