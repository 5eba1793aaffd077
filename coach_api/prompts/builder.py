from __future__ import annotations

from typing import List, Optional, Sequence

from coach_api.config import MAX_TRANSCRIPT_LENGTH

from . import templates
from .types import PauseData, TechniqueDefinition

WAIT_TIME_TECHNIQUE_ID = "wait-time"


def format_technique(technique: TechniqueDefinition) -> str:
    return templates.TECHNIQUE_BLOCK.substitute(
        name=technique.name,
        id=technique.id,
        description=technique.description,
        look_fors="\n".join(f"- {lf}" for lf in technique.look_fors),
        exemplar_phrases="\n".join(f'- "{p}"' for p in technique.exemplar_phrases),
    )


def format_techniques(techniques: Sequence[TechniqueDefinition]) -> str:
    return "\n".join(format_technique(t) for t in techniques)


def format_pause_data(pause_data: PauseData) -> str:
    details = "\n".join(
        f'{i}. {p.duration:.1f}s pause after "{p.preceding_text}" → before "{p.following_text}"'
        for i, p in enumerate(pause_data.pauses, start=1)
    )
    s = pause_data.summary
    return templates.PAUSE_DATA_SECTION.substitute(
        count=str(s.count),
        average=f"{s.average_duration:.1f}",
        longest=f"{s.max_duration:.1f}",
        total=f"{s.total_pause_time:.1f}",
        details=details,
    )


def _schema_and_guidelines(include_ratings: bool, guidelines) -> List[str]:
    parts = [templates.RESPONSE_SCHEMA_WITH_RATINGS if include_ratings else templates.RESPONSE_SCHEMA_WITHOUT_RATINGS]
    if include_ratings:
        parts.append(templates.RATING_SCALE)
    rating_guideline = templates.RATING_GUIDELINE_WITH if include_ratings else templates.RATING_GUIDELINE_WITHOUT
    parts.append(guidelines.substitute(rating_guideline=rating_guideline))
    return parts


def build_analysis_prompt(
    transcript: str,
    techniques: Sequence[TechniqueDefinition],
    include_ratings: bool = True,
    pause_data: Optional[PauseData] = None,
) -> str:
    """Transcript prompt; pause data is only included when wait time is being evaluated."""
    if len(transcript) > MAX_TRANSCRIPT_LENGTH:
        raise ValueError(f"transcript exceeds {MAX_TRANSCRIPT_LENGTH} characters")
    parts = [
        templates.TEXT_ANALYSIS_SYSTEM,
        templates.TEXT_ANALYSIS_TRANSCRIPT_SECTION.substitute(transcript=transcript),
    ]
    if pause_data is not None and any(t.id == WAIT_TIME_TECHNIQUE_ID for t in techniques):
        parts.append(format_pause_data(pause_data))
    parts.append(templates.TECHNIQUES_SECTION_HEADER)
    parts.append(format_techniques(techniques))
    parts.extend(_schema_and_guidelines(include_ratings, templates.GUIDELINES_BASE))
    return "".join(parts)


def build_video_analysis_prompt(techniques: Sequence[TechniqueDefinition], include_ratings: bool = True) -> str:
    parts = [
        templates.VIDEO_ANALYSIS_SYSTEM,
        templates.VIDEO_TECHNIQUES_SECTION_HEADER,
        format_techniques(techniques),
    ]
    parts.extend(_schema_and_guidelines(include_ratings, templates.GUIDELINES_VIDEO_BASE))
    return "".join(parts)
