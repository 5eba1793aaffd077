"""Prompt assembly for lesson analysis.

Modules:
- types: technique definitions and pause data passed in by the client
- templates: prompt text blocks shared by the transcript and video variants
- builder: renders the full prompt for each variant
"""
from .builder import build_analysis_prompt, build_video_analysis_prompt, format_techniques
from .types import PauseData, PauseInfo, PauseSummary, TechniqueDefinition

__all__ = [
    "build_analysis_prompt",
    "build_video_analysis_prompt",
    "format_techniques",
    "PauseData",
    "PauseInfo",
    "PauseSummary",
    "TechniqueDefinition",
]
