import json
import re
from typing import Any, Dict, List, Optional

from .base import ArtifactMetadata, FilesClient, GenerationClient, RawCompletion

_TECHNIQUE_ID_LINE = re.compile(r"^\*\*ID:\*\* (.+)$", re.MULTILINE)


class MockGenerationClient(GenerationClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-video-1")

    async def generate(self, parts: List[Dict[str, Any]], request_id: Optional[str] = None) -> RawCompletion:
        # Deterministic placeholder that echoes each technique ID found in the prompt
        prompt = "\n".join(p.get("text") or "" for p in parts if isinstance(p, dict))
        with_ratings = '"rating": 1-5' in prompt
        evaluations = []
        for tid in _TECHNIQUE_ID_LINE.findall(prompt):
            ev: Dict[str, Any] = {
                "techniqueId": tid.strip(),
                "wasObserved": True,
                "evidence": ["placeholder"],
                "feedback": "placeholder",
                "suggestions": ["placeholder"],
            }
            if with_ratings:
                ev["rating"] = 3
            evaluations.append(ev)
        body = {
            "overallSummary": "placeholder",
            "strengths": ["placeholder"],
            "growthAreas": ["placeholder"],
            "actionableNextSteps": ["placeholder"],
            "techniqueEvaluations": evaluations,
        }
        text = "```json\n" + json.dumps(body, indent=2) + "\n```"
        return RawCompletion(texts=[text], input_tokens=len(prompt) // 4, output_tokens=len(text) // 4, model=self.model)


class MockFilesClient(FilesClient):
    """Every artifact is immediately ACTIVE; deletions are remembered."""

    provider_name: str = "mock"

    def __init__(self):
        self.deleted: List[str] = []

    async def get_file(self, name: str, request_id: Optional[str] = None) -> ArtifactMetadata:
        return ArtifactMetadata(name=name, state="ACTIVE", uri=f"mock://{name}", mime_type="video/mp4")

    async def delete_file(self, name: str, request_id: Optional[str] = None) -> bool:
        if name in self.deleted:
            return False
        self.deleted.append(name)
        return True
