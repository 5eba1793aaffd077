"""Prompt text blocks.

The schema, rating scale and rating guideline blocks are shared verbatim by the
transcript and video prompts; only the preamble, the technique section header
and the guideline bullets differ per variant.
"""
from string import Template

# -----------------------------
# Shared components
# -----------------------------

RATING_SCALE = """
## Rating Scale
1 - Developing: Technique not observed or needs significant development
2 - Emerging: Beginning to implement technique with inconsistent results
3 - Proficient: Solid implementation of technique with room for refinement
4 - Accomplished: Effective and consistent use of technique
5 - Exemplary: Masterful implementation that could serve as a model
"""

_RESPONSE_SCHEMA = Template("""
## Response Format
Provide your analysis as a JSON object with the following structure:
{
    "overallSummary": "2-3 sentence summary of the teaching session's effectiveness",
    "strengths": ["strength 1", "strength 2", "strength 3"],
    "growthAreas": ["growth area 1", "growth area 2"],
    "actionableNextSteps": ["specific action 1", "specific action 2", "specific action 3"],
    "techniqueEvaluations": [
        {
            "techniqueId": "exact-id-from-technique-definition",
            "wasObserved": true/false,
${rating_line}            "evidence": ["specific quote or behavior from transcript"],
            "feedback": "Detailed feedback about technique usage",
            "suggestions": ["specific improvement suggestion"]
        }
    ]
}
""")

RESPONSE_SCHEMA_WITH_RATINGS = _RESPONSE_SCHEMA.substitute(
    rating_line='            "rating": 1-5 (null if not observed),\n'
)
RESPONSE_SCHEMA_WITHOUT_RATINGS = _RESPONSE_SCHEMA.substitute(rating_line="")

RATING_GUIDELINE_WITH = "- If a technique was not observed, set wasObserved to false and rating to null"
RATING_GUIDELINE_WITHOUT = "- If a technique was not observed, set wasObserved to false"

GUIDELINES_BASE = Template("""
## Guidelines
- IMPORTANT: Use the exact "ID" value shown for each technique as the "techniqueId" in your response
- Be specific and cite evidence from the transcript
- Provide actionable, growth-oriented feedback
- Balance recognition of strengths with constructive suggestions
${rating_guideline}
- Focus on patterns rather than isolated instances

Respond ONLY with the JSON object, no additional text.""")

GUIDELINES_VIDEO_BASE = Template("""
## Guidelines
- IMPORTANT: Use the exact "ID" value shown for each technique as the "techniqueId" in your response
- Be specific and cite observable evidence from the video (actions, quotes, interactions)
- Include timestamps when referencing specific moments if possible
- Consider both verbal and non-verbal teacher behaviors
- Provide actionable, growth-oriented feedback
- Balance recognition of strengths with constructive suggestions
${rating_guideline}
- Focus on patterns rather than isolated instances

Respond ONLY with the JSON object, no additional text.""")

TECHNIQUE_BLOCK = Template("""
### ${name}
**ID:** ${id}
**Description:** ${description}

**Look-fors (observable indicators):**
${look_fors}

**Exemplar phrases:**
${exemplar_phrases}
""")

# -----------------------------
# Transcript variant
# -----------------------------

TEXT_ANALYSIS_SYSTEM = (
    "You are an expert instructional coach analyzing a teaching session transcript. "
    "Your task is to evaluate the teacher's use of specific teaching techniques and provide constructive feedback."
)

TEXT_ANALYSIS_TRANSCRIPT_SECTION = Template("""
## Teaching Session Transcript
```
${transcript}
```
""")

PAUSE_DATA_SECTION = Template("""
## Wait Time Data (Detected Pauses >= 3 seconds)
This data shows pauses detected in the recording that may indicate wait time after questions.

**Summary:**
- Total pauses: ${count}
- Average duration: ${average}s
- Longest pause: ${longest}s
- Total pause time: ${total}s

**Pause Details:**
${details}

Use this quantitative data to provide specific feedback on wait time usage. Consider whether pauses occur after questions and if the duration is adequate (research suggests 3+ seconds is optimal).
""")

TECHNIQUES_SECTION_HEADER = """
## Techniques to Evaluate
Analyze the transcript for evidence of the following teaching techniques:
"""

# -----------------------------
# Video variant
# -----------------------------

VIDEO_ANALYSIS_SYSTEM = """You are an expert instructional coach analyzing a teaching session video. Your task is to evaluate the teacher's use of specific teaching techniques and provide constructive feedback.

Watch the entire video carefully, paying attention to:
- Teacher verbal communication and questioning techniques
- Teacher non-verbal communication (body language, positioning, gestures)
- Student engagement and responses
- Classroom management and pacing
- Use of instructional materials and technology"""

VIDEO_TECHNIQUES_SECTION_HEADER = """
## Techniques to Evaluate
Analyze the video for evidence of the following teaching techniques:
"""
