"""
Versioned LLM prompts for recording summaries.
Keep versions so existing recordings can be re-summarized with the same prompt.
"""

# ── System instruction ────────────────────────────────────────────────────────

SUMMARY_SYSTEM_V1 = (
    "You are an assistant that creates structured summaries of recorded "
    "conversations. Follow the requested markdown format exactly. "
    "Do NOT invent facts, tasks or names that are not in the transcript."
)


# ── Four-section markdown summary ─────────────────────────────────────────────

SUMMARY_PROMPT_V1 = """Create a structured summary of this transcript in markdown format with exactly these sections:

## Title
[A concise title for the recording, max 8 words, on one line]

## Summary
[A brief 2-3 sentence summary of the main points]

## Action Items
[Each task or action item mentioned, on its own line starting with '- '.
If there are none, write "- None mentioned"]

## Key Points
[Each main point discussed, on its own line starting with '- ']

Rules:
- Output only the four sections above, no preamble
- Ground every line in the transcript

Transcript:
{transcript}
"""


# Current versions (use these in production code)
CURRENT_SUMMARY_SYSTEM = SUMMARY_SYSTEM_V1
CURRENT_SUMMARY_PROMPT = SUMMARY_PROMPT_V1
