"""
Parser for the four-section markdown summary format:

    ## Title
    ## Summary
    ## Action Items
    ## Key Points

Safe to run on partial (still streaming) text; it simply reports what has
arrived so far.
"""
from __future__ import annotations

from typing import Optional

from .base import SummaryUpdate

DEFAULT_TITLE = "Voice Recording"

_SECTIONS = {
    "## Title": "title",
    "## Summary": "summary",
    "## Action Items": "actions",
    "## Key Points": "keypoints",
}


def parse_summary_markdown(text: str, default_title: Optional[str] = DEFAULT_TITLE) -> SummaryUpdate:
    """
    Split summary markdown into fields.

    "- " lines become list entries under Action Items / Key Points. Under
    Title the last non-blank line wins; under Summary lines are joined with
    spaces. Pass default_title=None to leave the title empty when no title
    line has arrived yet.
    """
    title: Optional[str] = None
    summary: list[str] = []
    actions: list[str] = []
    points: list[str] = []
    section = ""

    for line in text.split("\n"):
        heading = next((h for h in _SECTIONS if line.startswith(h)), None)
        if heading:
            section = _SECTIONS[heading]
        elif line.startswith("- "):
            if section == "actions":
                actions.append(line[2:].strip())
            elif section == "keypoints":
                points.append(line[2:].strip())
        elif line.strip() and not line.startswith("#"):
            if section == "title":
                title = line.strip()
            elif section == "summary":
                summary.append(line.strip())

    return SummaryUpdate(
        title=title or default_title or "",
        body=" ".join(summary).strip(),
        action_items=tuple(a for a in actions if a),
        key_points=tuple(p for p in points if p),
    )
