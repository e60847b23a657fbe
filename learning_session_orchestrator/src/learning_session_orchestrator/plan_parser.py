"""
Plan Response Parser

Boundary adapter for curriculum (CLO) responses. Agents are expected to
return structured fields; when they only return prose, this module recovers
sections, the JSON appendix and daily tasks from the text. The session state
machine only ever sees the summaries built here.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

APPENDIX_LABELS = ("CLO_Briefing_Note", "CLO_Assessor_Directive")

_NUMBERED_HEADING = re.compile(r"^\s*(?:#{1,4}\s*)?(?:Section\s+)?(\d+)[.:]\s*(.+?)\s*$", re.IGNORECASE)
_MARKDOWN_HEADING = re.compile(r"^\s*#{1,4}\s+(.+?)\s*$")
_DAY_LINE = re.compile(r"^\s*(?:[-*]\s*)?Day\s+(\d+)\s*[:.\-]\s*(.+?)\s*$", re.IGNORECASE)
_BULLET = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(.+?)\s*$")
_VERSION = re.compile(r"version\s*[:=]\s*[\"']?([^\"'\s,}]+)", re.IGNORECASE)


@dataclass
class PlanSection:
    """One titled section of a plan response."""
    title: str
    content: str
    order: int


@dataclass
class ParsedPlan:
    """Structured view of a free-form plan response."""
    sections: List[PlanSection] = field(default_factory=list)
    appendix: Dict[str, Any] = field(default_factory=dict)
    daily_tasks: List[Dict[str, Any]] = field(default_factory=list)
    version: str = "unknown"

    @property
    def has_appendix(self) -> bool:
        return any(label in self.appendix for label in APPENDIX_LABELS)

    @property
    def is_complete(self) -> bool:
        return len(self.sections) >= 8 and self.has_appendix

    def section(self, title: str) -> Optional[PlanSection]:
        """Find a section whose title contains the given text (case-insensitive)."""
        needle = title.lower()
        for section in self.sections:
            if needle in section.title.lower():
                return section
        return None


def extract_sections(content: str) -> List[PlanSection]:
    """Split text into sections on numbered or markdown headings."""
    sections: List[PlanSection] = []
    current_title: Optional[str] = None
    current_order = 0
    buffer: List[str] = []

    def flush():
        body = "\n".join(buffer).strip()
        if current_title and body and not any(s.title == current_title for s in sections):
            sections.append(PlanSection(title=current_title, content=body, order=current_order))

    for line in content.splitlines():
        numbered = _NUMBERED_HEADING.match(line)
        heading = _MARKDOWN_HEADING.match(line)
        # "1. item" lines inside a section are list items, not headings
        if numbered and (line.lstrip().startswith("#") or line.lstrip().lower().startswith("section")):
            flush()
            current_order = int(numbered.group(1))
            current_title = numbered.group(2).rstrip(":")
            buffer = []
        elif heading:
            flush()
            current_order = len(sections) + 1
            current_title = heading.group(1).rstrip(":")
            buffer = []
        else:
            buffer.append(line)
    flush()

    return sorted(sections, key=lambda s: s.order)


def extract_json_object(content: str, label: str) -> Optional[Dict[str, Any]]:
    """
    Extract the JSON object that follows `label:` or `label =` in the text.

    Returns None if the label is absent or the object is not valid JSON.
    """
    match = re.search(rf"{re.escape(label)}\"?\s*[:=]\s*\{{", content, re.IGNORECASE)
    if not match:
        return None
    start = match.end() - 1
    try:
        value, _ = json.JSONDecoder().raw_decode(content, start)
    except json.JSONDecodeError as e:
        logger.warning(f"⚠️ [PlanParser] Failed to parse {label} JSON: {e}")
        return None
    return value if isinstance(value, dict) else None


def extract_appendix(content: str) -> Dict[str, Any]:
    appendix: Dict[str, Any] = {}
    for label in APPENDIX_LABELS:
        value = extract_json_object(content, label)
        if value is not None:
            appendix[label] = value
    version = _VERSION.search(content)
    if version:
        appendix["version"] = version.group(1)
    return appendix


def detect_version(content: str) -> str:
    if "CLO_Briefing_Note" in content and "CLO_Assessor_Directive" in content:
        return "v3"
    if "CLO_Briefing_Note" in content:
        return "v2"
    return "unknown"


def extract_daily_tasks(content: str) -> List[Dict[str, Any]]:
    """Collect `Day N: task` lines, falling back to bullets of a daily tasks section."""
    tasks = []
    for line in content.splitlines():
        match = _DAY_LINE.match(line)
        if match:
            tasks.append({"day": int(match.group(1)), "task": match.group(2)})
    if tasks:
        return tasks

    for section in extract_sections(content):
        if "daily" in section.title.lower() or "task" in section.title.lower():
            bullets = [m.group(1) for m in (_BULLET.match(line) for line in section.content.splitlines()) if m]
            tasks = [{"day": index, "task": task} for index, task in enumerate(bullets, start=1)]
            break
    return tasks


def parse_plan_response(content: str) -> ParsedPlan:
    """Parse a free-form CLO response."""
    return ParsedPlan(
        sections=extract_sections(content),
        appendix=extract_appendix(content),
        daily_tasks=extract_daily_tasks(content),
        version=detect_version(content),
    )


def flatten_plan(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten a CLO payload for storage.

    Nested CLO_Briefing_Note / CLO_Assessor_Directive fields are lifted to the
    top level and the full response text is kept as full_content.
    """
    flattened = dict(data)
    for label in APPENDIX_LABELS:
        nested = data.get(label)
        if isinstance(nested, dict):
            flattened.update(nested)
    if "full_response_text" in data:
        flattened["full_content"] = data["full_response_text"]
    return flattened


def summarize_plan(data: Dict[str, Any]) -> Dict[str, Any]:
    """Build the plan summary kept in the session snapshot."""
    text = data.get("full_content") or data.get("full_response_text") or data.get("text_response") or ""
    parsed = parse_plan_response(text) if isinstance(text, str) and text else None

    briefing = data
    if parsed and not data.get("learning_objectives"):
        briefing = {**parsed.appendix.get("CLO_Briefing_Note", {}), **data}

    daily_tasks = briefing.get("daily_tasks") or (parsed.daily_tasks if parsed else [])
    return {
        "title": briefing.get("title") or briefing.get("module_title") or briefing.get("topic"),
        "learning_objectives": list(briefing.get("learning_objectives") or []),
        "daily_tasks": list(daily_tasks),
        "sections": [s.title for s in parsed.sections] if parsed else [],
        "version": parsed.version if parsed else None,
    }


def summarize_lesson(data: Dict[str, Any], default_tracks: List[str]) -> Dict[str, Any]:
    """Build the lesson summary kept in the session snapshot."""
    tracks = data.get("required_tracks")
    if isinstance(tracks, str):
        tracks = [tracks]
    if not tracks:
        tracks = list(default_tracks)
    return {
        "title": data.get("title") or data.get("topic"),
        "day": data.get("day"),
        "objectives": list(data.get("objectives") or []),
        "required_tracks": list(tracks),
    }
