"""Mapping raw Jira issue JSON into Ticket instances (and results into frames)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pandas as pd

from .models import AnalysisResult, Ticket
from .status import normalize_priority_name

# ADF block nodes that end a line of text when flattened
_ADF_BLOCK_NODES = frozenset(
    {"paragraph", "heading", "listItem", "codeBlock", "blockquote", "rule", "tableRow", "panel"}
)


def parse_dt(val) -> datetime | None:
    if not val:
        return None
    ts = pd.to_datetime(val, utc=True, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format tree to plain text.

    REST v3 returns descriptions and comment bodies as ADF documents; older
    endpoints (and search results on some instances) return plain strings,
    which pass through untouched.
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    parts: list[str] = []

    def walk(n: Any):
        if isinstance(n, list):
            for item in n:
                walk(item)
            return
        if not isinstance(n, dict):
            return
        kind = n.get("type")
        if kind == "text":
            parts.append(n.get("text", ""))
        elif kind == "hardBreak":
            parts.append("\n")
        elif kind in ("mention", "emoji"):
            parts.append((n.get("attrs") or {}).get("text", ""))
        walk(n.get("content") or [])
        if kind in _ADF_BLOCK_NODES:
            parts.append("\n")

    walk(node)
    lines = [line.strip() for line in "".join(parts).splitlines()]
    return "\n".join(line for line in lines if line)


def _display_name(value: Any) -> str | None:
    if not value:
        return None
    if isinstance(value, dict):
        return value.get("displayName") or value.get("emailAddress") or value.get("name")
    return str(value)


def map_ticket(raw: dict[str, Any]) -> Ticket:
    fields = raw.get("fields") or {}
    comments_raw = (fields.get("comment") or {}).get("comments", []) or []
    comments = tuple(
        text for text in (adf_to_text(c.get("body")) for c in comments_raw if isinstance(c, dict)) if text
    )
    attachments = tuple(
        a.get("filename") for a in fields.get("attachment") or [] if isinstance(a, dict) and a.get("filename")
    )
    return Ticket(
        key=raw.get("key"),
        ticket_id=str(raw["id"]) if raw.get("id") is not None else None,
        summary=fields.get("summary"),
        description=adf_to_text(fields.get("description")) or None,
        status=(fields.get("status") or {}).get("name") if fields.get("status") else None,
        priority=normalize_priority_name((fields.get("priority") or {}).get("name"))
        if fields.get("priority")
        else None,
        assignee=_display_name(fields.get("assignee")),
        reporter=_display_name(fields.get("reporter")),
        labels=tuple(fields.get("labels", []) or []),
        comments=comments,
        attachments=attachments,
        created=parse_dt(fields.get("created")),
        updated=parse_dt(fields.get("updated")),
        raw=raw,
    )


def related_frame(result: AnalysisResult) -> pd.DataFrame:
    """Project a result's related tickets into a display table (ranked order kept)."""
    rows = [
        {
            "rank": idx,
            "key": r.ticket.key,
            "score": round(r.relevance_score, 3),
            "relationship": r.relationship_type,
            "status": r.ticket.status or "Unknown",
            "priority": r.ticket.priority or "None",
            "summary": r.ticket.summary,
        }
        for idx, r in enumerate(result.report.related_tickets, start=1)
    ]
    columns = ["rank", "key", "score", "relationship", "status", "priority", "summary"]
    return pd.DataFrame(rows, columns=columns)
