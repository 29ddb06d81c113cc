"""Merge operator decisions on uncertain fragments into the approved set.

Undecided uncertain fragments are left out of the approved set, i.e. they
count as noise unless someone marks them important.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Union

from ..errors import EmptyApprovalError
from ..models.categorize import CategorizationResult, Label
from ..models.export import FeedbackRecord

log = logging.getLogger("app.session")

DecisionKey = Union[str, int]


@dataclass(frozen=True)
class Reconciliation:
    approved: List[str]
    feedback: FeedbackRecord


def utc_iso(when: datetime) -> str:
    return when.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return utc_iso(datetime.now(timezone.utc))


def _as_label(value: object) -> Optional[Label]:
    if isinstance(value, Label):
        return value
    try:
        return Label(str(value).strip().lower())
    except ValueError:
        return None


def _as_index(key: DecisionKey, size: int) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        idx = key
    elif isinstance(key, str) and key.strip().isdigit():
        idx = int(key.strip())
    else:
        return None
    return idx if 0 <= idx < size else None


def resolve_decisions(uncertain: Sequence[str], decisions: Mapping[DecisionKey, object]) -> Dict[int, Label]:
    """Map each decided position of ``uncertain`` to its label.

    A key matches by exact fragment text first (every occurrence); a key that
    matches no text may address a position by integer index. Index decisions
    win over text decisions for the same position. Anything else is ignored.
    """
    by_text: Dict[str, List[int]] = {}
    for i, fragment in enumerate(uncertain):
        by_text.setdefault(fragment, []).append(i)

    text_hits: Dict[int, Label] = {}
    index_hits: Dict[int, Label] = {}
    for key, raw_label in decisions.items():
        label = _as_label(raw_label)
        if label is None:
            log.debug(f"ignoring decision with label {raw_label!r}")
            continue
        if isinstance(key, str) and key in by_text:
            for i in by_text[key]:
                text_hits[i] = label
            continue
        idx = _as_index(key, len(uncertain))
        if idx is not None:
            index_hits[idx] = label
    return {**text_hits, **index_hits}


def reconcile(
    result: CategorizationResult,
    decisions: Mapping[DecisionKey, object],
    *,
    timestamp: Optional[str] = None,
) -> Reconciliation:
    resolved = resolve_decisions(result.uncertain, decisions)
    approved = list(result.important)
    approved.extend(
        fragment for i, fragment in enumerate(result.uncertain) if resolved.get(i) is Label.IMPORTANT
    )

    choices: Dict[str, Label] = {}
    for key, raw_label in decisions.items():
        label = _as_label(raw_label)
        if label is not None:
            choices[str(key)] = label
    feedback = FeedbackRecord(timestamp=timestamp or utc_now_iso(), original=result, userChoices=choices)
    return Reconciliation(approved=approved, feedback=feedback)


def require_approved(content: Sequence[str]) -> List[str]:
    """Export boundary check: at least one non-blank fragment."""
    items = [c for c in content if isinstance(c, str) and c.strip()]
    if not items:
        raise EmptyApprovalError("approved content is empty")
    return items
