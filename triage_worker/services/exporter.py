from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence


class ExportProfile(str, Enum):
    MEETING_NOTES = "meeting-notes"
    PERSONAL_REMINDER = "personal-reminder"
    ACTION_ITEMS = "action-items"
    SUMMARY = "summary"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: object) -> "ExportProfile":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.DEFAULT


@dataclass(frozen=True)
class ProfileLayout:
    title: str
    item: Callable[[int, str], str]
    joiner: str
    footer: str


SEPARATOR = "=" * 50

LAYOUTS: Dict[ExportProfile, ProfileLayout] = {
    ExportProfile.MEETING_NOTES: ProfileLayout(
        "MEETING NOTES", lambda i, s: f"{i + 1}. {s}", "\n\n", "--- End of Notes ---"
    ),
    ExportProfile.PERSONAL_REMINDER: ProfileLayout(
        "PERSONAL REMINDERS", lambda i, s: f"• {s}", "\n", "--- Remember to review ---"
    ),
    ExportProfile.ACTION_ITEMS: ProfileLayout(
        "ACTION ITEMS", lambda i, s: f"[ ] {s}", "\n", "--- Check off when completed ---"
    ),
    ExportProfile.SUMMARY: ProfileLayout(
        "SUMMARY", lambda i, s: s, "\n\n", "--- End of Summary ---"
    ),
    ExportProfile.DEFAULT: ProfileLayout(
        "NOTES", lambda i, s: s, "\n\n", "--- End of Document ---"
    ),
}


@dataclass(frozen=True)
class ExportDocument:
    profile: ExportProfile
    generated_at: datetime
    text: str

    @property
    def stem(self) -> str:
        """``<profile>_<YYYY-MM-DD>_<HH-MM-SS>``; storage adds sub-second precision."""
        return f"{self.profile.value}_{self.generated_at:%Y-%m-%d}_{self.generated_at:%H-%M-%S}"


def header_line(profile: ExportProfile, generated_at: datetime) -> str:
    return f"{profile.value.upper().replace('-', ' ')} - {generated_at:%Y-%m-%d}"


def render_body(content: Sequence[str], profile: ExportProfile) -> str:
    layout = LAYOUTS[profile]
    return layout.joiner.join(layout.item(i, item) for i, item in enumerate(content))


def format_document(
    content: Sequence[str],
    profile: object = ExportProfile.DEFAULT,
    generated_at: Optional[datetime] = None,
) -> ExportDocument:
    resolved = ExportProfile.parse(profile)
    when = generated_at or datetime.now(timezone.utc)
    layout = LAYOUTS[resolved]
    lines: List[str] = [
        header_line(resolved, when),
        SEPARATOR,
        "",
        layout.title,
        "",
        render_body(content, resolved),
        "",
        layout.footer,
    ]
    return ExportDocument(profile=resolved, generated_at=when, text="\n".join(lines))
