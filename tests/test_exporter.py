from datetime import datetime, timezone

import pytest

from triage_worker.services.exporter import ExportProfile, format_document

WHEN = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)


def test_action_items_sample():
    doc = format_document(["Revenue grew 15%", "Let's meet Friday"], "action-items", WHEN)
    lines = doc.text.split("\n")
    assert lines[0] == "ACTION ITEMS - 2026-03-04"
    assert lines[1] == "=" * 50
    assert lines[3] == "ACTION ITEMS"
    assert lines[5:7] == ["[ ] Revenue grew 15%", "[ ] Let's meet Friday"]
    assert lines[-1] == "--- Check off when completed ---"
    assert doc.stem == "action-items_2026-03-04_05-06-07"


def test_meeting_notes_numbered_and_spaced():
    doc = format_document(["a", "b"], ExportProfile.MEETING_NOTES, WHEN)
    assert "1. a\n\n2. b" in doc.text
    assert doc.text.startswith("MEETING NOTES - 2026-03-04\n")
    assert doc.text.endswith("--- End of Notes ---")


def test_personal_reminder_bullets():
    doc = format_document(["a", "b"], "personal-reminder", WHEN)
    assert "\n• a\n• b\n" in doc.text
    assert doc.text.startswith("PERSONAL REMINDER - ")
    assert "PERSONAL REMINDERS" in doc.text


def test_summary_joins_paragraphs():
    doc = format_document(["a", "b"], "summary", WHEN)
    assert "SUMMARY\n\na\n\nb\n\n--- End of Summary ---" in doc.text


@pytest.mark.parametrize("profile", [p.value for p in ExportProfile])
def test_empty_content_keeps_header_and_footer(profile):
    doc = format_document([], profile, WHEN)
    lines = doc.text.split("\n")
    assert lines[0].endswith("- 2026-03-04")
    assert lines[5] == ""
    assert lines[-1].startswith("---")


@pytest.mark.parametrize("profile", ["bogus", "", None, "ACTION ITEMS"])
def test_unknown_profile_renders_as_default(profile):
    doc = format_document(["a", "b"], profile, WHEN)
    assert doc.profile is ExportProfile.DEFAULT
    assert doc.text == format_document(["a", "b"], "default", WHEN).text
    assert doc.text.startswith("DEFAULT - 2026-03-04")


def test_profile_parse_is_case_insensitive():
    assert ExportProfile.parse(" Action-Items ") is ExportProfile.ACTION_ITEMS
