import pytest

from jobpilot.core.enums import ActivityCategory
from jobpilot.services.activity import ActivityLog, categorize


@pytest.mark.parametrize(
    ("message", "category"),
    [
        ("✅ Sent application", ActivityCategory.SUCCESS),
        ("❌ Pipeline failed", ActivityCategory.ERROR),
        ("⚠️ Skipping Acme", ActivityCategory.WARNING),
        ("🔍 Searching", ActivityCategory.SEARCH),
        ("📧 Drafted email", ActivityCategory.EMAIL),
        ("📄 Rendering 3 PDFs", ActivityCategory.DOCUMENT),
        ("⏸️ 3 CVs ready for review", ActivityCategory.APPROVAL),
        ("Plain progress note", ActivityCategory.INFO),
        ("", ActivityCategory.INFO),
    ],
)
def test_categorize_by_leading_symbol(message, category):
    assert categorize(message) == category


def test_log_is_bounded_and_keeps_newest_entries():
    log = ActivityLog(limit=80)
    for idx in range(100):
        log.append(f"step {idx}")

    entries = log.entries()

    assert len(log) == 80
    assert entries[0].message == "step 20"
    assert entries[-1].message == "step 99"
    assert [e.id for e in entries] == list(range(21, 101))


def test_entries_since_id_and_subscribers():
    log = ActivityLog(limit=10)
    seen = []
    unsubscribe = log.subscribe(seen.append)

    first = log.append("✅ one")
    log.append("❌ two")
    unsubscribe()
    log.append("three")

    assert [e.message for e in log.entries(since_id=first.id)] == ["❌ two", "three"]
    assert [e.message for e in seen] == ["✅ one", "❌ two"]


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        ActivityLog(limit=0)
