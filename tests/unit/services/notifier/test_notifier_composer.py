"""Tests for message composition."""

from datetime import datetime, timezone

import pytest

from services.notifier.composer import CATEGORY_PHRASES, MessageComposer, classify_reason
from services.notifier.models import ChangeCategory, ChangeEvent, Resource

NOW = datetime(2025, 10, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def resource():
    return Resource(id="site-1", name="Example Store", url="https://example.com/sale")


class TestClassifyReason:

    @pytest.mark.parametrize(
        "reason, expected",
        [
            ("Keywords appeared: sale, discount", ChangeCategory.KEYWORD_APPEARED),
            ("KEYWORDS DISAPPEARED: sold out", ChangeCategory.KEYWORD_DISAPPEARED),
            ("Content changed compared to previous snapshot", ChangeCategory.CONTENT_CHANGED),
            ("新しいキーワードが検出されました: セール", ChangeCategory.KEYWORD_APPEARED),
            ("キーワードが削除されました", ChangeCategory.KEYWORD_DISAPPEARED),
            ("以前のスナップショットと比較して内容が変更されました", ChangeCategory.CONTENT_CHANGED),
            ("something odd happened", ChangeCategory.UNKNOWN),
            ("", ChangeCategory.UNKNOWN),
            (None, ChangeCategory.UNKNOWN),
        ],
    )
    def test_categories(self, reason, expected):
        assert classify_reason(reason) is expected


class TestMessageComposer:

    def test_body_layout(self, resource):
        composer = MessageComposer()
        event = ChangeEvent(resource_id="site-1", reason="Keywords appeared: sale")

        body = composer.compose(resource, event, now=NOW)

        lines = body.split("\n")
        assert lines[0] == "Website update detected!"
        assert "Site: Example Store" in lines
        assert "URL: https://example.com/sale" in lines
        assert f"Change: {CATEGORY_PHRASES[ChangeCategory.KEYWORD_APPEARED]}" in lines
        assert "Detected at: 2025-10-15 10:00:00 UTC" in lines

    def test_deterministic_with_fixed_clock(self, resource):
        composer = MessageComposer(clock=lambda: NOW)
        event = ChangeEvent(resource_id="site-1", reason="Content changed")
        assert composer.compose(resource, event) == composer.compose(resource, event)

    def test_detected_at_does_not_affect_timestamp(self, resource):
        composer = MessageComposer(clock=lambda: NOW)
        event = ChangeEvent(
            resource_id="site-1",
            reason="Content changed",
            detected_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )

        body = composer.compose(resource, event)

        assert "Detected at: 2025-10-15 10:00:00 UTC" in body.split("\n")
        assert "2020-01-01" not in body

    def test_reason_text_is_not_embedded(self, resource):
        composer = MessageComposer(clock=lambda: NOW)
        first = composer.compose(resource, ChangeEvent("site-1", reason="Keywords appeared: secret-term"))
        second = composer.compose(resource, ChangeEvent("site-1", reason="Keywords appeared: other"))

        assert "secret-term" not in first
        assert first == second

    def test_only_category_line_changes_with_reason(self, resource):
        composer = MessageComposer(clock=lambda: NOW)
        appeared = composer.compose(resource, ChangeEvent("site-1", reason="Keywords appeared")).split("\n")
        unknown = composer.compose(resource, ChangeEvent("site-1", reason="???")).split("\n")

        diff = [i for i, (a, b) in enumerate(zip(appeared, unknown)) if a != b]
        assert len(appeared) == len(unknown)
        assert len(diff) == 1
        assert unknown[diff[0]] == f"Change: {CATEGORY_PHRASES[ChangeCategory.UNKNOWN]}"

    def test_missing_fields_use_placeholders(self):
        composer = MessageComposer(clock=lambda: NOW)
        body = composer.compose(Resource(id=1, name="", url=""), ChangeEvent(1))

        assert "Site: (unnamed site)" in body
        assert "URL: -" in body

    def test_fingerprint_preview(self, resource):
        composer = MessageComposer(clock=lambda: NOW)
        event = ChangeEvent(
            "site-1",
            previous_fingerprint="a1b2c3d4e5f6a7b8c9d0",
            current_fingerprint="0f9e8d7c6b5a4f3e2d1c",
        )
        assert "Snapshot: a1b2c3d4e5f6 -> 0f9e8d7c6b5a" in composer.compose(resource, event)

    def test_no_snapshot_line_without_fingerprints(self, resource):
        composer = MessageComposer(clock=lambda: NOW)
        assert "Snapshot:" not in composer.compose(resource, ChangeEvent("site-1"))

    def test_timezone_conversion(self, resource):
        composer = MessageComposer(tz_name="Asia/Tokyo", timestamp_format="%Y-%m-%d %H:%M")
        body = composer.compose(resource, ChangeEvent("site-1"), now=NOW)
        assert "Detected at: 2025-10-15 19:00" in body

    def test_unknown_timezone_falls_back_to_utc(self, resource):
        composer = MessageComposer(tz_name="Mars/Olympus_Mons")
        assert "UTC" in composer.compose(resource, ChangeEvent("site-1"), now=NOW)

    def test_subject(self, resource):
        assert MessageComposer().compose_subject(resource) == "Website update detected - Example Store"

    def test_invalid_subject_template_falls_back(self, resource):
        composer = MessageComposer(subject_template="Update {missing}")
        assert composer.compose_subject(resource) == "Website update detected - Example Store"


pytestmark = pytest.mark.unit
