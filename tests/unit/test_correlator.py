"""
Tests for cross-tool correlation.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from journalq.activity.correlator import (
    CODE_TO_ISSUE,
    DESIGN_TO_DOC,
    ISSUE_REFERENCE,
    MEETING_FOLLOW_UP,
    CorrelationThresholds,
    correlate,
    related_activity_ids,
    significant_tokens,
    tracker_key,
)
from journalq.contracts.activity import Correlation, RankedActivity

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)


def _ranked(*contexts):
    return [RankedActivity(context=c, score=1.0, rank=i + 1) for i, c in enumerate(contexts)]


@pytest.fixture
def issue(make_context):
    return make_context("jira:TRACK-42", source_subtype="issue", title="TRACK-42: Login times out")


def test_key_in_code_title(make_context, issue):
    pr = make_context("github:pr:a#1", title="TRACK-42 raise session timeout")

    [corr] = correlate(_ranked(issue, pr))

    assert corr.type == CODE_TO_ISSUE
    assert corr.confidence == pytest.approx(0.95)
    assert set(corr.activity_ids) == {"jira:TRACK-42", "github:pr:a#1"}
    assert corr.evidence["matched_in"] == "title"


def test_key_in_code_body(make_context, issue):
    pr = make_context("github:pr:a#1", title="Raise timeout", body="Fixes TRACK-42, API_KEY=[REDACTED]")

    [corr] = correlate(_ranked(issue, pr))

    assert corr.confidence == pytest.approx(0.85)
    assert corr.evidence["matched_in"] == "body"


def test_key_mentioned_in_chat(make_context, issue):
    thread = make_context("slack:c:1", source_subtype="thread", title="Anyone looked at TRACK-42?")

    [corr] = correlate(_ranked(issue, thread))

    assert corr.type == ISSUE_REFERENCE
    assert corr.confidence == pytest.approx(0.7)


def test_key_must_match_whole_token(make_context, issue):
    pr = make_context("github:pr:a#1", title="TRACK-420 unrelated")

    assert correlate(_ranked(issue, pr)) == []


def test_meeting_follow_up_within_window(make_context):
    meeting = make_context(
        "google-calendar:m1", source_subtype="meeting", title="Checkout redesign review"
    )
    thread = make_context(
        "slack:c:1",
        source_subtype="thread",
        title="Checkout redesign action items",
        timestamp=T0 + timedelta(minutes=30),
    )

    [corr] = correlate(_ranked(meeting, thread))

    assert corr.type == MEETING_FOLLOW_UP
    assert 0.0 <= corr.confidence <= 0.9
    assert corr.evidence["gap_minutes"] == 30
    assert corr.evidence["shared_keywords"] == ["checkout", "redesign"]


def test_meeting_follow_up_outside_window(make_context):
    meeting = make_context("google-calendar:m1", source_subtype="meeting", title="Checkout redesign")
    late = make_context(
        "slack:c:1",
        source_subtype="thread",
        title="Checkout redesign notes",
        timestamp=T0 + timedelta(hours=3),
    )
    before = make_context(
        "github:pr:a#1",
        title="Checkout redesign prep",
        timestamp=T0 - timedelta(minutes=5),
    )

    assert correlate(_ranked(meeting, late, before)) == []


def test_design_doc_similarity(make_context):
    design = make_context("figma:f1", source_subtype="design", title="Checkout payment flow")
    doc = make_context("confluence:9", source_subtype="page", title="Checkout payment flow spec")
    unrelated = make_context("google-docs:d1", source_subtype="document", title="Team offsite agenda")

    correlations = correlate(_ranked(design, doc, unrelated))

    assert [c.type for c in correlations] == [DESIGN_TO_DOC]
    assert correlations[0].confidence <= 0.95


def test_correlations_sorted_and_numbered(make_context, issue):
    pr = make_context("github:pr:a#1", title="TRACK-42 fix")
    thread = make_context("slack:c:1", source_subtype="thread", title="TRACK-42 status")

    correlations = correlate(_ranked(issue, pr, thread))

    assert [c.id for c in correlations] == ["corr-1", "corr-2"]
    assert [c.confidence for c in correlations] == sorted(
        (c.confidence for c in correlations), reverse=True
    )


def test_never_self_correlating(make_context):
    issue = make_context("jira:TRACK-1", source_subtype="issue", title="TRACK-1 mentions TRACK-1")

    assert correlate(_ranked(issue)) == []


def test_confidence_clamped_with_custom_thresholds(make_context, issue):
    pr = make_context("github:pr:a#1", title="TRACK-42")
    thresholds = CorrelationThresholds(key_in_title=1.7)

    [corr] = correlate(_ranked(issue, pr), thresholds)

    assert corr.confidence == 1.0


def test_correlation_contract_rejects_bad_values():
    with pytest.raises(ValueError):
        Correlation(id="c", type="t", activity_ids=("a", "a"), description="", confidence=0.5)
    with pytest.raises(ValueError):
        Correlation(id="c", type="t", activity_ids=("a", "b"), description="", confidence=1.5)


def test_helpers(make_context):
    assert significant_tokens("The Checkout and payment FLOW") == {"checkout", "payment", "flow"}
    assert tracker_key(make_context("jira:ABC-7", title="no key here")) == "ABC-7"

    corr = Correlation(id="c", type="t", activity_ids=("a", "b", "c"), description="", confidence=0.5)
    assert related_activity_ids([corr], "b") == ["a", "c"]
    assert related_activity_ids([corr], "z") == []
