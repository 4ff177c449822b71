# tests/test_triggers.py
from __future__ import annotations

import json

import pytest

from matrixci.dsl import on_pull_request, on_push
from matrixci.model import TriggerEvent
from matrixci.triggers import event_from_payload, is_triggered, load_event, matches


@pytest.mark.parametrize(
    "event, expected",
    [
        (TriggerEvent("push", "main"), True),
        (TriggerEvent("push", "develop"), False),
        (TriggerEvent("pull_request", "main"), False),
    ],
)
def test_push_trigger_matches_type_and_branch(event, expected):
    assert matches(on_push("main"), event) is expected


def test_branch_patterns_and_wildcard():
    assert matches(on_push("release/*"), TriggerEvent("push", "release/1.2"))
    assert not matches(on_push("release/*"), TriggerEvent("push", "main"))
    assert matches(on_pull_request(), TriggerEvent("pull_request", "anything"))


def test_manga_pipeline_triggers(manga_pipeline):
    assert is_triggered(manga_pipeline, TriggerEvent("push", "main"))
    assert is_triggered(manga_pipeline, TriggerEvent("pull_request", "main"))
    assert not is_triggered(manga_pipeline, TriggerEvent("push", "feature/reader"))
    assert not is_triggered(manga_pipeline, TriggerEvent("pull_request", "develop"))


def test_push_payload():
    ev = event_from_payload("push", {"ref": "refs/heads/main", "after": "abc123"})
    assert ev == TriggerEvent("push", "main", "abc123")


def test_pull_request_payload_targets_base_branch():
    payload = {
        "action": "opened",
        "pull_request": {
            "base": {"ref": "main", "sha": "111"},
            "head": {"ref": "feature/reader", "sha": "222"},
        },
    }
    ev = event_from_payload("pull_request", payload)
    assert ev.event_type == "pull_request"
    assert ev.target_branch == "main"
    assert ev.sha == "222"


def test_invalid_payloads_raise_value_error():
    with pytest.raises(ValueError, match="Invalid push payload"):
        event_from_payload("push", {"after": "abc"})
    with pytest.raises(ValueError, match="Unsupported event type"):
        event_from_payload("schedule", {})


def test_load_event_envelope_and_raw(tmp_path):
    envelope = tmp_path / "envelope.json"
    envelope.write_text(json.dumps({"event_name": "push", "payload": {"ref": "refs/heads/main"}}), encoding="utf-8")
    assert load_event(envelope) == TriggerEvent("push", "main", None)

    raw = tmp_path / "raw.json"
    raw.write_text(json.dumps({"ref": "refs/heads/develop", "after": "f00"}), encoding="utf-8")
    assert load_event(raw, "push") == TriggerEvent("push", "develop", "f00")

    with pytest.raises(ValueError):
        load_event(raw)
