# triggers.py
from __future__ import annotations

import json
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from .model import Pipeline, Trigger, TriggerEvent

PUSH = "push"
PULL_REQUEST = "pull_request"
EVENT_TYPES = (PUSH, PULL_REQUEST)


def matches(trigger: Trigger, event: TriggerEvent) -> bool:
    """True if the event has the trigger's type and targets one of its branches."""
    if trigger.event_type != event.event_type:
        return False
    if not trigger.branches:
        return True
    return any(fnmatchcase(event.target_branch, pattern) for pattern in trigger.branches)


def is_triggered(pipeline: Pipeline, event: TriggerEvent) -> bool:
    return any(matches(t, event) for t in pipeline.triggers)


# -------------------- Webhook payloads --------------------

class _Ref(BaseModel):
    ref: str
    sha: Optional[str] = None


class _PullRequest(BaseModel):
    base: _Ref
    head: _Ref


class PushPayload(BaseModel):
    ref: str
    after: Optional[str] = None


class PullRequestPayload(BaseModel):
    action: Optional[str] = None
    pull_request: _PullRequest


class EventEnvelope(BaseModel):
    """What `--event-path` files may contain when they carry their own type."""
    event_name: str
    payload: dict[str, Any] = Field(default_factory=dict)


def _branch_of(ref: str) -> str:
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


def event_from_payload(event_name: str, payload: dict[str, Any]) -> TriggerEvent:
    """
    Turn a webhook payload (as written to GITHUB_EVENT_PATH) into a TriggerEvent.

    Raises:
        ValueError: unknown event type or payload missing required fields
    """
    try:
        if event_name == PUSH:
            push = PushPayload.model_validate(payload)
            return TriggerEvent(PUSH, _branch_of(push.ref), push.after)
        if event_name == PULL_REQUEST:
            pr = PullRequestPayload.model_validate(payload)
            return TriggerEvent(PULL_REQUEST, _branch_of(pr.pull_request.base.ref), pr.pull_request.head.sha)
    except ValidationError as e:
        raise ValueError(f"Invalid {event_name} payload: {e}") from e
    raise ValueError(f"Unsupported event type {event_name!r}. Expected one of {EVENT_TYPES}")


def load_event(path: str | Path, event_name: str | None = None) -> TriggerEvent:
    """
    Load an event payload file. Without event_name the file must be an
    envelope: {"event_name": "...", "payload": {...}}.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if event_name is None:
        try:
            env = EventEnvelope.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"{path}: pass --event or wrap the payload as {{event_name, payload}}: {e}") from e
        return event_from_payload(env.event_name, env.payload)
    return event_from_payload(event_name, data)
