# report.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from .model import PipelineResult


def to_dict(result: PipelineResult) -> Dict[str, Any]:
    """
    Check-run style report: one entry per job, one per leg, plus the
    aggregate conclusion.
    """
    return {
        "pipeline": result.pipeline,
        "event": {
            "type": result.event.event_type,
            "target_branch": result.event.target_branch,
            "sha": result.event.sha,
        },
        "triggered": result.triggered,
        "cancelled": result.cancelled,
        "conclusion": result.status.value,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "jobs": [
            {
                "name": jr.job,
                "conclusion": jr.status.value,
                "reason": jr.reason,
                "legs": [lr.to_dict() for lr in jr.legs],
            }
            for jr in result.jobs.values()
        ],
    }


def write_report(result: PipelineResult, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(to_dict(result), indent=2, ensure_ascii=False), encoding="utf-8")
    return p
