"""
Run metadata: the audit record of one pipeline execution.

Every build records a complete ``config_snapshot`` (full ``AppConfig`` as a
dict) so a run can be reproduced by restoring that config and re-running on
the same input files (whose hashes the artifact carries).

``RunMetadata`` is the only pydantic model in the package that is NOT
frozen: ``status``, ``rows_processed``, ``error_message``, ``summary`` and
``finished_at`` are filled in as the stage executes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PIPELINE_STAGES = frozenset({"build_value_model"})
VALID_RUN_STATUSES = frozenset({"started", "success", "failed"})


class RunMetadata(BaseModel):
    """Mutable bookkeeping for one stage invocation.

    Attributes:
        run_slug: Random UUID4 tagging this run in logs and the artifact.
        pipeline_stage: Which stage produced this record.
        status: ``started`` → ``success`` | ``failed``.
        config_snapshot: ``AppConfig.model_dump()`` at run start.
        rows_processed: Observations the run fitted on (asks + sales).
        error_message: Error description when ``status == "failed"``.
        summary: Operator-facing counts and health, set on success.
        started_at: UTC start time.
        finished_at: UTC end time, whichever way the run ended.
    """

    model_config = ConfigDict(frozen=False)

    run_slug: str
    pipeline_stage: str
    status: str = "started"
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    error_message: Optional[str] = None
    summary: dict[str, Any] = {}
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("pipeline_stage")
    @classmethod
    def validate_pipeline_stage(cls, v: str) -> str:
        if v not in VALID_PIPELINE_STAGES:
            raise ValueError(
                f"Unknown pipeline_stage '{v}'. Must be one of {sorted(VALID_PIPELINE_STAGES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
