"""Tests for bigpulp_value.pipeline.base and bigpulp_value.models.meta."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from bigpulp_value.models.meta import RunMetadata
from bigpulp_value.pipeline.base import PipelineStage
from bigpulp_value.utils import logging as log_utils
from bigpulp_value.utils.time_utils import utcnow


class _CountingStage(PipelineStage):
    stage_name = "build_value_model"

    def __init__(self, config, fail: bool = False) -> None:
        super().__init__(config)
        self.fail = fail
        self.seen_slug = None

    def _execute(self, run: RunMetadata, **kwargs) -> int:
        self.seen_slug = log_utils._current_run_slug
        if self.fail:
            raise RuntimeError("boom")
        return kwargs.get("rows", 0)


def test_successful_run_is_finalised(app_config):
    stage = _CountingStage(app_config)
    run = stage.run(rows=12)
    assert run.status == "success"
    assert run.rows_processed == 12
    assert run.duration_seconds is not None and run.duration_seconds >= 0
    assert run.config_snapshot["random_seed"] == app_config.random_seed


def test_run_slug_bound_during_execute_only(app_config):
    stage = _CountingStage(app_config)
    run = stage.run()
    assert stage.seen_slug == run.run_slug
    assert log_utils._current_run_slug == "-"


def test_failure_reraised_and_slug_reset(app_config, caplog):
    stage = _CountingStage(app_config, fail=True)
    with caplog.at_level(logging.ERROR), pytest.raises(RuntimeError, match="boom"):
        stage.run()
    assert log_utils._current_run_slug == "-"
    assert any("FAILED" in r.getMessage() for r in caplog.records)


def test_unknown_stage_rejected():
    with pytest.raises(ValidationError):
        RunMetadata(
            run_slug="x", pipeline_stage="train_model", config_snapshot={}, started_at=utcnow(),
        )


def test_unknown_status_rejected():
    with pytest.raises(ValidationError):
        RunMetadata(
            run_slug="x", pipeline_stage="build_value_model", status="running",
            config_snapshot={}, started_at=utcnow(),
        )
