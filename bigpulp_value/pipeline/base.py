"""
Stage runner shared by every value-model build step.

A stage is constructed with an ``AppConfig`` and invoked through ``run()``,
which opens a ``RunMetadata`` record, tags log lines with its ``run_slug``,
delegates to ``_execute()`` and closes the record out. The record moves from
``started`` to ``success`` or ``failed`` in ``run()`` alone; errors raised by
``_execute()`` propagate to the caller once the record says ``failed``.

Example::

    class ReplayStage(PipelineStage):
        stage_name = "build_value_model"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            return len(kwargs["observations"])

    record = ReplayStage(config=app_config).run(observations=[...])
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from uuid import uuid4

from bigpulp_value.config import AppConfig
from bigpulp_value.models.meta import RunMetadata
from bigpulp_value.utils.logging import bind_run_slug
from bigpulp_value.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """One step of the value-model build, wrapped in run bookkeeping.

    Attributes:
        stage_name: Identifier matching a valid ``RunMetadata.pipeline_stage``.
        config: Settings the stage reads; snapshotted into each record.
    """

    stage_name: str

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    def run(self, **kwargs) -> RunMetadata:
        """Run the stage once and return its finished audit record.

        Returns:
            ``RunMetadata`` with ``status='success'``, ``rows_processed`` and
            ``finished_at`` set.

        Raises:
            Exception: Re-raises anything from ``_execute()`` after recording
                ``status='failed'``.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            config_snapshot=self.config.model_dump(),
            started_at=utcnow(),
        )
        bind_run_slug(run.run_slug)
        logger.info("Stage [%s] starting", self.stage_name)

        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error("Stage [%s] FAILED: %s", self.stage_name, exc)
            raise
        finally:
            bind_run_slug(None)

        run.status = "success"
        run.rows_processed = rows
        run.finished_at = utcnow()
        logger.info(
            "Stage [%s] completed | rows=%d | %.2fs | run_slug=%s",
            self.stage_name, rows, run.duration_seconds or 0.0, run.run_slug,
        )
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Do the stage's work.

        Args:
            run: Open record; the stage may attach a ``summary`` to it.
            **kwargs: Whatever ``run()`` was called with.

        Returns:
            Number of observations handled, stored as ``rows_processed``.
        """
        ...
