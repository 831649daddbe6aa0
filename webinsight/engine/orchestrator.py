"""Multi-step report pipeline driven from the panel.

run_report() is a linear chain of awaited requests to the coordinator:

    1. check_key_points     GET_FILTERED_ITEMS_BY_TAG, look for an analysis
    2. generate_key_points  GET_KEY_POINTS_FOR_TAG (only if none found)
    3. generate_report      GENERATE_PDF_REPORT_FOR_TAG
    4. refresh_cache        reload the panel cache under its current filter

Steps 1, 2 and 4 can be switched off in ReportConfig. A failure in step 2
is recorded and reported but the pipeline carries on; a failure in step
3 fails the run. Each (trigger, tag) pair runs at most once at a time:
a second call while one is RUNNING returns a failed TaskRun with error
"busy" without sending anything.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from .cache import ItemCache
from .config import EngineConfig, timeout_or_none
from .message_router import MessageRouter
from .models import (
    COORDINATOR_ID,
    PANEL_ID,
    ContentItem,
    MessageKind,
    Response,
    Severity,
    StepResult,
    TaskRun,
    TaskStatus,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, Severity], None]

REPORT_TRIGGER = "report"
KEY_POINTS_TRIGGER = "key_points"
BUSY_ERROR = "busy"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReportOrchestrator:
    """Runs report and key-points tasks for one panel."""

    def __init__(
        self,
        router: MessageRouter,
        cache: ItemCache | None = None,
        config: EngineConfig | None = None,
        owner: str = PANEL_ID,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.router = router
        self.cache = cache
        self.config = config or EngineConfig()
        self.owner = owner
        self.on_status = on_status
        self._busy: set[tuple[str, int]] = set()

    def is_busy(self, tag_id: int, trigger: str = REPORT_TRIGGER) -> bool:
        return (trigger, tag_id) in self._busy

    async def run_report(
        self,
        tag_id: int,
        options: dict[str, Any] | None = None,
    ) -> TaskRun:
        return await self._run(
            REPORT_TRIGGER, tag_id, lambda run: self._report_pipeline(run, options or {}),
        )

    async def run_key_points(self, tag_id: int) -> TaskRun:
        return await self._run(KEY_POINTS_TRIGGER, tag_id, self._key_points_pipeline)

    # ── Guard ──

    async def _run(
        self,
        trigger: str,
        tag_id: int,
        pipeline: Callable[[TaskRun], Awaitable[None]],
    ) -> TaskRun:
        run = TaskRun(tag_id=tag_id, trigger=trigger)
        key = (trigger, tag_id)
        if key in self._busy:
            logger.warning("%s for tag %s rejected: already running", trigger, tag_id)
            run.status = TaskStatus.FAILED
            run.error = BUSY_ERROR
            return run

        self._busy.add(key)
        run.status = TaskStatus.RUNNING
        run.started_at = _now()
        logger.info("%s run %s started for tag %s", trigger, run.run_id, tag_id)
        try:
            await pipeline(run)
        except asyncio.CancelledError:
            run.status = TaskStatus.FAILED
            run.error = run.error or "cancelled"
            raise
        except Exception as exc:
            logger.exception("%s run %s crashed", trigger, run.run_id)
            run.status = TaskStatus.FAILED
            run.error = str(exc) or type(exc).__name__
        finally:
            self._busy.discard(key)
            run.finished_at = _now()
            logger.info(
                "%s run %s finished: %s (%.2fs)",
                trigger, run.run_id, run.status.value, run.duration_seconds,
            )
        return run

    # ── Pipelines ──

    async def _report_pipeline(self, run: TaskRun, options: dict[str, Any]) -> None:
        flags = self.config.report
        tag_id = run.tag_id

        key_points_id = await self._check_key_points(run)

        if key_points_id is None and flags.generate_key_points_if_missing:
            self._status("Generating key points first...", Severity.INFO)
            response = await self._request(
                MessageKind.GET_KEY_POINTS_FOR_TAG, {"tagId": tag_id},
            )
            if response.success and isinstance(response.payload, dict):
                key_points_id = response.payload.get("newId")
                run.record(StepResult("generate_key_points", True, payload=response.payload))
            else:
                run.record(StepResult("generate_key_points", False, error=response.error))
                self._status(
                    f"Key points unavailable ({response.error}). "
                    "Continuing with the report.",
                    Severity.WARNING,
                )
        else:
            run.record(StepResult("generate_key_points", True, skipped=True))

        report_options = flags.report_options()
        report_options.update(options)
        if key_points_id is not None:
            report_options["keyPointsItemId"] = key_points_id
        response = await self._request(
            MessageKind.GENERATE_PDF_REPORT_FOR_TAG,
            {"tagId": tag_id, "options": report_options},
        )
        run.record(StepResult(
            "generate_report", response.success, error=response.error,
            payload=response.payload,
        ))
        if not response.success:
            run.status = TaskStatus.FAILED
            run.error = response.error
            return

        if flags.refresh_cache_on_success and self.cache is not None:
            # The view may have moved to another filter while the report ran.
            applied = await self.cache.reload(self.cache.filter_key)
            run.record(StepResult(
                "refresh_cache", applied,
                error=None if applied else (self.cache.last_error or "stale"),
            ))
        else:
            run.record(StepResult("refresh_cache", True, skipped=True))

        run.result = response.payload
        run.status = TaskStatus.SUCCEEDED

    async def _check_key_points(self, run: TaskRun) -> int | None:
        flags = self.config.report
        if not flags.check_existing_key_points:
            run.record(StepResult("check_key_points", True, skipped=True))
            return None
        response = await self._request(
            MessageKind.GET_FILTERED_ITEMS_BY_TAG, {"tagId": run.tag_id},
        )
        if not response.success or not isinstance(response.payload, list):
            # Treated as "none found"; generation decides what happens next.
            run.record(StepResult("check_key_points", False, error=response.error))
            return None
        found: int | None = None
        for raw in response.payload:
            try:
                item = ContentItem.from_wire(raw)
            except (KeyError, TypeError, ValueError):
                continue
            if item.is_key_points(flags.legacy_title_heuristic):
                found = item.id if found is None else max(found, item.id)
        run.record(StepResult("check_key_points", True, payload={"keyPointsItemId": found}))
        if found is not None:
            logger.info("Existing key points item %d for tag %s", found, run.tag_id)
        return found

    async def _key_points_pipeline(self, run: TaskRun) -> None:
        response = await self._request(
            MessageKind.GET_KEY_POINTS_FOR_TAG, {"tagId": run.tag_id},
        )
        run.record(StepResult(
            "generate_key_points", response.success, error=response.error,
            payload=response.payload,
        ))
        if response.success:
            run.result = response.payload
            run.status = TaskStatus.SUCCEEDED
        else:
            run.status = TaskStatus.FAILED
            run.error = response.error

    # ── Helpers ──

    async def _request(self, kind: MessageKind, payload: dict[str, Any]) -> Response:
        return await self.router.request(
            self.owner,
            COORDINATOR_ID,
            kind,
            payload,
            timeout=timeout_or_none(self.config.step_timeout_seconds),
        )

    def _status(self, message: str, severity: Severity) -> None:
        if self.on_status is not None:
            self.on_status(message, severity)
