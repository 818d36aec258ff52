"""Run one operation over many version ids, isolating per-item failures.

Each item goes through :func:`errors.capture`, so a failing item becomes an
entry in ``errors`` and the batch carries on. Invariants of the report:
``processed == len(ids)`` and ``successful + failed == processed``.

With more than one worker, items run on a bounded thread pool and results are
listed in completion order.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, ContextManager, Dict, List, Optional, Sequence, Tuple

from errors import NotFoundError, OperationResult, VersionValidationError, capture
from lifecycle import Requester, VersionLifecycleManager
from preview_compiler import StorageWriter
from version_spec import BatchItemError, BatchReport, VersionOut, VersionPayload

logger = logging.getLogger(__name__)

ItemHandler = Callable[[str, Any], Dict[str, Any]]
ManagerScope = Callable[[], ContextManager[VersionLifecycleManager]]


def default_max_workers() -> int:
    raw = os.getenv("BATCH_MAX_WORKERS", "1")
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning("Invalid BATCH_MAX_WORKERS value %r, running sequentially", raw)
        return 1


def run_batch(
    operation: str,
    handler: ItemHandler,
    ids: Sequence[str],
    extra: Any = None,
    max_workers: int = 1,
) -> BatchReport:
    outcomes: List[Tuple[str, OperationResult[Dict[str, Any]]]] = []

    if max_workers <= 1 or len(ids) <= 1:
        for item_id in ids:
            outcomes.append((item_id, capture(handler, item_id, extra)))
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {pool.submit(capture, handler, item_id, extra): item_id for item_id in ids}
            for future in as_completed(futures):
                outcomes.append((futures[future], future.result()))

    results: List[Dict[str, Any]] = []
    errors: List[BatchItemError] = []
    for item_id, outcome in outcomes:
        if outcome.ok:
            results.append(outcome.value or {"id": item_id, "success": True})
        else:
            logger.warning("Batch %s failed for %s: %s", operation, item_id, outcome.message)
            errors.append(
                BatchItemError(id=item_id, error=outcome.message or "", kind=outcome.error_kind or "internal_error")
            )

    logger.info("Batch %s processed=%d failed=%d", operation, len(ids), len(errors))
    return BatchReport(
        operation=operation,
        processed=len(ids),
        successful=len(results),
        failed=len(errors),
        results=results,
        errors=errors,
    )


class BatchCoordinator:
    """Maps batch operation names onto lifecycle calls.

    ``manager_scope`` yields a lifecycle manager for one item; the HTTP layer
    opens a database session per item so each item commits or rolls back on
    its own. With ``component_id`` set, versions of other components are
    reported as not found.
    """

    OPERATIONS = ("compile", "delete", "update")

    def __init__(
        self,
        manager_scope: ManagerScope,
        writer: Optional[StorageWriter] = None,
        max_workers: Optional[int] = None,
        component_id: Optional[str] = None,
    ) -> None:
        self.manager_scope = manager_scope
        self.writer = writer
        self.component_id = component_id
        self.max_workers = max_workers if max_workers is not None else default_max_workers()

    def run(
        self,
        operation: str,
        version_ids: Sequence[str],
        requester: Requester,
        data: Optional[VersionPayload] = None,
    ) -> BatchReport:
        if operation not in self.OPERATIONS:
            raise VersionValidationError(
                f"Unsupported batch operation: {operation}", {"supported": list(self.OPERATIONS)}
            )
        if operation == "update" and data is None:
            raise VersionValidationError("Batch update requires data")

        logger.info("Batch %s over %d versions", operation, len(version_ids))
        handler = getattr(self, f"_{operation}")
        return run_batch(operation, handler, version_ids, (requester, data), self.max_workers)

    def _require_owned(self, manager: VersionLifecycleManager, version_id: str) -> None:
        version = manager.require_version(version_id)
        if self.component_id and version.component_id != self.component_id:
            raise NotFoundError(
                f"Component version {version_id} not found for component {self.component_id}"
            )

    def _compile(self, version_id: str, extra: Any) -> Dict[str, Any]:
        with self.manager_scope() as manager:
            self._require_owned(manager, version_id)
            preview = manager.compile_preview(version_id, self.writer)
        return {"id": version_id, "success": True, "previewUrl": preview.preview_url}

    def _delete(self, version_id: str, extra: Any) -> Dict[str, Any]:
        requester, _ = extra
        with self.manager_scope() as manager:
            self._require_owned(manager, version_id)
            manager.delete_version(version_id, requester)
        return {"id": version_id, "success": True}

    def _update(self, version_id: str, extra: Any) -> Dict[str, Any]:
        requester, data = extra
        with self.manager_scope() as manager:
            self._require_owned(manager, version_id)
            version = manager.update_version(version_id, data, requester)
            dumped = VersionOut.model_validate(version).model_dump(by_alias=True, mode="json")
        return {"id": version_id, "success": True, "version": dumped}
