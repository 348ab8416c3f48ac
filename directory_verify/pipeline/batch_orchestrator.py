"""
Batch orchestrator for DirectoryVerify.

Validates, enriches, scores and persists one uploaded batch of directory
rows with a bounded worker pool, and keeps the batch record and audit log
in step with the run.
"""

import logging
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from tqdm import tqdm

from directory_verify.audit.audit_logger import AuditLogger
from directory_verify.config import EngineConfig
from directory_verify.enrichment.adapter import EnrichmentAdapter, EnrichmentResult
from directory_verify.errors import EnrichmentUnavailable, PersistenceFailure
from directory_verify.ingestion.row_mapper import RowMapper
from directory_verify.models import (
    BatchSummary,
    ProviderRecord,
    RecordStatus,
    Source,
    UserContext,
    ValidationBatch,
    utc_now,
)
from directory_verify.storage.record_store import RecordStore
from directory_verify.validate.confidence_scorer import ConfidenceScorer
from directory_verify.validate.field_validator import FieldValidator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class BatchOrchestrator:
    """
    Runs record validation for a batch of rows.

    Each row is scored as an independent task; the main thread joins results,
    stores them in input order and owns all counters, so every row is counted
    exactly once.
    """

    def __init__(self, store: RecordStore, config: Optional[EngineConfig] = None,
                 enrichment_adapter: Optional[EnrichmentAdapter] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 user: Optional[UserContext] = None):
        """
        Initialize batch orchestrator.

        Args:
            store: Storage collaborator for records and batches
            config: Engine configuration
            enrichment_adapter: Optional advisory enrichment collaborator
            audit_logger: Audit logger; one over the same store is created if omitted
            user: Identity attached to audit entries
        """
        self.store = store
        self.config = config or EngineConfig()
        self.enrichment_adapter = enrichment_adapter
        self.audit_logger = audit_logger or AuditLogger(store)
        self.user = user

        self.mapper = RowMapper()
        self.validator = FieldValidator(self.config.validation)
        self.scorer = ConfidenceScorer(self.config.scoring)

        self._enrichment_executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

        logger.info(f"Initialized BatchOrchestrator with {self.config.batch.max_workers} workers")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        """Release the enrichment worker threads."""
        with self._executor_lock:
            if self._enrichment_executor is not None:
                self._enrichment_executor.shutdown(wait=False)
                self._enrichment_executor = None

    def _get_enrichment_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._enrichment_executor is None:
                self._enrichment_executor = ThreadPoolExecutor(
                    max_workers=self.config.batch.max_workers,
                    thread_name_prefix="enrichment",
                )
            return self._enrichment_executor

    def enrich(self, fields: Mapping[str, str]) -> EnrichmentResult:
        """
        Ask the enrichment adapter for suggestions within the configured timeout.

        Any failure yields an empty result and leaves the score unaffected.
        """
        if self.enrichment_adapter is None:
            return EnrichmentResult.empty()

        timeout = self.config.batch.enrichment_timeout
        future = self._get_enrichment_executor().submit(self.enrichment_adapter.suggest, dict(fields))
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Enrichment timed out after {timeout}s for provider '{fields.get('name', '')}'")
        except EnrichmentUnavailable as e:
            logger.warning(f"Enrichment unavailable for provider '{fields.get('name', '')}': {e}")
        except Exception as e:
            logger.warning(f"Enrichment failed for provider '{fields.get('name', '')}': {e}")

        return EnrichmentResult.empty()

    def prepare_row(self, row: Mapping[str, Any], source: str,
                    batch_id: Optional[str] = None) -> ProviderRecord:
        """
        Map, validate, enrich and score one row without storing it.

        Args:
            row: Raw row
            source: Directory source label
            batch_id: Validation batch id

        Returns:
            Scored ProviderRecord
        """
        record = self.mapper.build_record(row, source, batch_id=batch_id)
        fields = record.field_values()

        report = self.validator.validate(fields)
        enrichment = self.enrich(fields)
        record.suggestions = dict(enrichment.suggestions)
        self.scorer.apply(record, report, enrichment.confidence_adjustment)
        return record

    def persist_record(self, record: ProviderRecord, row_index: Optional[int] = None) -> ProviderRecord:
        """
        Store a scored record.

        Raises:
            PersistenceFailure: If the record could not be stored
        """
        try:
            return self.store.create_record(record)
        except PersistenceFailure as e:
            e.row_index = row_index
            e.record_id = e.record_id or record.id
            raise

    def validate_row(self, row: Mapping[str, Any], source: str,
                     batch_id: Optional[str] = None,
                     row_index: Optional[int] = None) -> ProviderRecord:
        """
        Map, validate, enrich, score and persist one row.

        Args:
            row: Raw row
            source: Directory source label
            batch_id: Validation batch id
            row_index: Position of the row in the batch

        Returns:
            Persisted ProviderRecord

        Raises:
            PersistenceFailure: If the record could not be stored
        """
        record = self.prepare_row(row, source, batch_id=batch_id)
        return self.persist_record(record, row_index)

    def run_batch(self, rows: Sequence[Mapping[str, Any]], source: str, batch_name: str,
                  file_name: str = "", on_progress: Optional[ProgressCallback] = None) -> BatchSummary:
        """
        Validate a batch of rows.

        Args:
            rows: Raw rows in input order
            source: Directory source label
            batch_name: Name of the validation batch
            file_name: Uploaded file name
            on_progress: Optional callback receiving (completed, total)

        Returns:
            BatchSummary

        Raises:
            ValueError: If the source label is unknown
            PersistenceFailure: On a storage failure under the abort policy
        """
        source = Source(source).value
        rows = list(rows)
        total = len(rows)
        start_time = time.time()

        batch = self.store.create_batch(ValidationBatch(
            name=batch_name,
            source=source,
            file_name=file_name,
            total_records=total,
        ))
        logger.info(f"Starting batch '{batch_name}' ({batch.id}): {total} {source} records")

        counts = {"validated": 0, "flagged": 0, "failed": 0}
        try:
            self.audit_logger.log_action(
                "upload",
                f"Uploaded {file_name or batch_name} with {total} {source} records",
                user=self.user,
                batch_id=batch.id,
                changes={"total_records": total, "source": source},
            )
            self._run_tasks(rows, source, batch.id, counts, on_progress)
        except Exception as e:
            logger.error(f"Batch '{batch_name}' failed: {e}")
            try:
                self._finish_batch(batch, counts, status="failed")
            except Exception as finish_error:
                logger.error(f"Could not mark batch {batch.id} as failed: {finish_error}")
            raise

        self._finish_batch(batch, counts, status="completed")
        summary = BatchSummary(
            batch_id=batch.id,
            total=total,
            validated=counts["validated"],
            flagged=counts["flagged"],
            failed=counts["failed"],
            duration=time.time() - start_time,
        )
        self.audit_logger.log_action(
            "validation_run",
            f"Validated batch '{batch_name}': {summary.validated} validated, "
            f"{summary.flagged} flagged, {summary.failed} failed",
            user=self.user,
            batch_id=batch.id,
            changes=summary.to_dict(),
        )

        logger.info(f"Completed batch '{batch_name}' in {summary.duration:.2f} seconds: "
                    f"{summary.validated} validated, {summary.flagged} flagged, {summary.failed} failed")
        return summary

    def _run_tasks(self, rows: List[Mapping[str, Any]], source: str, batch_id: str,
                   counts: Dict[str, int], on_progress: Optional[ProgressCallback]):
        """
        Score rows on the worker pool and store them in input order.

        Finished rows wait in a buffer until every earlier row has been
        stored, so storage order matches row order whatever the thread timing.
        """
        total = len(rows)
        if total == 0:
            return

        abort_on_failure = self.config.batch.on_persistence_failure == "abort"
        progress_bar = None
        if self.config.batch.show_progress:
            progress_bar = tqdm(total=total, desc="Validating", unit="record",
                                file=sys.stderr, mininterval=1.0, dynamic_ncols=True)

        try:
            with ThreadPoolExecutor(max_workers=self.config.batch.max_workers) as executor:
                future_to_index = {
                    executor.submit(self.prepare_row, row, source, batch_id): index
                    for index, row in enumerate(rows)
                }

                ready: Dict[int, ProviderRecord] = {}
                next_index = 0
                for future in as_completed(future_to_index):
                    try:
                        ready[future_to_index[future]] = future.result()
                    except Exception:
                        self._cancel_pending(future_to_index)
                        raise

                    while next_index in ready:
                        record = ready.pop(next_index)
                        try:
                            self.persist_record(record, next_index)
                        except PersistenceFailure as e:
                            if abort_on_failure:
                                self._cancel_pending(future_to_index)
                                logger.error(f"Aborting batch {batch_id} at row {next_index}: {e}")
                                raise
                            counts["failed"] += 1
                            logger.warning(f"Row {next_index} of batch {batch_id} not stored: {e}")
                        else:
                            if record.status == RecordStatus.FLAGGED:
                                counts["flagged"] += 1
                            else:
                                counts["validated"] += 1

                        next_index += 1
                        if progress_bar:
                            progress_bar.update(1)
                        if on_progress:
                            on_progress(next_index, total)
                        if next_index % 100 == 0:
                            logger.info(f"Progress: {next_index:,}/{total:,} records")
        finally:
            if progress_bar:
                progress_bar.close()

    @staticmethod
    def _cancel_pending(futures):
        cancelled = sum(1 for future in futures if future.cancel())
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending rows")

    def _finish_batch(self, batch: ValidationBatch, counts: Dict[str, int], status: str):
        batch.validated_count = counts["validated"]
        batch.flagged_count = counts["flagged"]
        batch.failed_count = counts["failed"]
        batch.status = status
        batch.completed_at = utc_now()
        self.store.update_batch(batch)
