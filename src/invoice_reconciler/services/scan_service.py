"""
Scan service - runs invoice scans as background jobs.

A scan lists the scope's invoice folder, and for every file not yet cached:
downloads it, runs the extraction pipeline, matches it against the scope's
bank transactions and writes one cache row. ``start_scan`` returns a job id
immediately; callers poll ``get_job_status`` (or block on ``wait``).

Error policy:
- Setup failures (no Drive client, first listing page unreachable) end the
  job with status "error" before any file is processed
- Per-file failures are appended to the job's errors and the scan goes on
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Optional

from ..drive_client import DriveError
from ..extractors import ExtractionPipeline
from ..matching import MatchingEngine
from ..schemas import CachedInvoiceRecord, Scope
from .file_lister import DriveFileLister
from .scan_jobs import JobJanitor, JobRegistry, ScanJob, ScanStatus, new_job_id

if TYPE_CHECKING:
    from ..config import Config
    from ..drive_client import DriveClient, RemoteFile
    from ..matching import MatchDecision
    from ..schemas import ExtractedInvoice
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


class ScanSetupError(Exception):
    """A scan could not start processing files."""

    pass


@dataclass
class ScanOptions:
    """Per-scan options."""

    # Purge the scope's cache rows before scanning
    force_rescan: bool = False
    # Folder to scan instead of the mapped/configured one
    folder_override: Optional[str] = None
    # Year whose folder mapping to use (defaults to the current year)
    year: Optional[int] = None


class ScanService:
    """
    Owns scan jobs and the worker pool that runs them.

    Each scan runs on one pool thread; files within a scan are processed
    sequentially, so a job's counters have a single writer.
    """

    def __init__(
        self,
        config: Config,
        store: StateStore,
        client: Optional[DriveClient],
        pipeline: Optional[ExtractionPipeline] = None,
        engine: Optional[MatchingEngine] = None,
        lister: Optional[DriveFileLister] = None,
        registry: Optional[JobRegistry] = None,
        start_janitor: bool = True,
    ):
        """
        Initialize the scan service.

        Args:
            config: Application configuration
            store: Cache and transaction store
            client: Drive client (None makes every scan fail at setup)
            pipeline: Extraction pipeline (default: built from config)
            engine: Matching engine (default: built from config)
            lister: File lister (default: built from config)
            registry: Job registry (default: a new one)
            start_janitor: Start the background sweep of finished jobs
        """
        self.config = config
        self.store = store
        self.client = client
        self.pipeline = pipeline or ExtractionPipeline.from_config(config.extraction, client)
        self.engine = engine or MatchingEngine(config.matching)
        if lister is None and client is not None:
            lister = DriveFileLister(
                client,
                max_depth=config.drive.max_folder_depth,
                max_files=config.drive.max_files,
                page_size=config.drive.page_size,
            )
        self.lister = lister
        self.registry = registry or JobRegistry()

        self._executor = ThreadPoolExecutor(
            max_workers=config.scan.max_concurrent_scans,
            thread_name_prefix="invoice-scan",
        )
        self._futures: dict[str, Future] = {}
        self._futures_lock = threading.Lock()

        self.janitor = JobJanitor(
            self.registry,
            retention_seconds=config.scan.job_retention_seconds,
            interval_seconds=config.scan.sweep_interval_seconds,
        )
        if start_janitor:
            self.janitor.start()

    # === Public surface ===

    def start_scan(self, scope: Scope, options: Optional[ScanOptions] = None) -> str:
        """
        Start a scan in the background.

        Returns:
            Job id to poll with get_job_status
        """
        options = options or ScanOptions()
        job = ScanJob(id=new_job_id(), user_id=scope.user_id, company_id=scope.company_id)
        self.registry.put(job)

        future = self._executor.submit(self._run_scan, job, scope, options)
        with self._futures_lock:
            self._prune_futures()
            self._futures[job.id] = future

        logger.info(f"Started scan {job.id} for {scope}")
        return job.id

    def get_job_status(self, job_id: str) -> Optional[dict]:
        """Snapshot of a job, or None if unknown or already swept."""
        job = self.registry.get(job_id)
        return job.snapshot() if job else None

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[dict]:
        """
        Block until a job finishes and return its final snapshot.

        Raises:
            concurrent.futures.TimeoutError: If the job is still running after timeout
        """
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_job_status(job_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the janitor and the worker pool."""
        self.janitor.stop()
        self._executor.shutdown(wait=wait)

    def resolve_root_folder(self, scope: Scope, options: ScanOptions) -> Optional[str]:
        """
        Folder to scan for a scope.

        Order: explicit override, the scope's folder mapping for the year,
        the configured root folder, then None (whole drive).
        """
        if options.folder_override:
            return options.folder_override

        year = options.year or date.today().year
        mapping = self.store.get_folder_mapping(scope.user_id, scope.folder_purpose(year))
        if mapping:
            return mapping["folder_id"]

        return self.config.drive.root_folder_id

    # === Worker ===

    def _prune_futures(self) -> None:
        """Forget futures of jobs the janitor already swept. Caller holds the lock."""
        for job_id in [j for j in self._futures if self.registry.get(j) is None]:
            del self._futures[job_id]

    def _run_scan(self, job: ScanJob, scope: Scope, options: ScanOptions) -> None:
        """Body of one scan job (runs on a pool thread)."""
        try:
            files = self._prepare(scope, options)
        except Exception as e:
            logger.exception(f"Scan {job.id} failed during setup")
            job.finish(ScanStatus.ERROR, error=str(e))
            return

        job.set_total(len(files))
        logger.info(f"Scan {job.id}: {len(files)} candidate file(s)")

        try:
            for remote_file in files:
                self._process_file(job, scope, remote_file)
        except Exception as e:
            logger.exception(f"Scan {job.id} aborted")
            job.finish(ScanStatus.ERROR, error=str(e))
            return

        job.finish(ScanStatus.DONE)
        snapshot = job.snapshot()
        logger.info(
            f"Scan {job.id} done: {snapshot['scanned']} new, {snapshot['matched']} matched, "
            f"{len(snapshot['errors'])} error(s)"
        )

    def _prepare(self, scope: Scope, options: ScanOptions) -> list[RemoteFile]:
        """Setup phase: purge on forced re-scan, resolve the root, list files."""
        if self.client is None or self.lister is None:
            raise ScanSetupError("No Drive connection configured")

        if options.force_rescan:
            deleted = self.store.delete_invoices_for_scope(scope)
            logger.info(f"Forced re-scan: cleared {deleted} cached invoice(s) for {scope}")

        root_folder_id = self.resolve_root_folder(scope, options)
        try:
            return self.lister.list_candidate_files(root_folder_id, self.config.drive.file_filter)
        except DriveError as e:
            raise ScanSetupError(f"Could not list files: {e}") from e

    def _process_file(self, job: ScanJob, scope: Scope, remote_file: RemoteFile) -> None:
        """Handle one file; every failure is recorded on the job, never raised."""
        try:
            if self.store.invoice_exists(scope, remote_file.id):
                job.record_processed()
                return

            try:
                file_bytes = self.client.download(remote_file.id)
            except DriveError as e:
                logger.warning(f"Download failed for {remote_file.name}: {e}")
                job.add_error(f"Download failed: {remote_file.name}")
                job.record_processed()
                return

            invoice = self.pipeline.extract(remote_file.name, file_bytes, file_id=remote_file.id)
            best_guess_date = invoice.date or remote_file.modified_date
            decision = self._match(scope, invoice, best_guess_date)

            record = CachedInvoiceRecord.from_extraction(
                scope,
                remote_file.id,
                remote_file.name,
                invoice,
                raw_text_max_chars=self.config.extraction.raw_text_max_chars,
            )
            if decision is not None and decision.accepted:
                record.transaction_id = decision.transaction_id
                record.match_confidence = decision.confidence

            logger.info(
                f"{remote_file.name}: amount={invoice.amount}, date={best_guess_date}, "
                f"vendor={invoice.vendor}, method={invoice.extraction_method.value}, "
                f"best score={decision.score if decision else None}, "
                f"tx={record.transaction_id}"
            )

            inserted = self.store.insert_invoice(record)
            job.record_processed(scanned=inserted, matched=inserted and record.is_matched)
        except Exception as e:
            logger.exception(f"Failed to process {remote_file.name}")
            job.add_error(f"{remote_file.name}: {e}")
            job.record_processed()

    def _match(
        self,
        scope: Scope,
        invoice: ExtractedInvoice,
        best_guess_date: Optional[str],
    ) -> Optional[MatchDecision]:
        """Run the matching engine, or None when there is too little to match on."""
        if not best_guess_date or not self.engine.should_attempt(invoice, best_guess_date):
            logger.debug("Not enough extracted data to attempt matching")
            return None

        date_from, date_to = self.engine.candidate_window(best_guess_date)
        candidates = self.store.query_candidates(
            scope,
            date_from,
            date_to,
            exclude_linked=True,
            excluded_label_prefixes=self.config.matching.excluded_label_prefixes,
            limit=self.config.matching.candidate_limit,
        )
        return self.engine.match(invoice, candidates, best_guess_date)
