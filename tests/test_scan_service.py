"""
Tests for the scan service (job orchestration).

The Drive client is mocked; extraction runs the real filename tier so that
file names drive the extracted fields.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from invoice_reconciler.drive_client import DriveAPIError, RemoteFile
from invoice_reconciler.extractors import ExtractionPipeline, FilenameExtractor
from invoice_reconciler.schemas import Scope
from invoice_reconciler.services import ScanOptions, ScanService
from invoice_reconciler.state_store import StateStore


def remote(file_id: str, name: str, modified: str = "2026-03-12T10:00:00Z") -> RemoteFile:
    return RemoteFile(id=file_id, name=name, modified_time=modified)


def drive_with(files: list[RemoteFile]) -> MagicMock:
    client = MagicMock()
    client.list_folders.return_value = []
    client.list_files.return_value = (files, None)
    client.download.side_effect = lambda file_id: f"bytes of {file_id}".encode()
    return client


SAMPLE_FILES = [
    remote("f1", "2026-03-12_Acme_123.45.pdf"),
    remote("f2", "2026-03-02_Globex_49.90.pdf"),
    remote("f3", "scan_0003.pdf"),
]


@pytest.fixture
def store(config):
    return StateStore(config.state_db_path)


@pytest.fixture
def make_service(config, store):
    services = []

    def _make(client, **kwargs):
        kwargs.setdefault("pipeline", ExtractionPipeline([FilenameExtractor()]))
        service = ScanService(config, store, client, start_janitor=False, **kwargs)
        services.append(service)
        return service

    yield _make
    for service in services:
        service.shutdown()


def run_scan(service: ScanService, scope: Scope, **options) -> dict:
    job_id = service.start_scan(scope, ScanOptions(**options))
    return service.wait(job_id, timeout=10)


class TestScanLifecycle:
    """Start, poll, finish."""

    def test_scan_caches_every_file(self, make_service, store, personal_scope):
        service = make_service(drive_with(SAMPLE_FILES))

        status = run_scan(service, personal_scope)

        assert status["status"] == "done"
        assert status["total"] == 3
        assert status["processed"] == 3
        assert status["scanned"] == 3
        assert status["errors"] == []
        assert status["finished_at"] is not None

        records = {r.drive_file_id: r for r in store.list_invoices(personal_scope)}
        assert set(records) == {"f1", "f2", "f3"}
        assert records["f1"].amount == Decimal("123.45")
        assert records["f1"].date == "2026-03-12"
        assert records["f1"].extraction_method.value == "filename"

    def test_start_returns_job_id(self, make_service, personal_scope):
        service = make_service(drive_with([]))

        job_id = service.start_scan(personal_scope)
        service.wait(job_id, timeout=10)

        assert job_id.startswith("scan_")
        assert service.get_job_status(job_id)["user_id"] == personal_scope.user_id

    def test_unknown_job(self, make_service):
        service = make_service(drive_with([]))
        assert service.get_job_status("scan_missing") is None


class TestIdempotence:
    """A file is processed at most once per scope."""

    def test_second_scan_adds_nothing(self, make_service, store, personal_scope):
        client = drive_with(SAMPLE_FILES)
        service = make_service(client)

        run_scan(service, personal_scope)
        status = run_scan(service, personal_scope)

        assert status["status"] == "done"
        assert status["processed"] == status["total"] == 3
        assert status["scanned"] == 0
        assert len(store.list_invoices(personal_scope)) == 3
        assert client.download.call_count == 3

    def test_other_scope_is_scanned_separately(
        self, make_service, store, personal_scope, company_scope
    ):
        service = make_service(drive_with(SAMPLE_FILES))

        run_scan(service, personal_scope)
        status = run_scan(service, company_scope)

        assert status["scanned"] == 3
        assert len(store.list_invoices(company_scope)) == 3

    def test_forced_rescan_clears_scope_first(self, make_service, store, personal_scope):
        client = drive_with(SAMPLE_FILES)
        service = make_service(client)
        run_scan(service, personal_scope)
        first_ids = {r.id for r in store.list_invoices(personal_scope)}

        status = run_scan(service, personal_scope, force_rescan=True)

        assert status["scanned"] == 3
        assert client.download.call_count == 6
        second_ids = {r.id for r in store.list_invoices(personal_scope)}
        assert len(second_ids) == 3
        assert not first_ids & second_ids


class TestMatchingDuringScan:
    """Accepted matches are folded into the cache rows."""

    @pytest.fixture
    def account(self, store):
        return store.add_bank_account(user_id=1)

    def test_match_is_recorded(self, make_service, store, account, personal_scope):
        tx_id = store.add_transaction(account, "ACME PRLV", "-123.45", "2026-03-13")
        service = make_service(drive_with(SAMPLE_FILES))

        status = run_scan(service, personal_scope)

        assert status["matched"] == 1
        record = next(r for r in store.list_invoices(personal_scope) if r.drive_file_id == "f1")
        assert record.transaction_id == tx_id
        assert record.match_confidence == 1.0

    def test_linked_transaction_not_reused(self, make_service, store, account, personal_scope):
        store.add_transaction(account, "ACME PRLV", "-123.45", "2026-03-13")
        files = [
            remote("f1", "2026-03-12_Acme_123.45.pdf"),
            remote("f1-copy", "2026-03-12_Acme_123.45 (1).pdf"),
        ]
        service = make_service(drive_with(files))

        status = run_scan(service, personal_scope)

        assert status["matched"] == 1
        assert len(store.list_invoices(personal_scope, matched=True)) == 1

    def test_modified_date_used_when_no_date(self, make_service, store, account, personal_scope):
        tx_id = store.add_transaction(account, "CB ACME", "-99.00", "2026-03-12")
        files = [remote("f9", "Acme_99.00.pdf", modified="2026-03-12T08:00:00Z")]
        service = make_service(drive_with(files))

        run_scan(service, personal_scope)

        (record,) = store.list_invoices(personal_scope)
        assert record.date is None
        assert record.transaction_id == tx_id

    def test_weak_match_left_unmatched(self, make_service, store, account, personal_scope):
        store.add_transaction(account, "VIR SALAIRE", "-500.00", "2026-03-12")
        service = make_service(drive_with(SAMPLE_FILES))

        status = run_scan(service, personal_scope)

        assert status["matched"] == 0
        assert len(store.list_invoices(personal_scope, matched=False)) == 3


class TestErrorHandling:
    """Per-file errors are absorbed; setup errors end the job."""

    def test_one_failed_download_does_not_abort(self, make_service, store, personal_scope):
        files = [remote(f"f{i}", f"2026-03-{i:02d}_Vendor_{i}0.00.pdf") for i in range(1, 11)]
        client = drive_with(files)

        def download(file_id):
            if file_id == "f4":
                raise DriveAPIError(404, "Not Found")
            return b"%PDF"

        client.download.side_effect = download
        service = make_service(client)

        status = run_scan(service, personal_scope)

        assert status["status"] == "done"
        assert status["processed"] == 10
        assert status["errors"] == ["Download failed: 2026-03-04_Vendor_40.00.pdf"]
        assert len(store.list_invoices(personal_scope)) == 9

    def test_processing_exception_recorded(self, make_service, store, personal_scope):
        pipeline = MagicMock()
        pipeline.extract.side_effect = RuntimeError("corrupt stream")
        service = make_service(drive_with(SAMPLE_FILES[:1]), pipeline=pipeline)

        status = run_scan(service, personal_scope)

        assert status["status"] == "done"
        assert status["processed"] == 1
        assert status["errors"] == ["2026-03-12_Acme_123.45.pdf: corrupt stream"]
        assert store.list_invoices(personal_scope) == []

    def test_no_drive_connection(self, make_service, personal_scope):
        service = make_service(None)

        status = run_scan(service, personal_scope)

        assert status["status"] == "error"
        assert status["errors"] == ["No Drive connection configured"]
        assert status["processed"] == 0

    def test_listing_unavailable(self, make_service, store, personal_scope):
        client = drive_with([])
        client.list_files.side_effect = DriveAPIError(403, "Forbidden")
        service = make_service(client)

        status = run_scan(service, personal_scope)

        assert status["status"] == "error"
        assert status["errors"][0].startswith("Could not list files")
        assert status["total"] == 0

    def test_forced_rescan_keeps_rows_when_not_connected(
        self, make_service, store, personal_scope
    ):
        store_service = make_service(drive_with(SAMPLE_FILES))
        run_scan(store_service, personal_scope)

        status = run_scan(make_service(None), personal_scope, force_rescan=True)

        assert status["status"] == "error"
        assert len(store.list_invoices(personal_scope)) == 3


class TestRootFolderResolution:
    """Override, then year mapping, then configured root."""

    def test_override_wins(self, make_service, store, personal_scope):
        store.set_folder_mapping(1, "invoices_2026", "mapped")
        service = make_service(drive_with([]))

        assert service.resolve_root_folder(
            personal_scope, ScanOptions(folder_override="override", year=2026)
        ) == "override"

    def test_year_mapping(self, make_service, store, personal_scope, company_scope):
        store.set_folder_mapping(1, "invoices_2025", "personal-2025")
        store.set_folder_mapping(1, "invoices_2025_7", "company-2025")
        service = make_service(drive_with([]))

        assert service.resolve_root_folder(personal_scope, ScanOptions(year=2025)) == (
            "personal-2025"
        )
        assert service.resolve_root_folder(company_scope, ScanOptions(year=2025)) == (
            "company-2025"
        )

    def test_configured_root_then_whole_drive(self, config, make_service, personal_scope):
        service = make_service(drive_with([]))
        assert service.resolve_root_folder(personal_scope, ScanOptions(year=1999)) is None

        config.drive.root_folder_id = "configured"
        assert service.resolve_root_folder(personal_scope, ScanOptions(year=1999)) == (
            "configured"
        )

    def test_scan_lists_mapped_folder(self, make_service, store, personal_scope):
        store.set_folder_mapping(1, "invoices_2026", "mapped")
        client = drive_with([])
        service = make_service(client)

        run_scan(service, personal_scope, year=2026)

        client.list_folders.assert_called_once_with("mapped")
        assert "'mapped' in parents" in client.list_files.call_args.args[0]
