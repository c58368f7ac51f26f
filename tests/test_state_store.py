"""Tests for state store."""

from decimal import Decimal

import pytest

from invoice_reconciler.schemas import CachedInvoiceRecord, ExtractionMethod, Scope
from invoice_reconciler.state_store import StateStore


def make_record(scope: Scope, file_id: str = "file-1", **kwargs) -> CachedInvoiceRecord:
    defaults = dict(
        user_id=scope.user_id,
        company_id=scope.company_id,
        drive_file_id=file_id,
        filename=f"{file_id}.pdf",
        extraction_method=ExtractionMethod.TEXT_LAYER,
        vendor="Acme",
        amount=Decimal("123.45"),
        date="2026-03-12",
    )
    defaults.update(kwargs)
    return CachedInvoiceRecord(**defaults)


@pytest.fixture
def store(temp_db):
    """Create a fresh state store."""
    return StateStore(temp_db)


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "invoice_cache" in table_names
            assert "bank_accounts" in table_names
            assert "transactions" in table_names
            assert "folder_mappings" in table_names
        finally:
            conn.close()

    def test_reopen_existing_db(self, temp_db, personal_scope):
        StateStore(temp_db).insert_invoice(make_record(personal_scope))
        assert StateStore(temp_db).invoice_exists(personal_scope, "file-1")


class TestInvoiceCache:
    """Tests for cache rows and scope isolation."""

    def test_insert_and_get(self, store, personal_scope):
        record = make_record(personal_scope, tax_rate=Decimal("20"), raw_text="Total 123,45")

        assert store.insert_invoice(record) is True
        assert record.id is not None
        assert record.scanned_at is not None

        loaded = store.get_invoice(record.id)
        assert loaded.drive_file_id == "file-1"
        assert loaded.amount == Decimal("123.45")
        assert loaded.tax_rate == Decimal("20")
        assert loaded.extraction_method == ExtractionMethod.TEXT_LAYER
        assert loaded.company_id is None
        assert loaded.is_matched is False

    def test_insert_is_idempotent(self, store, personal_scope):
        assert store.insert_invoice(make_record(personal_scope)) is True
        assert store.insert_invoice(make_record(personal_scope)) is False
        assert len(store.list_invoices(personal_scope)) == 1

    def test_scopes_are_isolated(self, store, personal_scope, company_scope):
        store.insert_invoice(make_record(personal_scope))

        assert store.invoice_exists(personal_scope, "file-1")
        assert not store.invoice_exists(company_scope, "file-1")
        assert not store.invoice_exists(Scope(user_id=2), "file-1")

        # Same file may be cached once per scope
        assert store.insert_invoice(make_record(company_scope)) is True

    def test_delete_for_scope(self, store, personal_scope, company_scope):
        store.insert_invoice(make_record(personal_scope, "a"))
        store.insert_invoice(make_record(personal_scope, "b"))
        store.insert_invoice(make_record(company_scope, "a"))

        assert store.delete_invoices_for_scope(personal_scope) == 2
        assert store.list_invoices(personal_scope) == []
        assert len(store.list_invoices(company_scope)) == 1

    def test_list_filters_and_order(self, store, personal_scope):
        old = make_record(personal_scope, "old", date="2026-01-01")
        new = make_record(personal_scope, "new", date="2026-03-01", transaction_id=5)
        store.insert_invoice(old)
        store.insert_invoice(new)

        assert [r.drive_file_id for r in store.list_invoices(personal_scope)] == ["new", "old"]
        assert [r.drive_file_id for r in store.list_invoices(personal_scope, matched=True)] == [
            "new"
        ]
        assert [r.drive_file_id for r in store.list_invoices(personal_scope, matched=False)] == [
            "old"
        ]

    def test_match_and_unmatch(self, store, personal_scope):
        record = make_record(personal_scope)
        store.insert_invoice(record)

        assert store.match_invoice(record.id, 42)
        loaded = store.get_invoice(record.id)
        assert loaded.transaction_id == 42
        assert loaded.match_confidence == 1.0

        assert store.unmatch_invoice(record.id)
        loaded = store.get_invoice(record.id)
        assert loaded.transaction_id is None
        assert loaded.match_confidence is None

        assert store.match_invoice(9999, 42) is False

    def test_link_moves_transaction(self, store, personal_scope):
        first = make_record(personal_scope, "a", transaction_id=42, match_confidence=0.8)
        second = make_record(personal_scope, "b")
        store.insert_invoice(first)
        store.insert_invoice(second)

        assert store.link_invoice(personal_scope, second.id, 42)

        assert store.get_invoice(first.id).transaction_id is None
        assert store.get_invoice(second.id).transaction_id == 42

    def test_link_requires_owner(self, store, personal_scope):
        record = make_record(personal_scope)
        store.insert_invoice(record)

        assert store.link_invoice(Scope(user_id=2), record.id, 42) is False
        assert store.get_invoice(record.id).transaction_id is None

    def test_delete_invoice(self, store, personal_scope):
        record = make_record(personal_scope)
        store.insert_invoice(record)

        assert store.delete_invoice(record.id)
        assert store.get_invoice(record.id) is None
        assert not store.invoice_exists(personal_scope, "file-1")

    def test_stats(self, store, personal_scope):
        store.insert_invoice(make_record(personal_scope, "a", transaction_id=1))
        store.insert_invoice(make_record(personal_scope, "b"))
        store.insert_invoice(
            make_record(personal_scope, "c", extraction_method=ExtractionMethod.REMOTE_OCR)
        )

        stats = store.get_invoice_stats(personal_scope)

        assert stats.total == 3
        assert stats.matched == 1
        assert stats.unmatched == 2
        assert stats.match_rate == 33
        assert stats.by_method == {"text-layer": 2, "remote-ocr": 1}

    def test_stats_empty_scope(self, store, personal_scope):
        stats = store.get_invoice_stats(personal_scope)
        assert stats.total == 0
        assert stats.match_rate == 0


class TestCandidateQuery:
    """Tests for the transaction candidate window."""

    @pytest.fixture
    def accounts(self, store):
        return {
            "personal": store.add_bank_account(1, name="Perso"),
            "company": store.add_bank_account(1, company_id=7, name="Pro"),
            "company_savings": store.add_bank_account(1, company_id=7, account_type="savings"),
            "other_user": store.add_bank_account(2),
        }

    def test_window_bounds_inclusive(self, store, accounts, personal_scope):
        acct = accounts["personal"]
        inside_low = store.add_transaction(acct, "A", "-10.00", "2026-02-10")
        inside_high = store.add_transaction(acct, "B", "-10.00", "2026-04-11")
        store.add_transaction(acct, "C", "-10.00", "2026-02-09")
        store.add_transaction(acct, "D", "-10.00", "2026-04-12")

        ids = {c.id for c in store.query_candidates(personal_scope, "2026-02-10", "2026-04-11")}

        assert ids == {inside_low, inside_high}

    def test_personal_scope_reads_all_user_accounts(self, store, accounts, personal_scope):
        mine = store.add_transaction(accounts["personal"], "A", "-10.00", "2026-03-12")
        pro = store.add_transaction(accounts["company"], "B", "-10.00", "2026-03-12")
        store.add_transaction(accounts["other_user"], "C", "-10.00", "2026-03-12")

        ids = {c.id for c in store.query_candidates(personal_scope, "2026-03-01", "2026-03-31")}

        assert ids == {mine, pro}

    def test_company_scope_checking_only(self, store, accounts, company_scope):
        store.add_transaction(accounts["personal"], "A", "-10.00", "2026-03-12")
        checking = store.add_transaction(accounts["company"], "B", "-10.00", "2026-03-12")
        store.add_transaction(accounts["company_savings"], "C", "-10.00", "2026-03-12")

        ids = {c.id for c in store.query_candidates(company_scope, "2026-03-01", "2026-03-31")}

        assert ids == {checking}

    def test_excludes_linked(self, store, accounts, personal_scope):
        linked = store.add_transaction(accounts["personal"], "A", "-10.00", "2026-03-12")
        free = store.add_transaction(accounts["personal"], "B", "-10.00", "2026-03-12")
        store.insert_invoice(make_record(personal_scope, transaction_id=linked))

        ids = {c.id for c in store.query_candidates(personal_scope, "2026-03-01", "2026-03-31")}
        assert ids == {free}

        ids = {
            c.id
            for c in store.query_candidates(
                personal_scope, "2026-03-01", "2026-03-31", exclude_linked=False
            )
        }
        assert ids == {linked, free}

    def test_excluded_label_prefixes(self, store, accounts, personal_scope):
        store.add_transaction(
            accounts["personal"], "Coupons restaurant mars", "-80.00", "2026-03-12"
        )
        kept = store.add_transaction(accounts["personal"], "CB ACME", "-10.00", "2026-03-12")

        candidates = store.query_candidates(
            personal_scope, "2026-03-01", "2026-03-31", excluded_label_prefixes=["COUPONS"]
        )

        assert [c.id for c in candidates] == [kept]

    def test_limit_keeps_closest(self, store, accounts, personal_scope):
        acct = accounts["personal"]
        far = store.add_transaction(acct, "far", "-10.00", "2026-03-01")
        close = store.add_transaction(acct, "close", "-10.00", "2026-03-12")
        near = store.add_transaction(acct, "near", "-10.00", "2026-03-14")

        candidates = store.query_candidates(personal_scope, "2026-02-10", "2026-04-11", limit=2)

        # Window centre is 2026-03-12
        assert [c.id for c in candidates] == [close, near]
        assert far not in [c.id for c in candidates]

    def test_candidate_fields(self, store, accounts, personal_scope):
        tx_id = store.add_transaction(
            accounts["personal"], "ACME PRLV", Decimal("-123.45"), "2026-03-13"
        )

        (candidate,) = store.query_candidates(personal_scope, "2026-03-01", "2026-03-31")

        assert candidate.id == tx_id
        assert candidate.label == "ACME PRLV"
        assert candidate.amount == Decimal("-123.45")
        assert candidate.date == "2026-03-13"
        assert store.get_transaction(tx_id) == candidate


class TestFolderMappings:
    """Tests for per-user folder mappings."""

    def test_set_get_update_delete(self, store):
        assert store.get_folder_mapping(1, "invoices_2026") is None

        store.set_folder_mapping(1, "invoices_2026", "folder-a", folder_path="Compta/2026")
        mapping = store.get_folder_mapping(1, "invoices_2026")
        assert mapping["folder_id"] == "folder-a"
        assert mapping["folder_path"] == "Compta/2026"

        store.set_folder_mapping(1, "invoices_2026", "folder-b")
        assert store.get_folder_mapping(1, "invoices_2026")["folder_id"] == "folder-b"
        assert store.get_folder_mapping(2, "invoices_2026") is None

        assert store.delete_folder_mapping(1, "invoices_2026") is True
        assert store.get_folder_mapping(1, "invoices_2026") is None
        assert store.delete_folder_mapping(1, "invoices_2026") is False
