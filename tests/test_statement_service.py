"""Tests for StatementService: upload, processing and persistence."""

from datetime import date
from pathlib import Path

import pytest

from stmtflow.domain.entities import LogStatus, ProcessingStep, StatementStatus, TransactionStatus
from stmtflow.domain.errors import NotFoundError, ValidationError
from stmtflow.domain.mapping import MappingRegistry
from stmtflow.domain.pipeline import StatementPipeline

JANUARY = (
    b"Date,Description,Amount\n"
    b"02/01/2024,EFTPOS Woolworths,-85.50\n"
    b"05/01/2024,Salary ACME,3500.00\n"
)

OVERLAP = (
    b"Date,Description,Amount\n"
    b"02/01/2024,EFTPOS Woolworths P/L,-85.55\n"
    b"03/02/2024,Netflix 0412,-15.99\n"
)


@pytest.fixture
def stored_categories(category_service):
    category_service.create_category("Groceries")
    category_service.add_rule("Groceries", "merchant", "contains", "woolworths")
    category_service.create_category("Salary", "income")
    category_service.add_rule("Salary", "description", "contains", "salary")
    category_service.create_category("Entertainment")


@pytest.fixture
def build_pipeline(temp_db, vault, category_service, stored_csv_mapping, stored_categories):
    def factory(user_id):
        return StatementPipeline(
            vault,
            MappingRegistry.from_database(temp_db),
            category_service.build_categorizer(user_id),
        )

    return factory


class TestRegisterUpload:
    def test_seals_and_records_pending(self, statement_service, vault):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")

        assert statement.id > 0
        assert statement.status == StatementStatus.PENDING
        assert statement.file_type == "csv"
        assert statement.file_name == "January.csv"

        sealed = Path(statement.encrypted_path).read_bytes()
        assert b"Woolworths" not in sealed
        assert "January" not in statement.encrypted_path
        assert vault.open(sealed, statement.key_handle) == JANUARY

        stored = statement_service.get_statement(statement.id)
        assert stored.key_handle == statement.key_handle
        assert stored.status == StatementStatus.PENDING

    def test_upload_log(self, statement_service):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")

        (log,) = statement_service.list_logs(statement.id)
        assert log.sequence == 1
        assert log.step == ProcessingStep.UPLOAD
        assert log.status == LogStatus.COMPLETED
        assert log.details == {"file_type": "csv", "size": len(JANUARY)}

    def test_declared_type_normalized(self, statement_service):
        statement = statement_service.register_upload(JANUARY, "export", "anz", "user-1", file_type=".CSV")
        assert statement.file_type == "csv"

    def test_unknown_type_stored_as_declared(self, statement_service):
        statement = statement_service.register_upload(b"...", "statement.docx", "anz", "user-1")
        assert statement.file_type == "docx"

    @pytest.mark.parametrize(
        "file_name,bank_id,user_id,message",
        [
            ("a.csv", "", "user-1", "Bank ID is required"),
            ("a.csv", "anz", " ", "User ID is required"),
            ("export", "anz", "user-1", "Cannot determine file type"),
        ],
    )
    def test_validation(self, statement_service, file_name, bank_id, user_id, message):
        with pytest.raises(ValidationError, match=message):
            statement_service.register_upload(JANUARY, file_name, bank_id, user_id)


class TestProcessStatements:
    def test_end_to_end(self, statement_service, build_pipeline):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")

        (result,) = statement_service.process_statements([statement.id], build_pipeline)

        assert result.succeeded
        stored = statement_service.get_statement(statement.id)
        assert stored.status == StatementStatus.COMPLETED
        assert stored.transaction_count == 2
        assert stored.period_start == date(2024, 1, 2)
        assert stored.period_end == date(2024, 1, 5)

        transactions = statement_service.list_transactions(statement.id)
        assert [t.description for t in transactions] == ["EFTPOS Woolworths", "Salary ACME"]
        assert [t.status for t in transactions] == [TransactionStatus.PROCESSED] * 2
        assert transactions[0].raw_data == {"Date": "02/01/2024", "Description": "EFTPOS Woolworths", "Amount": "-85.50"}

    def test_log_sequence_continues_after_upload(self, statement_service, build_pipeline):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        statement_service.process_statements([statement.id], build_pipeline)

        logs = statement_service.list_logs(statement.id)

        assert [log.sequence for log in logs] == list(range(1, len(logs) + 1))
        assert logs[0].step == ProcessingStep.UPLOAD
        assert logs[-1].step == ProcessingStep.SAVING
        assert logs[-1].details == {"transaction_count": 2, "statement_status": "completed"}

    def test_overlapping_statement_flags_duplicates(self, statement_service, build_pipeline):
        first = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        statement_service.process_statements([first.id], build_pipeline)
        original = statement_service.list_transactions(first.id)[0]

        second = statement_service.register_upload(OVERLAP, "Feb.csv", "anz", "user-1")
        statement_service.process_statements([second.id], build_pipeline)

        duplicate, netflix = statement_service.list_transactions(second.id)
        assert duplicate.is_duplicate
        assert duplicate.duplicate_of == original.id
        assert duplicate.status == TransactionStatus.IGNORED
        assert not netflix.is_duplicate

    def test_overlapping_statements_in_one_batch(self, statement_service, build_pipeline):
        first = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        second = statement_service.register_upload(OVERLAP, "Feb.csv", "anz", "user-1")

        results = statement_service.process_statements([second.id, first.id], build_pipeline)

        assert [r.statement.id for r in results] == [second.id, first.id]
        assert all(r.succeeded for r in results)
        original = statement_service.list_transactions(first.id)[0]
        duplicate, netflix = statement_service.list_transactions(second.id)
        assert duplicate.duplicate_of == original.id
        assert duplicate.status == TransactionStatus.IGNORED
        assert not netflix.is_duplicate
        assert not any(t.is_duplicate for t in statement_service.list_transactions(first.id))

    def test_same_file_twice_in_one_batch(self, statement_service, build_pipeline):
        first = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        again = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        other = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-2")

        statement_service.process_statements([first.id, again.id, other.id], build_pipeline)

        originals = [t.id for t in statement_service.list_transactions(first.id)]
        assert [t.duplicate_of for t in statement_service.list_transactions(again.id)] == originals
        assert not any(t.is_duplicate for t in statement_service.list_transactions(other.id))

    def test_claimed_statement_skipped(self, statement_service, build_pipeline, temp_db):
        claimed = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        free = statement_service.register_upload(OVERLAP, "Feb.csv", "anz", "user-2")
        assert temp_db.claim_statement(claimed.id)

        results = statement_service.process_statements([claimed.id, free.id], build_pipeline)

        assert [r.statement.id for r in results] == [free.id]
        assert statement_service.get_statement(claimed.id).status == StatementStatus.PROCESSING
        assert statement_service.list_transactions(claimed.id) == []
        assert [log.step for log in statement_service.list_logs(claimed.id)] == [ProcessingStep.UPLOAD]

    def test_failed_save_marks_statement_failed(self, statement_service, build_pipeline, temp_db, monkeypatch):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        save = temp_db.save_processing_result
        saved_counts = []

        def save_once_failing(snapshot, transactions, logs):
            saved_counts.append(len(transactions))
            if len(saved_counts) == 1:
                raise RuntimeError("disk I/O error")
            return save(snapshot, transactions, logs)

        monkeypatch.setattr(temp_db, "save_processing_result", save_once_failing)

        (result,) = statement_service.process_statements([statement.id], build_pipeline)

        assert saved_counts == [2, 0]
        assert not result.succeeded
        assert result.transactions == []
        stored = statement_service.get_statement(statement.id)
        assert stored.status == StatementStatus.FAILED
        assert stored.last_error == "disk I/O error"
        assert stored.transaction_count == 0
        assert statement_service.list_transactions(statement.id) == []
        logs = statement_service.list_logs(statement.id)
        assert [log.sequence for log in logs] == [1, 2]
        assert (logs[-1].step, logs[-1].status) == (ProcessingStep.SAVING, LogStatus.FAILED)
        assert logs[-1].details["error_type"] == "RuntimeError"

    def test_other_users_not_compared(self, statement_service, build_pipeline):
        first = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        statement_service.process_statements([first.id], build_pipeline)

        other = statement_service.register_upload(OVERLAP, "Feb.csv", "anz", "user-2")
        statement_service.process_statements([other.id], build_pipeline)

        assert not any(t.is_duplicate for t in statement_service.list_transactions(other.id))

    def test_failed_statement_persisted(self, statement_service, build_pipeline):
        statement = statement_service.register_upload(JANUARY, "January.csv", "XYZ", "user-1")

        (result,) = statement_service.process_statements([statement.id], build_pipeline)

        assert not result.succeeded
        stored = statement_service.get_statement(statement.id)
        assert stored.status == StatementStatus.FAILED
        assert "XYZ" in stored.last_error
        assert statement_service.list_transactions(statement.id) == []
        failed = [log for log in statement_service.list_logs(statement.id) if log.status == LogStatus.FAILED]
        assert failed[0].details["error_type"] == "MappingConfigMissingError"

    def test_results_in_requested_order(self, statement_service, build_pipeline):
        a = statement_service.register_upload(JANUARY, "a.csv", "anz", "user-2")
        b = statement_service.register_upload(JANUARY, "b.csv", "XYZ", "user-1")
        c = statement_service.register_upload(OVERLAP, "c.csv", "anz", "user-2")

        results = statement_service.process_statements([c.id, a.id, b.id], build_pipeline)

        assert [r.statement.id for r in results] == [c.id, a.id, b.id]
        assert [r.succeeded for r in results] == [True, True, False]

    def test_missing_statement(self, statement_service, build_pipeline):
        with pytest.raises(NotFoundError, match="Statement 404 not found"):
            statement_service.process_statements([404], build_pipeline)

    def test_missing_sealed_file(self, statement_service, build_pipeline):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        Path(statement.encrypted_path).unlink()

        with pytest.raises(NotFoundError, match="Sealed file"):
            statement_service.process_statements([statement.id], build_pipeline)


class TestConfirmCategory:
    def test_confirm_learns_for_next_statement(self, statement_service, category_service, build_pipeline):
        first = statement_service.register_upload(OVERLAP, "Feb.csv", "anz", "user-1")
        statement_service.process_statements([first.id], build_pipeline)
        netflix = statement_service.list_transactions(first.id)[1]
        assert netflix.suggested_category_id is None

        learning = category_service.confirm_category(netflix.id, "Entertainment")

        assert learning.merchant == "netflix"
        assert learning.description_pattern == "netflix #"
        entertainment = category_service.get_category_by_name("Entertainment")
        confirmed = statement_service.list_transactions(first.id)[1]
        assert confirmed.suggested_category_id == entertainment.id
        assert confirmed.category_confidence == 1.0

        march = statement_service.register_upload(
            b"Date,Description,Amount\n03/03/2024,Netflix 0513,-15.99\n", "Mar.csv", "anz", "user-1"
        )
        statement_service.process_statements([march.id], build_pipeline)
        (suggested,) = statement_service.list_transactions(march.id)
        assert suggested.suggested_category_id == entertainment.id
        assert suggested.category_confidence == pytest.approx(0.71)

    def test_confirm_unknown(self, category_service, statement_service, build_pipeline):
        statement = statement_service.register_upload(JANUARY, "January.csv", "anz", "user-1")
        statement_service.process_statements([statement.id], build_pipeline)
        txn = statement_service.list_transactions(statement.id)[0]

        with pytest.raises(NotFoundError, match="Category 'Travel' not found"):
            category_service.confirm_category(txn.id, "Travel")
        with pytest.raises(NotFoundError, match="Transaction missing not found"):
            category_service.confirm_category("missing", "Groceries")
