"""Tests for Database interface returning domain models."""

from dataclasses import replace
from datetime import date, datetime, UTC
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from stmtflow.domain import entities
from stmtflow.domain.errors import ConflictError, NotFoundError


@pytest.fixture
def sample_statement(temp_db):
    """Create a pending statement and return it with its ID."""
    statement = entities.BankStatement(
        id=0,
        user_id="user-1",
        bank_id="anz",
        file_name="January.csv",
        file_type="csv",
        encrypted_path="/vault/abc.csv.enc",
        key_handle=entities.KeyHandle(key_id="default", nonce=b"\x01" * 12),
        uploaded_at=datetime(2024, 2, 1, 9, 30, tzinfo=UTC),
    )
    return replace(statement, id=temp_db.create_statement(statement))


class TestMappingConfigs:
    """Mapping config storage."""

    def test_round_trip(self, temp_db, debit_credit_mapping):
        config = replace(debit_credit_mapping, skip_rows=2, delimiter=";", ocr_line_pattern=None)
        mapping_id = temp_db.create_mapping_config(config)

        stored = temp_db.get_mapping_config(mapping_id)

        assert isinstance(stored, entities.BankMappingConfig)
        assert stored.id == mapping_id
        assert stored.fields == config.fields
        assert stored.file_type == entities.FileType.CSV
        assert stored.amount_format == entities.AmountFormat.DEBIT_CREDIT
        assert stored.skip_rows == 2
        assert stored.delimiter == ";"
        assert isinstance(stored.created_at, datetime)

    def test_list_filters(self, temp_db, csv_mapping, debit_credit_mapping, pdf_mapping):
        anz_csv = temp_db.create_mapping_config(csv_mapping)
        temp_db.create_mapping_config(debit_credit_mapping)
        anz_pdf = temp_db.create_mapping_config(pdf_mapping)
        temp_db.set_mapping_config_active(anz_pdf, False)

        assert len(temp_db.list_mapping_configs()) == 3
        assert [m.id for m in temp_db.list_mapping_configs(bank_id="ANZ", active_only=True)] == [anz_csv]

    def test_missing(self, temp_db):
        assert temp_db.get_mapping_config(42) is None
        with pytest.raises(NotFoundError):
            temp_db.set_mapping_config_active(42, False)


class TestCategories:
    """Category and rule storage."""

    def test_category_with_rules(self, temp_db):
        category_id = temp_db.create_category("Groceries")
        temp_db.add_category_rule(
            category_id, entities.RuleField.MERCHANT, entities.RuleOperator.CONTAINS, "coles", 2.0
        )
        temp_db.add_category_rule(
            category_id, entities.RuleField.AMOUNT, entities.RuleOperator.AMOUNT_RANGE, "0:500"
        )

        category = temp_db.get_category(category_id)

        assert isinstance(category, entities.TransactionCategory)
        assert category.category_type == entities.CategoryType.EXPENSE
        assert [(r.field, r.value, r.weight) for r in category.rules] == [
            (entities.RuleField.MERCHANT, "coles", 2.0),
            (entities.RuleField.AMOUNT, "0:500", 1.0),
        ]
        assert temp_db.list_category_rules(category_id) == list(category.rules)

    def test_name_lookup_is_case_insensitive(self, temp_db):
        category_id = temp_db.create_category("Salary", entities.CategoryType.INCOME)
        assert temp_db.get_category_by_name("salary").id == category_id
        with pytest.raises(ConflictError):
            temp_db.create_category("SALARY")

    def test_list_sorted_by_name(self, temp_db):
        for name in ("Utilities", "Groceries", "Transport"):
            temp_db.create_category(name)
        assert [c.name for c in temp_db.list_categories()] == ["Groceries", "Transport", "Utilities"]

    def test_keywords(self, temp_db):
        category_id = temp_db.create_category("Rent/Mortgage", keywords=("rent", "mortgage"))
        assert temp_db.get_category(category_id).keywords == ("rent", "mortgage")

        temp_db.set_category_keywords(category_id, ["rent", "mortgage", "real estate"])
        assert temp_db.get_category_by_name("rent/mortgage").keywords == ("rent", "mortgage", "real estate")
        assert temp_db.get_category(temp_db.create_category("Other")).keywords == ()
        with pytest.raises(NotFoundError):
            temp_db.set_category_keywords(99, ["x"])

    def test_rule_for_missing_category(self, temp_db):
        with pytest.raises(NotFoundError):
            temp_db.add_category_rule(99, entities.RuleField.DESCRIPTION, entities.RuleOperator.CONTAINS, "x")


class TestStatements:
    """Statement storage."""

    def test_round_trip(self, temp_db, sample_statement):
        stored = temp_db.get_statement(sample_statement.id)

        assert isinstance(stored, entities.BankStatement)
        assert stored.status == entities.StatementStatus.PENDING
        assert stored.key_handle == sample_statement.key_handle
        assert stored.file_type == "csv"
        assert stored.transaction_count == 0

    def test_claim_only_once(self, temp_db, sample_statement):
        assert temp_db.claim_statement(sample_statement.id)
        assert temp_db.get_statement(sample_statement.id).status == entities.StatementStatus.PROCESSING

        assert not temp_db.claim_statement(sample_statement.id)
        assert not temp_db.claim_statement(999)

    def test_list_by_user(self, temp_db, sample_statement):
        temp_db.create_statement(replace(sample_statement, id=0, user_id="user-2"))
        assert [s.id for s in temp_db.list_statements(user_id="user-1")] == [sample_statement.id]
        assert len(temp_db.list_statements()) == 2
        assert temp_db.list_statements(since=date(2024, 3, 1)) == []


class TestSaveProcessingResult:
    """Statement snapshot, transactions and logs stored together."""

    def log(self, statement_id, sequence):
        return entities.ProcessingLog(
            statement_id=statement_id,
            sequence=sequence,
            step=entities.ProcessingStep.SAVING,
            status=entities.LogStatus.COMPLETED,
            message="Saved 1 transaction",
            created_at=datetime.now(UTC),
        )

    def test_saves_everything(self, temp_db, sample_statement, make_txn):
        finished = replace(
            sample_statement,
            status=entities.StatementStatus.COMPLETED,
            transaction_count=1,
            period_start=date(2024, 1, 2),
            period_end=date(2024, 1, 2),
            needs_review=True,
        )
        txn = make_txn(date(2024, 1, 2), "-85.50", "EFTPOS Woolworths", statement_id=sample_statement.id)

        temp_db.save_processing_result(finished, [txn], [self.log(sample_statement.id, 1)])

        stored = temp_db.get_statement(sample_statement.id)
        assert stored.status == entities.StatementStatus.COMPLETED
        assert stored.period_end == date(2024, 1, 2)
        assert stored.needs_review
        assert [t.id for t in temp_db.list_raw_transactions(statement_id=sample_statement.id)] == [txn.id]
        assert [log.sequence for log in temp_db.list_processing_logs(sample_statement.id)] == [1]

    def test_failed_write_stores_nothing(self, temp_db, sample_statement, make_txn):
        finished = replace(sample_statement, status=entities.StatementStatus.COMPLETED, transaction_count=1)
        txn = make_txn(date(2024, 1, 2), "-85.50", "EFTPOS Woolworths", statement_id=sample_statement.id)
        clashing = [self.log(sample_statement.id, 1), self.log(sample_statement.id, 1)]

        with pytest.raises(IntegrityError):
            temp_db.save_processing_result(finished, [txn], clashing)

        assert temp_db.get_statement(sample_statement.id).status == entities.StatementStatus.PENDING
        assert temp_db.list_raw_transactions(statement_id=sample_statement.id) == []
        assert temp_db.list_processing_logs(sample_statement.id) == []

        # The session is usable again after the rollback
        temp_db.save_processing_result(finished, [txn], [self.log(sample_statement.id, 1)])
        assert temp_db.get_statement(sample_statement.id).status == entities.StatementStatus.COMPLETED

    def test_missing_statement(self, temp_db, sample_statement):
        with pytest.raises(NotFoundError):
            temp_db.save_processing_result(replace(sample_statement, id=999), [], [])


class TestRawTransactions:
    """Raw transaction storage."""

    def store(self, temp_db, statement, transactions):
        temp_db.save_processing_result(statement, transactions, [])

    def test_round_trip(self, temp_db, sample_statement, make_txn):
        txn = replace(
            make_txn(date(2024, 1, 2), "-85.50", "EFTPOS Woolworths", statement_id=sample_statement.id),
            raw_data={"Date": "02/01/2024", "Amount": "-85.50"},
            row_number=2,
        )
        txn = replace(txn, parsed=replace(txn.parsed, balance=Decimal("914.50"), merchant="woolworths"))
        self.store(temp_db, sample_statement, [txn])

        stored = temp_db.get_raw_transaction(txn.id)

        assert isinstance(stored, entities.RawTransaction)
        assert stored.amount == Decimal("-85.50")
        assert stored.parsed.balance == Decimal("914.50")
        assert stored.parsed.merchant == "woolworths"
        assert stored.raw_data == {"Date": "02/01/2024", "Amount": "-85.50"}
        assert stored.row_number == 2
        assert stored.status == entities.TransactionStatus.PENDING

    def test_filters(self, temp_db, sample_statement, make_txn):
        other = temp_db.create_statement(replace(sample_statement, id=0))
        self.store(
            temp_db,
            sample_statement,
            [
                make_txn(date(2024, 1, 2), "-1.00", "A", statement_id=sample_statement.id),
                make_txn(date(2024, 1, 20), "-2.00", "B", statement_id=sample_statement.id),
                make_txn(date(2024, 1, 3), "-3.00", "C", statement_id=other),
                make_txn(date(2024, 1, 4), "-4.00", "D", statement_id=other, user_id="user-2"),
            ],
        )

        assert {t.description for t in temp_db.list_raw_transactions(statement_id=other)} == {"C", "D"}
        assert {t.description for t in temp_db.list_raw_transactions(user_id="user-1")} == {"A", "B", "C"}
        assert {
            t.description
            for t in temp_db.list_raw_transactions(user_id="user-1", exclude_statement_id=sample_statement.id)
        } == {"C"}
        assert {
            t.description
            for t in temp_db.list_raw_transactions(start_date=date(2024, 1, 3), end_date=date(2024, 1, 4))
        } == {"C", "D"}

    def test_update_category(self, temp_db, sample_statement, make_txn):
        txn = make_txn(date(2024, 1, 2), "-1.00", "A", statement_id=sample_statement.id)
        self.store(temp_db, sample_statement, [txn])
        category_id = temp_db.create_category("Groceries")

        temp_db.update_transaction_category(txn.id, category_id, 1.0)

        stored = temp_db.get_raw_transaction(txn.id)
        assert stored.suggested_category_id == category_id
        assert stored.category_confidence == 1.0
        with pytest.raises(NotFoundError):
            temp_db.update_transaction_category("missing", category_id, 1.0)


class TestProcessingLogs:
    def test_ordered_by_sequence(self, temp_db, sample_statement):
        logs = [
            entities.ProcessingLog(
                statement_id=sample_statement.id,
                sequence=sequence,
                step=entities.ProcessingStep.PARSING,
                status=entities.LogStatus.WARNING,
                message=f"Row {sequence}: Missing amount",
                details={"row": sequence},
                created_at=datetime.now(UTC),
            )
            for sequence in (2, 1, 3)
        ]
        temp_db.add_processing_logs(logs)

        stored = temp_db.list_processing_logs(sample_statement.id)

        assert [log.sequence for log in stored] == [1, 2, 3]
        assert stored[0].details == {"row": 1}
        assert stored[0].step == entities.ProcessingStep.PARSING
        assert temp_db.list_processing_logs(999) == []


class TestLearning:
    def test_save_learning_upserts(self, temp_db):
        category_id = temp_db.create_category("Entertainment")
        learning = entities.TransactionLearning(
            merchant="netflix",
            description_pattern="netflix #",
            category_id=category_id,
            confidence=0.7,
            occurrences=1,
            last_seen=datetime(2024, 2, 1, tzinfo=UTC),
        )
        mapping = entities.MerchantMapping(
            original_name="netflix",
            standardized_name="netflix",
            category_id=category_id,
            confidence=0.7,
            occurrences=1,
            is_verified=True,
        )
        temp_db.save_learning("user-1", learning, mapping)
        temp_db.save_learning("user-1", replace(learning, confidence=0.75, occurrences=2))

        (entry,) = temp_db.list_learning_entries("user-1")
        assert entry.occurrences == 2
        assert entry.confidence == 0.75
        (stored_mapping,) = temp_db.list_merchant_mappings("user-1")
        assert stored_mapping.is_verified
        assert stored_mapping.occurrences == 1
        assert temp_db.list_learning_entries("user-2") == []
