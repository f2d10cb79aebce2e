"""Shared pytest fixtures for stmtflow tests."""

import tempfile
import os
import uuid
from datetime import date
from decimal import Decimal
import pytest

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from stmtflow.database.factories import create_sqlite_database
from stmtflow.domain.category import CategoryService
from stmtflow.domain.entities import (
    AmountFormat,
    BankMappingConfig,
    CategoryRule,
    CategoryType,
    FieldMapping,
    FileType,
    ParsedFields,
    RawTransaction,
    RuleField,
    RuleOperator,
    TransactionCategory,
)
from stmtflow.domain.mapping import MappingConfigService
from stmtflow.domain.statement import StatementService
from stmtflow.domain.vault import Vault, generate_key


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    # Create database
    db = create_sqlite_database(database_path=db_path)
    # Store the path for tests that need it
    db.database_path = db_path
    db.connect()
    db.initialize_schema()

    yield db

    # Cleanup
    db.disconnect()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def vault_keys():
    """Raw key material by key id."""
    return {"default": AESGCM.generate_key(bit_length=256)}


@pytest.fixture
def vault(vault_keys):
    """Vault backed by an in-memory key table."""
    return Vault(key_provider=lambda key_id: vault_keys[key_id])


@pytest.fixture
def vault_env(monkeypatch, tmp_path):
    """Configure vault key and storage through the environment, as the CLI reads them."""
    monkeypatch.setenv("STMTFLOW_VAULT_KEY", generate_key())
    monkeypatch.setenv("STMTFLOW_VAULT_DIR", str(tmp_path / "vault"))
    return tmp_path / "vault"


@pytest.fixture
def mapping_service(temp_db):
    """Create a MappingConfigService with a temporary database."""
    return MappingConfigService(temp_db)


@pytest.fixture
def category_service(temp_db):
    """Create a CategoryService with a temporary database."""
    return CategoryService(temp_db)


@pytest.fixture
def statement_service(temp_db, vault, tmp_path):
    """Create a StatementService sealing into a temporary directory."""
    return StatementService(temp_db, vault, tmp_path / "vault")


@pytest.fixture
def csv_mapping():
    """Mapping for a headered CSV with signed amounts."""
    return BankMappingConfig(
        id=1,
        bank_id="anz",
        bank_name="ANZ",
        file_type=FileType.CSV,
        fields=FieldMapping(date="Date", description="Description", amount="Amount"),
        date_format="DD/MM/YYYY",
        amount_format=AmountFormat.POSITIVE_NEGATIVE,
    )


@pytest.fixture
def debit_credit_mapping():
    """Mapping for a CSV with separate debit and credit columns."""
    return BankMappingConfig(
        id=2,
        bank_id="cba",
        bank_name="CommBank",
        file_type=FileType.CSV,
        fields=FieldMapping(date="Date", description="Narrative", debit="Debit", credit="Credit"),
        date_format="YYYY-MM-DD",
        amount_format=AmountFormat.DEBIT_CREDIT,
    )


@pytest.fixture
def pdf_mapping():
    """Mapping for scanned statements using the default line pattern."""
    return BankMappingConfig(
        id=3,
        bank_id="anz",
        bank_name="ANZ",
        file_type=FileType.PDF,
        fields=FieldMapping(date="date", description="description", amount="amount"),
        date_format="DD/MM/YYYY",
        amount_format=AmountFormat.POSITIVE_NEGATIVE,
    )


@pytest.fixture
def stored_csv_mapping(mapping_service):
    """Store the ANZ CSV mapping and return its ID."""
    return mapping_service.create_mapping(
        bank_id="anz",
        file_type="csv",
        fields=FieldMapping(date="Date", description="Description", amount="Amount"),
        date_format="DD/MM/YYYY",
        bank_name="ANZ",
    )


@pytest.fixture
def categories():
    """Two categories with weighted rules."""
    return [
        TransactionCategory(
            id=1,
            name="Groceries",
            rules=(
                CategoryRule(id=1, field=RuleField.MERCHANT, operator=RuleOperator.CONTAINS, value="woolworths", weight=1.0),
                CategoryRule(id=2, field=RuleField.DESCRIPTION, operator=RuleOperator.CONTAINS, value="supermarket", weight=1.0),
            ),
        ),
        TransactionCategory(
            id=2,
            name="Salary",
            category_type=CategoryType.INCOME,
            rules=(
                CategoryRule(id=3, field=RuleField.DESCRIPTION, operator=RuleOperator.CONTAINS, value="salary", weight=1.0),
            ),
        ),
    ]


@pytest.fixture
def make_txn():
    """Factory for raw transactions."""

    def factory(
        txn_date: date,
        amount: str,
        description: str,
        txn_id: str | None = None,
        statement_id: int = 1,
        user_id: str = "user-1",
        merchant: str | None = None,
    ) -> RawTransaction:
        return RawTransaction(
            id=txn_id or str(uuid.uuid4()),
            statement_id=statement_id,
            user_id=user_id,
            parsed=ParsedFields(
                date=txn_date, description=description, amount=Decimal(amount), merchant=merchant
            ),
        )

    return factory


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
