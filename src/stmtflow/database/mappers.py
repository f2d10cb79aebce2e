"""Mapper functions to convert between domain models and SQLAlchemy models.

This layer isolates the conversion logic so the schema can change without
touching the domain entities.
"""

from decimal import Decimal

from stmtflow.domain import entities as domain
from stmtflow.database.models import (
    BankMapping as ORMBankMapping,
    BankStatement as ORMBankStatement,
    Category as ORMCategory,
    CategoryRule as ORMCategoryRule,
    MerchantMapping as ORMMerchantMapping,
    ProcessingLog as ORMProcessingLog,
    RawTransaction as ORMRawTransaction,
    TransactionLearning as ORMTransactionLearning,
)


def mapping_config_to_domain(orm_mapping: ORMBankMapping) -> domain.BankMappingConfig:
    """Convert SQLAlchemy BankMapping model to domain BankMappingConfig entity."""
    return domain.BankMappingConfig(
        id=orm_mapping.id,
        bank_id=orm_mapping.bank_id,
        bank_name=orm_mapping.bank_name,
        file_type=domain.FileType(orm_mapping.file_type),
        fields=domain.FieldMapping(
            date=orm_mapping.date_field,
            description=orm_mapping.description_field,
            amount=orm_mapping.amount_field,
            debit=orm_mapping.debit_field,
            credit=orm_mapping.credit_field,
            balance=orm_mapping.balance_field,
            reference=orm_mapping.reference_field,
            type=orm_mapping.type_field,
        ),
        date_format=orm_mapping.date_format,
        amount_format=domain.AmountFormat(orm_mapping.amount_format),
        delimiter=orm_mapping.delimiter,
        header_row=orm_mapping.header_row,
        skip_rows=orm_mapping.skip_rows,
        encoding=orm_mapping.encoding,
        ocr_line_pattern=orm_mapping.ocr_line_pattern,
        is_active=orm_mapping.is_active,
        created_at=orm_mapping.created_at,
    )


def mapping_config_to_orm(config: domain.BankMappingConfig) -> ORMBankMapping:
    """Build a new SQLAlchemy BankMapping row from a domain config."""
    return ORMBankMapping(
        bank_id=config.bank_id,
        bank_name=config.bank_name,
        file_type=config.file_type.value,
        date_field=config.fields.date,
        description_field=config.fields.description,
        amount_field=config.fields.amount,
        debit_field=config.fields.debit,
        credit_field=config.fields.credit,
        balance_field=config.fields.balance,
        reference_field=config.fields.reference,
        type_field=config.fields.type,
        date_format=config.date_format,
        amount_format=config.amount_format.value,
        delimiter=config.delimiter,
        header_row=config.header_row,
        skip_rows=config.skip_rows,
        encoding=config.encoding,
        ocr_line_pattern=config.ocr_line_pattern,
        is_active=config.is_active,
    )


def rule_to_domain(orm_rule: ORMCategoryRule) -> domain.CategoryRule:
    """Convert SQLAlchemy CategoryRule model to domain CategoryRule entity."""
    return domain.CategoryRule(
        id=orm_rule.id,
        field=domain.RuleField(orm_rule.field),
        operator=domain.RuleOperator(orm_rule.operator),
        value=orm_rule.value,
        weight=orm_rule.weight,
        is_active=orm_rule.is_active,
    )


def category_to_domain(orm_category: ORMCategory) -> domain.TransactionCategory:
    """Convert SQLAlchemy Category model (with rules) to domain entity."""
    return domain.TransactionCategory(
        id=orm_category.id,
        name=orm_category.name,
        category_type=domain.CategoryType(orm_category.category_type),
        rules=tuple(rule_to_domain(rule) for rule in orm_category.rules),
        keywords=tuple(orm_category.keywords or ()),
        is_active=orm_category.is_active,
        created_at=orm_category.created_at,
    )


def statement_to_domain(orm_statement: ORMBankStatement) -> domain.BankStatement:
    """Convert SQLAlchemy BankStatement model to domain BankStatement entity."""
    return domain.BankStatement(
        id=orm_statement.id,
        user_id=orm_statement.user_id,
        bank_id=orm_statement.bank_id,
        file_name=orm_statement.file_name,
        file_type=orm_statement.file_type,
        encrypted_path=orm_statement.encrypted_path,
        key_handle=(
            domain.KeyHandle.from_token(orm_statement.key_handle) if orm_statement.key_handle else None
        ),
        status=domain.StatementStatus(orm_statement.status),
        period_start=orm_statement.period_start,
        period_end=orm_statement.period_end,
        transaction_count=orm_statement.transaction_count,
        last_error=orm_statement.last_error,
        needs_review=orm_statement.needs_review,
        uploaded_at=orm_statement.uploaded_at,
    )


def apply_statement(orm_statement: ORMBankStatement, statement: domain.BankStatement) -> None:
    """Copy a domain statement snapshot's fields onto a SQLAlchemy row."""
    orm_statement.user_id = statement.user_id
    orm_statement.bank_id = statement.bank_id
    orm_statement.file_name = statement.file_name
    orm_statement.file_type = statement.file_type
    orm_statement.encrypted_path = statement.encrypted_path
    orm_statement.key_handle = statement.key_handle.to_token() if statement.key_handle else None
    orm_statement.status = statement.status.value
    orm_statement.period_start = statement.period_start
    orm_statement.period_end = statement.period_end
    orm_statement.transaction_count = statement.transaction_count
    orm_statement.last_error = statement.last_error
    orm_statement.needs_review = statement.needs_review


def raw_transaction_to_domain(orm_txn: ORMRawTransaction) -> domain.RawTransaction:
    """Convert SQLAlchemy RawTransaction model to domain RawTransaction entity."""
    return domain.RawTransaction(
        id=orm_txn.id,
        statement_id=orm_txn.statement_id,
        user_id=orm_txn.user_id,
        parsed=domain.ParsedFields(
            date=orm_txn.date,
            description=orm_txn.description,
            amount=Decimal(orm_txn.amount),
            balance=Decimal(orm_txn.balance) if orm_txn.balance is not None else None,
            reference=orm_txn.reference,
            merchant=orm_txn.merchant,
        ),
        raw_data=dict(orm_txn.raw_data or {}),
        row_number=orm_txn.row_number,
        is_duplicate=orm_txn.is_duplicate,
        duplicate_of=orm_txn.duplicate_of,
        status=domain.TransactionStatus(orm_txn.status),
        suggested_category_id=orm_txn.suggested_category_id,
        category_confidence=orm_txn.category_confidence,
        created_at=orm_txn.created_at,
    )


def raw_transaction_to_orm(txn: domain.RawTransaction) -> ORMRawTransaction:
    """Build a SQLAlchemy RawTransaction row from a domain transaction."""
    return ORMRawTransaction(
        id=txn.id,
        statement_id=txn.statement_id,
        user_id=txn.user_id,
        date=txn.parsed.date,
        description=txn.parsed.description,
        amount=txn.parsed.amount,
        balance=txn.parsed.balance,
        reference=txn.parsed.reference,
        merchant=txn.parsed.merchant,
        raw_data={key: str(value) if value is not None else None for key, value in txn.raw_data.items()},
        row_number=txn.row_number,
        is_duplicate=txn.is_duplicate,
        duplicate_of=txn.duplicate_of,
        status=txn.status.value,
        suggested_category_id=txn.suggested_category_id,
        category_confidence=txn.category_confidence,
    )


def processing_log_to_domain(orm_log: ORMProcessingLog) -> domain.ProcessingLog:
    """Convert SQLAlchemy ProcessingLog model to domain ProcessingLog entity."""
    return domain.ProcessingLog(
        id=orm_log.id,
        statement_id=orm_log.statement_id,
        sequence=orm_log.sequence,
        step=domain.ProcessingStep(orm_log.step),
        status=domain.LogStatus(orm_log.status),
        message=orm_log.message,
        details=dict(orm_log.details or {}),
        created_at=orm_log.created_at,
    )


def processing_log_to_orm(log: domain.ProcessingLog) -> ORMProcessingLog:
    """Convert a domain ProcessingLog entry to a new SQLAlchemy row."""
    return ORMProcessingLog(
        statement_id=log.statement_id,
        sequence=log.sequence,
        step=log.step.value,
        status=log.status.value,
        message=log.message,
        details=log.details,
        created_at=log.created_at,
    )


def merchant_mapping_to_domain(orm_mapping: ORMMerchantMapping) -> domain.MerchantMapping:
    """Convert SQLAlchemy MerchantMapping model to domain MerchantMapping entity."""
    return domain.MerchantMapping(
        id=orm_mapping.id,
        original_name=orm_mapping.original_name,
        standardized_name=orm_mapping.standardized_name,
        category_id=orm_mapping.category_id,
        confidence=orm_mapping.confidence,
        occurrences=orm_mapping.occurrences,
        is_verified=orm_mapping.is_verified,
    )


def learning_to_domain(orm_learning: ORMTransactionLearning) -> domain.TransactionLearning:
    """Convert SQLAlchemy TransactionLearning model to domain TransactionLearning entity."""
    return domain.TransactionLearning(
        id=orm_learning.id,
        merchant=orm_learning.merchant,
        description_pattern=orm_learning.description_pattern,
        category_id=orm_learning.category_id,
        confidence=orm_learning.confidence,
        occurrences=orm_learning.occurrences,
        last_seen=orm_learning.last_seen,
    )
