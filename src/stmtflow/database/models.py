"""SQLAlchemy models for stmtflow database."""

from datetime import datetime, UTC
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    Float,
    String,
    Text,
    ForeignKey,
    DateTime,
    Date,
    Numeric,
    Boolean,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, Session

Base = declarative_base()


class BankMapping(Base):
    """Per-bank statement mapping config model."""

    __tablename__ = "bank_mappings"

    id = Column(Integer, primary_key=True)
    bank_id = Column(String, nullable=False, index=True)
    bank_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    date_field = Column(String, nullable=False)
    description_field = Column(String, nullable=False)
    amount_field = Column(String, nullable=True)
    debit_field = Column(String, nullable=True)
    credit_field = Column(String, nullable=True)
    balance_field = Column(String, nullable=True)
    reference_field = Column(String, nullable=True)
    type_field = Column(String, nullable=True)
    date_format = Column(String, nullable=False)
    amount_format = Column(String, nullable=False)
    delimiter = Column(String(1), default=",", nullable=False)
    header_row = Column(Integer, default=1, nullable=False)
    skip_rows = Column(Integer, default=0, nullable=False)
    encoding = Column(String, default="utf-8-sig", nullable=False)
    ocr_line_pattern = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)


class Category(Base):
    """Transaction category model."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    category_type = Column(String, default="expense", nullable=False)
    keywords = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

    # Relationships
    rules = relationship(
        "CategoryRule",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="CategoryRule.id",
    )


class CategoryRule(Base):
    """Weighted categorization rule model."""

    __tablename__ = "category_rules"

    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    field = Column(String, nullable=False)
    operator = Column(String, nullable=False)
    value = Column(String, nullable=False)
    weight = Column(Float, default=1.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    category = relationship("Category", back_populates="rules")


class BankStatement(Base):
    """Uploaded statement model."""

    __tablename__ = "bank_statements"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    bank_id = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    encrypted_path = Column(String, nullable=False)
    key_handle = Column(String, nullable=True)
    status = Column(String, default="pending", nullable=False)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    transaction_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    needs_review = Column(Boolean, default=False, nullable=False)
    uploaded_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

    # Relationships
    transactions = relationship("RawTransaction", back_populates="statement", cascade="all, delete-orphan")
    logs = relationship("ProcessingLog", back_populates="statement", cascade="all, delete-orphan")


class RawTransaction(Base):
    """Parsed transaction candidate model."""

    __tablename__ = "raw_transactions"

    id = Column(String(36), primary_key=True)
    statement_id = Column(Integer, ForeignKey("bank_statements.id"), nullable=False)
    user_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    description = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance = Column(Numeric(12, 2), nullable=True)
    reference = Column(String, nullable=True)
    merchant = Column(String, nullable=True)
    raw_data = Column(JSON, nullable=False, default=dict)
    row_number = Column(Integer, nullable=True)
    is_duplicate = Column(Boolean, default=False, nullable=False)
    duplicate_of = Column(String(36), nullable=True)
    status = Column(String, default="pending", nullable=False)
    suggested_category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    category_confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

    # Relationships
    statement = relationship("BankStatement", back_populates="transactions")


class ProcessingLog(Base):
    """Append-only processing audit entry model."""

    __tablename__ = "processing_logs"

    id = Column(Integer, primary_key=True)
    statement_id = Column(Integer, ForeignKey("bank_statements.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    step = Column(String, nullable=False)
    status = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

    __table_args__ = (UniqueConstraint("statement_id", "sequence", name="uq_statement_sequence"),)

    # Relationships
    statement = relationship("BankStatement", back_populates="logs")


class MerchantMapping(Base):
    """Learned merchant to category mapping model."""

    __tablename__ = "merchant_mappings"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    standardized_name = Column(String, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    confidence = Column(Float, nullable=False)
    occurrences = Column(Integer, default=1, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "original_name", name="uq_user_merchant"),)


class TransactionLearning(Base):
    """Learned transaction pattern model."""

    __tablename__ = "transaction_learning"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    merchant = Column(String, nullable=False)
    description_pattern = Column(String, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    confidence = Column(Float, nullable=False)
    occurrences = Column(Integer, default=1, nullable=False)
    last_seen = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "merchant", "description_pattern", name="uq_user_pattern"),
    )


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
