"""SQLAlchemy ORM models for factors, operations, versions, responses and postings"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    Float,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Factor(Base):
    """Counterparty institution that buys receivables"""

    __tablename__ = "factors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False)
    code = Column(String(40), nullable=True)
    default_interest_rate = Column(Float, nullable=False, default=0.0)
    default_fee_rate = Column(Float, nullable=False, default=0.0)
    default_iof_rate = Column(Float, nullable=False, default=0.0)
    default_other_cost_rate = Column(Float, nullable=False, default=0.0)
    default_grace_days = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    operations = relationship("FactorOperation", back_populates="factor")


class ReceivableInstallment(Base):
    """Accounts-receivable installment as exposed by the eligibility provider"""

    __tablename__ = "receivable_installments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title_number = Column(Text, nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="open")  # open | partial | overdue | paid | cancelled
    amount_open_cents = Column(BigInteger, nullable=False)
    custody_status = Column(Text, nullable=False, default="own")  # own | with_factor | repurchased
    factor_id = Column(UUID(as_uuid=True), ForeignKey("factors.id"), nullable=True)
    factor_assigned_at = Column(DateTime(timezone=True), nullable=True)
    factor_released_at = Column(DateTime(timezone=True), nullable=True)


class FactorOperation(Base):
    """Aggregate root of a discounting negotiation with one factor"""

    __tablename__ = "factor_operations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation_number = Column(Integer, nullable=False, unique=True)
    factor_id = Column(UUID(as_uuid=True), ForeignKey("factors.id"), nullable=False, index=True)
    reference = Column(String(80), nullable=True)
    issue_date = Column(Date, nullable=False)
    expected_settlement_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="draft", index=True)
    version_counter = Column(Integer, nullable=False, default=0)
    current_version_id = Column(UUID(as_uuid=True), nullable=True)
    gross_amount_cents = Column(BigInteger, nullable=False, default=0)
    costs_amount_cents = Column(BigInteger, nullable=False, default=0)
    net_amount_cents = Column(BigInteger, nullable=False, default=0)
    has_unversioned_changes = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    last_response_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    settlement_date = Column(Date, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    row_version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Compare-and-swap on every UPDATE; a concurrent writer raises StaleDataError
    __mapper_args__ = {"version_id_col": row_version}

    factor = relationship("Factor", back_populates="operations")
    items = relationship(
        "FactorOperationItem",
        back_populates="operation",
        order_by="FactorOperationItem.line_no",
        cascade="all, delete-orphan",
    )
    versions = relationship(
        "FactorOperationVersion",
        back_populates="operation",
        order_by="FactorOperationVersion.version_number",
        cascade="all, delete-orphan",
    )

    @property
    def live_items(self):
        return [item for item in self.items if item.removed_at is None]


class FactorOperationItem(Base):
    """Line of an operation's package"""

    __tablename__ = "factor_operation_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation_id = Column(
        UUID(as_uuid=True), ForeignKey("factor_operations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_no = Column(Integer, nullable=False)
    action_type = Column(Text, nullable=False)  # discount | buyback | due_date_change
    installment_id = Column(UUID(as_uuid=True), ForeignKey("receivable_installments.id"), nullable=False, index=True)
    title_number_snapshot = Column(Text, nullable=False)
    installment_number_snapshot = Column(Integer, nullable=False)
    due_date_snapshot = Column(Date, nullable=False)
    amount_snapshot_cents = Column(BigInteger, nullable=False)
    proposed_due_date = Column(Date, nullable=True)
    final_due_date = Column(Date, nullable=True)
    final_amount_cents = Column(BigInteger, nullable=True)
    status = Column(Text, nullable=False, default="pending")  # pending | accepted | rejected | adjusted
    removed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    operation = relationship("FactorOperation", back_populates="items")


class FactorOperationVersion(Base):
    """Immutable snapshot of the package sent to the factor"""

    __tablename__ = "factor_operation_versions"
    __table_args__ = (UniqueConstraint("operation_id", "version_number", name="uq_operation_version_number"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation_id = Column(
        UUID(as_uuid=True), ForeignKey("factor_operations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number = Column(Integer, nullable=False)
    source_status = Column(Text, nullable=False)
    total_items = Column(Integer, nullable=False)
    gross_amount_cents = Column(BigInteger, nullable=False)
    costs_amount_cents = Column(BigInteger, nullable=False)
    net_amount_cents = Column(BigInteger, nullable=False)
    snapshot = Column(JSON, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    operation = relationship("FactorOperation", back_populates="versions")
    items = relationship(
        "FactorOperationVersionItem",
        back_populates="version",
        order_by="FactorOperationVersionItem.line_no",
        cascade="all, delete-orphan",
    )


class FactorOperationVersionItem(Base):
    """Frozen copy of an operation item as captured by a version"""

    __tablename__ = "factor_operation_version_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    version_id = Column(
        UUID(as_uuid=True), ForeignKey("factor_operation_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    operation_item_id = Column(UUID(as_uuid=True), ForeignKey("factor_operation_items.id"), nullable=False)
    line_no = Column(Integer, nullable=False)
    action_type = Column(Text, nullable=False)
    installment_id = Column(UUID(as_uuid=True), nullable=False)
    title_number_snapshot = Column(Text, nullable=False)
    installment_number_snapshot = Column(Integer, nullable=False)
    due_date_snapshot = Column(Date, nullable=False)
    amount_snapshot_cents = Column(BigInteger, nullable=False)
    proposed_due_date = Column(Date, nullable=True)
    final_due_date = Column(Date, nullable=True)
    final_amount_cents = Column(BigInteger, nullable=True)
    status = Column(Text, nullable=False)

    version = relationship("FactorOperationVersion", back_populates="items")


class FactorOperationResponse(Base):
    """Factor determination for one item of one version"""

    __tablename__ = "factor_operation_responses"
    __table_args__ = (UniqueConstraint("operation_item_id", "version_id", name="uq_response_item_version"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation_id = Column(
        UUID(as_uuid=True), ForeignKey("factor_operations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    operation_item_id = Column(UUID(as_uuid=True), ForeignKey("factor_operation_items.id"), nullable=False)
    version_id = Column(UUID(as_uuid=True), ForeignKey("factor_operation_versions.id"), nullable=False, index=True)
    response_status = Column(Text, nullable=False)
    response_code = Column(String(40), nullable=True)
    response_message = Column(Text, nullable=True)
    accepted_amount_cents = Column(BigInteger, nullable=True)
    adjusted_amount_cents = Column(BigInteger, nullable=True)
    adjusted_due_date = Column(Date, nullable=True)
    fee_amount_cents = Column(BigInteger, nullable=False, default=0)
    interest_amount_cents = Column(BigInteger, nullable=False, default=0)
    iof_amount_cents = Column(BigInteger, nullable=False, default=0)
    other_cost_amount_cents = Column(BigInteger, nullable=False, default=0)
    total_cost_amount_cents = Column(BigInteger, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LedgerPosting(Base):
    """Append-only settlement posting; one per (operation, version, kind, category)"""

    __tablename__ = "ledger_postings"
    __table_args__ = (
        UniqueConstraint("operation_id", "version_id", "kind", "category", name="uq_posting_operation_version_kind"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    operation_id = Column(UUID(as_uuid=True), ForeignKey("factor_operations.id"), nullable=False, index=True)
    version_id = Column(UUID(as_uuid=True), ForeignKey("factor_operation_versions.id"), nullable=False)
    kind = Column(Text, nullable=False)  # ar_settlement | ap_entry | cost_entry
    category = Column(Text, nullable=False, default="none")  # none | fee | interest | iof | other
    amount_cents = Column(BigInteger, nullable=False)
    posting_key = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLogEntry(Base):
    """Append-only trail of every mutation"""

    __tablename__ = "factor_audit_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=False, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ImmutableRecordError(Exception):
    """Attempt to modify an append-only record"""


def _changed_attributes(target) -> set:
    state = inspect(target)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


@event.listens_for(FactorOperationVersion, "before_update")
def _guard_version_update(mapper, connection, target):
    changed = _changed_attributes(target)
    # The single allowed change is stamping sent_at once
    if changed - {"sent_at", "items", "operation"}:
        raise ImmutableRecordError(f"Version {target.id} is immutable: {sorted(changed)}")
    if "sent_at" in changed:
        history = inspect(target).attrs.sent_at.history
        if any(value is not None for value in history.deleted):
            raise ImmutableRecordError(f"Version {target.id} was already sent")


@event.listens_for(FactorOperationVersionItem, "before_update")
@event.listens_for(LedgerPosting, "before_update")
@event.listens_for(AuditLogEntry, "before_update")
def _guard_append_only_update(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} is append-only")


@event.listens_for(FactorOperationVersion, "before_delete")
@event.listens_for(FactorOperationVersionItem, "before_delete")
@event.listens_for(LedgerPosting, "before_delete")
@event.listens_for(AuditLogEntry, "before_delete")
def _guard_append_only_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} {target.id} cannot be deleted")
