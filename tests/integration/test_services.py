"""Integration tests for operation services against the test database"""

import uuid
import pytest
from datetime import date, timedelta
from sqlalchemy.orm import sessionmaker
from factor_engine.config import settings
from factor_engine.domain.exceptions import (
    DuplicatePostingError,
    LedgerWriteFailure,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from factor_engine.domain.models import CostCategory, ItemAction, ItemResponse, ResponseStatus
from factor_engine.infrastructure.database.models import (
    AuditLogEntry,
    FactorOperationVersion,
    ImmutableRecordError,
    LedgerPosting,
    ReceivableInstallment,
)
from factor_engine.infrastructure.database.session import atomic
from factor_engine.infrastructure.ledger import SqlLedger
from factor_engine.services.assembler import ItemAssembler
from factor_engine.services.reconciler import ResponseReconciler
from factor_engine.services.registry import OperationRegistry
from factor_engine.services.settlement import SettlementPostingGenerator
from factor_engine.services.versions import VersionEngine


def accept_all(db, operation, **costs):
    version_id = operation.current_version_id
    version = VersionEngine(db).get_version(operation.id, version_id)
    responses = [
        ItemResponse(item_id=item.operation_item_id, response_status=ResponseStatus.ACCEPTED, **costs)
        for item in version.items
    ]
    return ResponseReconciler(db).apply_responses(operation.id, version_id, responses)


@pytest.fixture
def sent_operation(db, draft_operation, make_installment):
    """Draft with one discount item of 1000.00, versioned and sent"""
    installment = make_installment(100000)
    ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, installment.id)
    VersionEngine(db).generate_version(draft_operation.id)
    return OperationRegistry(db).send_to_factor(draft_operation.id)


# Registry


def test_create_operation_requires_factor(db):
    """Test operation without factor is rejected"""
    with pytest.raises(ValidationError) as exc_info:
        OperationRegistry(db).create_operation(None)

    assert exc_info.value.field == "factor_id"


def test_create_operation_unknown_factor(db):
    """Test operation for a factor that does not exist"""
    with pytest.raises(NotFoundError):
        OperationRegistry(db).create_operation(uuid.uuid4())


def test_operation_numbers_are_sequential(db, factor):
    """Test operation numbers increase per operation"""
    registry = OperationRegistry(db)
    first = registry.create_operation(factor.id)
    second = registry.create_operation(factor.id)

    assert first.operation_number == 1
    assert second.operation_number == 2
    assert first.status == "draft"
    assert first.issue_date == date.today()


def test_create_factor_validates_name_and_rates(db):
    """Test factor master data validation"""
    registry = OperationRegistry(db)

    with pytest.raises(ValidationError) as exc_info:
        registry.create_factor(" A ")
    assert exc_info.value.field == "name"

    with pytest.raises(ValidationError) as exc_info:
        registry.create_factor("Factor Two", default_fee_rate=120.0)
    assert exc_info.value.field == "default_fee_rate"


def test_update_factor(db, factor):
    """Test factor fields can be changed"""
    updated = OperationRegistry(db).update_factor(factor.id, default_grace_days=5, is_active=False)

    assert updated.default_grace_days == 5
    assert updated.is_active is False


def test_update_operation_metadata_only_while_editable(db, sent_operation):
    """Test metadata edits are blocked once sent"""
    with pytest.raises(StateConflictError):
        OperationRegistry(db).update_operation(sent_operation.id, notes="late change")


def test_send_without_version_rejected(db, draft_operation, make_installment):
    """Test sending requires a generated version"""
    installment = make_installment(50000)
    ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, installment.id)

    with pytest.raises(StateConflictError) as exc_info:
        OperationRegistry(db).send_to_factor(draft_operation.id)

    assert exc_info.value.code == "MISSING_VERSION"


def test_send_with_stale_version_rejected(db, draft_operation, make_installment):
    """Test item edits after the last version block sending"""
    assembler = ItemAssembler(db)
    assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(50000).id)
    VersionEngine(db).generate_version(draft_operation.id)
    assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(30000).id)

    with pytest.raises(StateConflictError) as exc_info:
        OperationRegistry(db).send_to_factor(draft_operation.id)

    assert exc_info.value.code == "STALE_VERSION"


def test_send_stamps_version(db, sent_operation):
    """Test sending moves status and stamps the version"""
    version = VersionEngine(db).get_version(sent_operation.id, sent_operation.current_version_id)

    assert sent_operation.status == "sent_to_factor"
    assert sent_operation.sent_at is not None
    assert version.sent_at is not None


@pytest.mark.parametrize("reason", [None, "", "ok", "  ok  "])
def test_cancel_reason_too_short(db, draft_operation, reason):
    """Test short cancel reasons are rejected"""
    with pytest.raises(ValidationError) as exc_info:
        OperationRegistry(db).cancel_operation(draft_operation.id, reason)

    assert exc_info.value.code == "CANCEL_REASON_TOO_SHORT"
    db.refresh(draft_operation)
    assert draft_operation.status == "draft"


def test_cancel_reason_minimum_is_not_configurable(db, draft_operation):
    """Test three characters is the fixed minimum whatever the environment"""
    assert not hasattr(settings, "min_cancel_reason_length")

    cancelled = OperationRegistry(db).cancel_operation(draft_operation.id, " dup ")

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "dup"

def test_cancel_reason_checked_before_status(db, draft_operation):
    """Test cancelled operation still reports the short reason first"""
    registry = OperationRegistry(db)
    registry.cancel_operation(draft_operation.id, "duplicate entry")

    with pytest.raises(ValidationError):
        registry.cancel_operation(draft_operation.id, "no")

    with pytest.raises(StateConflictError) as exc_info:
        registry.cancel_operation(draft_operation.id, "again please")
    assert exc_info.value.code == "OPERATION_TERMINAL"


def test_cancel_sent_operation(db, sent_operation):
    """Test cancellation from sent_to_factor"""
    cancelled = OperationRegistry(db).cancel_operation(sent_operation.id, "factor declined package")

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "factor declined package"
    assert cancelled.cancelled_at is not None


# Item assembler


def test_line_numbers_stay_dense(db, draft_operation, make_installment):
    """Test removal renumbers the remaining items 1..n"""
    assembler = ItemAssembler(db)
    items = [
        assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(10000 * (n + 1)).id)
        for n in range(3)
    ]

    assembler.remove_item(draft_operation.id, items[0].id)

    db.refresh(draft_operation)
    live = draft_operation.live_items
    assert [item.line_no for item in live] == [1, 2]
    assert [item.id for item in live] == [items[1].id, items[2].id]


def test_snapshot_is_copied_at_add_time(db, draft_operation, make_installment):
    """Test later installment changes do not touch the snapshot"""
    installment = make_installment(75000)
    item = ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, installment.id)

    installment.amount_open_cents = 10
    db.commit()

    assert item.amount_snapshot_cents == 75000
    assert item.title_number_snapshot == installment.title_number
    assert item.status == "pending"


def test_installment_in_active_operation_rejected(db, factor, draft_operation, make_installment):
    """Test an installment cannot sit in two active operations"""
    installment = make_installment(50000)
    ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, installment.id)
    other = OperationRegistry(db).create_operation(factor.id)

    with pytest.raises(ValidationError) as exc_info:
        ItemAssembler(db).add_item(other.id, ItemAction.DISCOUNT, installment.id)

    assert exc_info.value.code == "INSTALLMENT_IN_ACTIVE_OPERATION"


def test_installment_free_after_cancel(db, factor, draft_operation, make_installment):
    """Test cancelled operations release their installments"""
    installment = make_installment(50000)
    ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, installment.id)
    OperationRegistry(db).cancel_operation(draft_operation.id, "duplicate entry")
    other = OperationRegistry(db).create_operation(factor.id)

    item = ItemAssembler(db).add_item(other.id, ItemAction.DISCOUNT, installment.id)

    assert item.line_no == 1


def test_ineligible_installment_rejected(db, draft_operation, make_installment):
    """Test paid installment cannot be discounted"""
    installment = make_installment(50000, status="paid")

    with pytest.raises(ValidationError) as exc_info:
        ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, installment.id)

    assert exc_info.value.code == "ITEM_NOT_ELIGIBLE"


def test_no_item_edits_after_send(db, sent_operation, make_installment):
    """Test sent operations are not editable"""
    with pytest.raises(StateConflictError) as exc_info:
        ItemAssembler(db).add_item(sent_operation.id, ItemAction.DISCOUNT, make_installment(1000).id)

    assert exc_info.value.code == "OPERATION_NOT_EDITABLE"

    item = sent_operation.live_items[0]
    with pytest.raises(StateConflictError):
        ItemAssembler(db).remove_item(sent_operation.id, item.id)


def test_remove_unknown_item(db, draft_operation):
    """Test removing an item that is not in the operation"""
    with pytest.raises(NotFoundError):
        ItemAssembler(db).remove_item(draft_operation.id, uuid.uuid4())


# Versions


def test_version_of_empty_operation_rejected(db, draft_operation):
    """Test at least one item is needed for a version"""
    with pytest.raises(ValidationError) as exc_info:
        VersionEngine(db).generate_version(draft_operation.id)

    assert exc_info.value.code == "OPERATION_EMPTY"


def test_version_numbers_are_dense(db, draft_operation, make_installment):
    """Test versions are numbered 1..n and freeze the items"""
    assembler = ItemAssembler(db)
    engine = VersionEngine(db)
    assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(100000).id)
    first = engine.generate_version(draft_operation.id)
    assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(50000).id)
    second = engine.generate_version(draft_operation.id)

    versions = engine.list_versions(draft_operation.id)
    assert [v.version_number for v in versions] == [1, 2]
    assert first.gross_amount_cents == 100000
    assert first.total_items == 1
    assert second.gross_amount_cents == 150000
    assert second.net_amount_cents == 150000
    assert second.costs_amount_cents == 0
    assert len(second.items) == 2

    db.refresh(draft_operation)
    assert draft_operation.version_counter == 2
    assert draft_operation.current_version_id == second.id
    assert draft_operation.has_unversioned_changes is False


def test_version_not_found_for_other_operation(db, factor, sent_operation):
    """Test a version id is scoped to its operation"""
    other = OperationRegistry(db).create_operation(factor.id)

    with pytest.raises(NotFoundError):
        VersionEngine(db).get_version(other.id, sent_operation.current_version_id)


def test_versions_are_immutable(db, sent_operation):
    """Test persisted versions reject updates"""
    version = db.get(FactorOperationVersion, sent_operation.current_version_id)
    version.gross_amount_cents = 1

    with pytest.raises(ImmutableRecordError):
        db.commit()
    db.rollback()


def test_version_sent_at_stamped_once(db, sent_operation):
    """Test sent_at cannot be overwritten"""
    version = db.get(FactorOperationVersion, sent_operation.current_version_id)
    version.sent_at = version.sent_at + timedelta(days=1)

    with pytest.raises(ImmutableRecordError):
        db.commit()
    db.rollback()


# Responses


def test_responses_require_sent_status(db, draft_operation, make_installment):
    """Test responses cannot be applied to a draft"""
    item = ItemAssembler(db).add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(1000).id)
    version = VersionEngine(db).generate_version(draft_operation.id)

    with pytest.raises(StateConflictError) as exc_info:
        ResponseReconciler(db).apply_responses(
            draft_operation.id, version.id, [ItemResponse(item_id=item.id, response_status=ResponseStatus.ACCEPTED)]
        )

    assert exc_info.value.code == "OPERATION_RESPONSE_INVALID_STATUS"


def test_missing_response_leaves_state_untouched(db, draft_operation, make_installment):
    """Test partial response sets are rejected without writes"""
    assembler = ItemAssembler(db)
    first = assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(1000).id)
    assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, make_installment(2000).id)
    version = VersionEngine(db).generate_version(draft_operation.id)
    OperationRegistry(db).send_to_factor(draft_operation.id)

    with pytest.raises(ValidationError) as exc_info:
        ResponseReconciler(db).apply_responses(
            draft_operation.id, version.id, [ItemResponse(item_id=first.id, response_status=ResponseStatus.ACCEPTED)]
        )

    assert exc_info.value.code == "MISSING_ITEM_RESPONSE"
    db.refresh(draft_operation)
    assert draft_operation.status == "sent_to_factor"
    assert draft_operation.last_response_at is None
    assert OperationRegistry(db).get_operation_detail(draft_operation.id).responses == []


def test_all_accepted_keeps_sent_status(db, sent_operation):
    """Test fully accepted package stays with the factor"""
    operation = accept_all(db, sent_operation, fee_amount_cents=2000)

    assert operation.status == "sent_to_factor"
    assert operation.costs_amount_cents == 2000
    assert operation.net_amount_cents == 98000
    assert operation.live_items[0].status == "accepted"
    assert operation.live_items[0].final_amount_cents == 100000


def test_reapplying_responses_overwrites(db, sent_operation):
    """Test a second response set replaces the first for the same version"""
    item_id = sent_operation.live_items[0].id
    version_id = sent_operation.current_version_id
    reconciler = ResponseReconciler(db)
    reconciler.apply_responses(
        sent_operation.id, version_id, [ItemResponse(item_id=item_id, response_status=ResponseStatus.REJECTED)]
    )

    operation = reconciler.apply_responses(
        sent_operation.id,
        version_id,
        [ItemResponse(item_id=item_id, response_status=ResponseStatus.ACCEPTED, fee_amount_cents=100)],
    )

    detail = OperationRegistry(db).get_operation_detail(operation.id)
    assert operation.status == "sent_to_factor"
    assert len(detail.responses) == 1
    assert detail.responses[0].response_status == "accepted"
    assert detail.ready_to_conclude is True


def test_responses_for_superseded_version_rejected(db, sent_operation, make_installment):
    """Test responses must target the current version"""
    first_version = sent_operation.current_version_id
    item_id = sent_operation.live_items[0].id
    ResponseReconciler(db).apply_responses(
        sent_operation.id, first_version, [ItemResponse(item_id=item_id, response_status=ResponseStatus.REJECTED)]
    )
    ItemAssembler(db).remove_item(sent_operation.id, item_id)
    ItemAssembler(db).add_item(sent_operation.id, ItemAction.DISCOUNT, make_installment(5000).id)
    VersionEngine(db).generate_version(sent_operation.id)

    with pytest.raises(StateConflictError) as exc_info:
        ResponseReconciler(db).apply_responses(
            sent_operation.id, first_version, [ItemResponse(item_id=item_id, response_status=ResponseStatus.ACCEPTED)]
        )

    assert exc_info.value.code == "VERSION_SUPERSEDED"


def test_rejected_items_block_new_version(db, sent_operation):
    """Test rejected items must be removed before regenerating"""
    item_id = sent_operation.live_items[0].id
    ResponseReconciler(db).apply_responses(
        sent_operation.id,
        sent_operation.current_version_id,
        [ItemResponse(item_id=item_id, response_status=ResponseStatus.REJECTED)],
    )

    with pytest.raises(ValidationError) as exc_info:
        VersionEngine(db).generate_version(sent_operation.id)

    assert exc_info.value.code == "REJECTED_ITEMS_PRESENT"


# Settlement


def test_conclude_draft_rejected(db, draft_operation):
    """Test draft operations cannot be concluded"""
    with pytest.raises(StateConflictError) as exc_info:
        SettlementPostingGenerator(db).conclude(draft_operation.id)

    assert exc_info.value.code == "OPERATION_CONCLUDE_INVALID_STATUS"


def test_conclude_without_responses_rejected(db, sent_operation):
    """Test conclusion requires a response for every item"""
    with pytest.raises(ValidationError) as exc_info:
        SettlementPostingGenerator(db).conclude(sent_operation.id)

    assert exc_info.value.code == "MISSING_ITEM_RESPONSE"
    assert db.query(LedgerPosting).count() == 0


def test_conclude_posts_and_moves_custody(db, sent_operation):
    """Test conclusion posts AR and costs and hands the installment to the factor"""
    accept_all(db, sent_operation, fee_amount_cents=2000, iof_amount_cents=300)

    result = SettlementPostingGenerator(db).conclude(sent_operation.id, settlement_date=date(2030, 1, 31))

    assert result.idempotent is False
    assert result.operation.status == "completed"
    assert result.operation.settlement_date == date(2030, 1, 31)
    assert result.operation.completed_at is not None
    postings = {(p.kind, p.category): p.amount_cents for p in result.postings}
    assert postings == {
        ("ar_settlement", "none"): 100000,
        ("cost_entry", "fee"): 2000,
        ("cost_entry", "iof"): 300,
    }

    installment = db.get(ReceivableInstallment, sent_operation.live_items[0].installment_id)
    assert installment.custody_status == "with_factor"
    assert installment.factor_id == sent_operation.factor_id


def test_double_conclude_is_idempotent(db, sent_operation):
    """Test second conclusion writes nothing"""
    accept_all(db, sent_operation, fee_amount_cents=2000)
    generator = SettlementPostingGenerator(db)
    first = generator.conclude(sent_operation.id)

    second = generator.conclude(sent_operation.id)

    assert second.idempotent is True
    assert second.operation.status == "completed"
    assert second.totals is None
    assert len(second.postings) == len(first.postings)
    assert db.query(LedgerPosting).count() == 2
    assert db.query(AuditLogEntry).filter(AuditLogEntry.action == "factor_operation_completed").count() == 1


def test_ledger_failure_rolls_back_conclusion(db, sent_operation):
    """Test a failing ledger leaves status and custody unchanged"""
    accept_all(db, sent_operation)

    class FailingLedger(SqlLedger):
        def post_ar_settlement(self, amount_cents, operation_id, version_id):
            raise LedgerWriteFailure("ledger offline")

    with pytest.raises(LedgerWriteFailure):
        SettlementPostingGenerator(db, ledger=FailingLedger(db)).conclude(sent_operation.id)

    db.refresh(sent_operation)
    assert sent_operation.status == "sent_to_factor"
    assert db.query(LedgerPosting).count() == 0
    installment = db.get(ReceivableInstallment, sent_operation.live_items[0].installment_id)
    assert installment.custody_status == "own"


def test_due_date_change_applies_final_date(db, factor, draft_operation, make_installment):
    """Test accepted due date change moves the installment due date"""
    installment = make_installment(30000, custody_status="with_factor", factor_id=factor.id)
    proposed = date.today() + timedelta(days=60)
    ItemAssembler(db).add_item(draft_operation.id, ItemAction.DUE_DATE_CHANGE, installment.id, proposed)
    VersionEngine(db).generate_version(draft_operation.id)
    operation = OperationRegistry(db).send_to_factor(draft_operation.id)
    accept_all(db, operation, interest_amount_cents=150)

    result = SettlementPostingGenerator(db).conclude(operation.id)

    assert [(p.kind, p.category) for p in result.postings] == [("cost_entry", "interest")]
    db.refresh(installment)
    assert installment.due_date == proposed
    assert installment.custody_status == "with_factor"


@pytest.fixture
def adjusted_operation(db, draft_operation, make_installment):
    """A accepted and B adjusted on version 1, then B removed from the package"""
    installment_a = make_installment(100000)
    installment_b = make_installment(50000)
    assembler = ItemAssembler(db)
    assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, installment_a.id)
    item_b = assembler.add_item(draft_operation.id, ItemAction.DISCOUNT, installment_b.id)
    VersionEngine(db).generate_version(draft_operation.id)
    OperationRegistry(db).send_to_factor(draft_operation.id)
    version_id = draft_operation.current_version_id
    item_a_id = draft_operation.live_items[0].id
    ResponseReconciler(db).apply_responses(
        draft_operation.id,
        version_id,
        [
            ItemResponse(item_id=item_a_id, response_status=ResponseStatus.ACCEPTED),
            ItemResponse(
                item_id=item_b.id,
                response_status=ResponseStatus.ADJUSTED,
                adjusted_amount_cents=48000,
                adjusted_due_date=date.today() + timedelta(days=45),
            ),
        ],
    )
    assembler.remove_item(draft_operation.id, item_b.id)
    return draft_operation, version_id, item_a_id, item_b.id, installment_b


def test_conclude_after_item_edits_rejected(db, factor, adjusted_operation):
    """Test an edited package cannot settle until a new version is answered"""
    operation, _, _, _, installment_b = adjusted_operation
    other = OperationRegistry(db).create_operation(factor.id)
    ItemAssembler(db).add_item(other.id, ItemAction.DISCOUNT, installment_b.id)

    with pytest.raises(StateConflictError) as exc_info:
        SettlementPostingGenerator(db).conclude(operation.id)

    assert exc_info.value.code == "STALE_VERSION"
    assert db.query(LedgerPosting).count() == 0
    db.refresh(operation)
    db.refresh(installment_b)
    assert operation.status == "in_adjustment"
    assert installment_b.custody_status == "own"
    assert installment_b.factor_id is None


def test_responses_after_item_edits_rejected(db, adjusted_operation):
    """Test re-applied responses cannot resolve an edited package"""
    operation, version_id, item_a_id, item_b_id, _ = adjusted_operation

    with pytest.raises(StateConflictError) as exc_info:
        ResponseReconciler(db).apply_responses(
            operation.id,
            version_id,
            [
                ItemResponse(item_id=item_a_id, response_status=ResponseStatus.ACCEPTED),
                ItemResponse(item_id=item_b_id, response_status=ResponseStatus.ACCEPTED),
            ],
        )

    assert exc_info.value.code == "STALE_VERSION"
    db.refresh(operation)
    assert operation.status == "in_adjustment"


def test_reworked_package_settles_live_items_only(db, factor, adjusted_operation):
    """Test removed items stay out of the settlement once the package is re-versioned"""
    operation, _, _, _, installment_b = adjusted_operation
    other = OperationRegistry(db).create_operation(factor.id)
    ItemAssembler(db).add_item(other.id, ItemAction.DISCOUNT, installment_b.id)
    VersionEngine(db).generate_version(operation.id)
    OperationRegistry(db).send_to_factor(operation.id)
    accept_all(db, operation)

    result = SettlementPostingGenerator(db).conclude(operation.id)

    assert {(p.kind, p.category): p.amount_cents for p in result.postings} == {("ar_settlement", "none"): 100000}
    db.refresh(installment_b)
    assert installment_b.custody_status == "own"
    db.refresh(other)
    assert other.status == "draft"
    assert [item.installment_id for item in other.live_items] == [installment_b.id]


# Ledger


def test_ledger_rejects_duplicate_posting(db, sent_operation):
    """Test the ledger refuses a second posting with the same key"""
    ledger = SqlLedger(db)
    version_id = sent_operation.current_version_id
    ledger.post_ar_settlement(1000, sent_operation.id, version_id)

    with pytest.raises(DuplicatePostingError):
        ledger.post_ar_settlement(1000, sent_operation.id, version_id)
    db.rollback()


def test_ledger_cost_categories_are_distinct_keys(db, sent_operation):
    """Test one cost posting per category"""
    ledger = SqlLedger(db)
    version_id = sent_operation.current_version_id
    ledger.post_cost_entry(100, CostCategory.FEE, sent_operation.id, version_id)
    ledger.post_cost_entry(200, CostCategory.INTEREST, sent_operation.id, version_id)
    db.commit()

    assert len(ledger.list_postings(sent_operation.id)) == 2


def test_ledger_rejects_non_positive_amount(db, sent_operation):
    """Test zero postings are refused"""
    with pytest.raises(LedgerWriteFailure):
        SqlLedger(db).post_ap_entry(0, sent_operation.id, sent_operation.current_version_id)


def test_postings_are_append_only(db, sent_operation):
    """Test posted amounts cannot be edited"""
    posting = SqlLedger(db).post_ar_settlement(1000, sent_operation.id, sent_operation.current_version_id)
    db.commit()
    posting.amount_cents = 1

    with pytest.raises(ImmutableRecordError):
        db.commit()
    db.rollback()


# Concurrency


def test_concurrent_modification_surfaces_as_conflict(db, draft_operation):
    """Test a lost compare-and-swap race maps to StateConflictError"""
    other_session = sessionmaker(bind=db.get_bind(), autoflush=False)()
    try:
        stale = OperationRegistry(other_session).get_operation(draft_operation.id)
        OperationRegistry(db).update_operation(draft_operation.id, notes="first writer")

        with pytest.raises(StateConflictError) as exc_info:
            with atomic(other_session):
                stale.notes = "second writer"

        assert exc_info.value.code == "CONCURRENT_MODIFICATION"
    finally:
        other_session.close()
