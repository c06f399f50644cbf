"""Credits ledger: per-type balances with an append-only history and atomic updates."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc
from pymongo.errors import DuplicateKeyError, PyMongoError

from toptake.core.exceptions import (
    BadRequestError,
    ConcurrencyConflictError,
    InsufficientCreditError,
    InvalidAmountError,
    NotFoundError,
    StorageUnavailableError,
    storage_errors,
)
from toptake.core.logging import get_logger
from toptake.core.security import generate_idempotency_key
from toptake.models.credit_balance import CreditBalance, CreditType
from toptake.models.credit_history import CreditHistoryEntry, CreditReason

log = get_logger(__name__)

DEBIT_REASONS = (CreditReason.SPEND, CreditReason.ADMIN_ADJUST)


def coerce_credit_type(value: str | CreditType) -> CreditType:
    """Reject unknown credit types at the boundary."""
    try:
        return CreditType(value)
    except ValueError as e:
        raise BadRequestError(f"Unknown credit type: {value}", details={"credit_type": str(value)}) from e


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmountError(details={"amount": amount})


async def get_balance(user_id: PydanticObjectId, credit_type: CreditType) -> int:
    """Return current balance for (user, type); 0 if no record."""
    credit_type = coerce_credit_type(credit_type)
    with storage_errors("get_balance"):
        bal = await CreditBalance.find_one(
            CreditBalance.user_id == user_id,
            CreditBalance.credit_type == credit_type,
        )
    return bal.balance if bal else 0


async def get_balances(user_id: PydanticObjectId) -> dict[CreditType, int]:
    """Every credit type with its balance, zeros included."""
    with storage_errors("get_balances"):
        rows = await CreditBalance.find(CreditBalance.user_id == user_id).to_list()
    out = {t: 0 for t in CreditType}
    for row in rows:
        out[row.credit_type] = row.balance
    return out


async def _ensure_balance_row(user_id: PydanticObjectId, credit_type: CreditType) -> None:
    with storage_errors("ensure_balance_row"):
        existing = await CreditBalance.find_one(
            CreditBalance.user_id == user_id,
            CreditBalance.credit_type == credit_type,
        )
        if existing:
            return
        try:
            await CreditBalance(user_id=user_id, credit_type=credit_type, balance=0).insert()
        except DuplicateKeyError:
            # another request created the row first; it starts at 0 either way
            return


async def _find_by_key(idempotency_key: str) -> CreditHistoryEntry | None:
    with storage_errors("find_history_by_key"):
        return await CreditHistoryEntry.find_one(CreditHistoryEntry.idempotency_key == idempotency_key)


def _check_replay(
    existing: CreditHistoryEntry,
    user_id: PydanticObjectId,
    credit_type: CreditType,
    delta: int,
) -> CreditHistoryEntry:
    """Same key must mean the same operation; anything else lost a race to a different write."""
    if existing.user_id != user_id or existing.credit_type != credit_type or existing.delta != delta:
        raise ConcurrencyConflictError(
            "Idempotency key already used for a different ledger operation",
            details={"idempotency_key": existing.idempotency_key},
        )
    return existing


async def _increment(user_id: PydanticObjectId, credit_type: CreditType, amount: int) -> None:
    await CreditBalance.find_one(
        CreditBalance.user_id == user_id,
        CreditBalance.credit_type == credit_type,
    ).update(Inc({CreditBalance.balance: amount}))


async def _apply_credit(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    reason: CreditReason,
    reference_type: str | None = None,
    reference_id: str | None = None,
    refund_of: PydanticObjectId | None = None,
    idempotency_key: str | None = None,
) -> CreditHistoryEntry:
    """
    Positive balance change. The history entry is inserted first so the unique
    idempotency key claims the operation; a replay returns the existing entry
    and does not move the balance.
    """
    key = idempotency_key or generate_idempotency_key()
    await _ensure_balance_row(user_id, credit_type)
    entry = CreditHistoryEntry(
        user_id=user_id,
        credit_type=credit_type,
        delta=amount,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        refund_of=refund_of,
        idempotency_key=key,
    )
    try:
        with storage_errors("insert_credit_history"):
            await entry.insert()
    except DuplicateKeyError:
        existing = await _find_by_key(key)
        if existing is None:
            raise ConcurrencyConflictError("Ledger entry vanished during replay", details={"idempotency_key": key})
        log.info("credit_replay", user_id=str(user_id), credit_type=credit_type.value, idempotency_key=key)
        return _check_replay(existing, user_id, credit_type, amount)
    try:
        await _increment(user_id, credit_type, amount)
    except PyMongoError as e:
        with storage_errors("rollback_credit_history"):
            await entry.delete()
        raise StorageUnavailableError("Storage unavailable during credit", details={"operation": "credit"}) from e
    log.info(
        "credit_added",
        user_id=str(user_id),
        credit_type=credit_type.value,
        amount=amount,
        reason=reason.value,
    )
    return entry


async def _apply_debit(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    reason: CreditReason,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> CreditHistoryEntry:
    """
    Conditional decrement in a single document update (balance >= amount is part
    of the filter), so concurrent debits for the same key cannot overdraw.
    """
    if idempotency_key:
        existing = await _find_by_key(idempotency_key)
        if existing:
            _check_replay(existing, user_id, credit_type, -amount)
            with storage_errors("find_refund"):
                refunded = await CreditHistoryEntry.find_one(CreditHistoryEntry.refund_of == existing.id)
            if refunded:
                raise ConcurrencyConflictError(
                    "This spend was refunded; retry with a new idempotency key",
                    details={"idempotency_key": idempotency_key},
                )
            return existing
    key = idempotency_key or generate_idempotency_key()
    await _ensure_balance_row(user_id, credit_type)
    with storage_errors("debit_balance"):
        updated = await CreditBalance.find_one(
            CreditBalance.user_id == user_id,
            CreditBalance.credit_type == credit_type,
            CreditBalance.balance >= amount,
        ).update(
            Inc({CreditBalance.balance: -amount}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
    if updated is None:
        available = await get_balance(user_id, credit_type)
        log.info(
            "credit_insufficient",
            user_id=str(user_id),
            credit_type=credit_type.value,
            required=amount,
            available=available,
        )
        raise InsufficientCreditError(credit_type.value, amount, available)
    entry = CreditHistoryEntry(
        user_id=user_id,
        credit_type=credit_type,
        delta=-amount,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=key,
    )
    try:
        await entry.insert()
    except DuplicateKeyError:
        # a concurrent request with the same key won; undo ours and return theirs
        with storage_errors("undo_debit"):
            await _increment(user_id, credit_type, amount)
        existing = await _find_by_key(key)
        if existing is None:
            raise ConcurrencyConflictError("Ledger entry vanished during replay", details={"idempotency_key": key})
        return _check_replay(existing, user_id, credit_type, -amount)
    except PyMongoError as e:
        with storage_errors("undo_debit"):
            await _increment(user_id, credit_type, amount)
        raise StorageUnavailableError("Storage unavailable during debit", details={"operation": "debit"}) from e
    log.info(
        "credit_spent",
        user_id=str(user_id),
        credit_type=credit_type.value,
        amount=amount,
        reason=reason.value,
        balance_after=updated.balance,
    )
    return entry


async def grant(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    reason: CreditReason = CreditReason.GRANT,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> CreditHistoryEntry:
    """Increase balance and append history. Refunds go through refund()."""
    credit_type = coerce_credit_type(credit_type)
    _check_amount(amount)
    if reason not in (CreditReason.GRANT, CreditReason.PURCHASE, CreditReason.ADMIN_ADJUST):
        raise BadRequestError(f"Invalid grant reason: {reason}")
    return await _apply_credit(
        user_id,
        credit_type,
        amount,
        reason,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )


async def spend(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    reason: CreditReason = CreditReason.SPEND,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> CreditHistoryEntry:
    """
    Authoritative spend: raises InsufficientCreditError with no state change and
    no history entry when the balance is short.
    """
    credit_type = coerce_credit_type(credit_type)
    _check_amount(amount)
    if reason not in DEBIT_REASONS:
        raise BadRequestError(f"Invalid spend reason: {reason}")
    return await _apply_debit(
        user_id,
        credit_type,
        amount,
        reason,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )


async def refund(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    refund_of: PydanticObjectId,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> CreditHistoryEntry:
    """Compensate a spend whose gated action failed. At most one refund per spend."""
    credit_type = coerce_credit_type(credit_type)
    _check_amount(amount)
    with storage_errors("load_spend"):
        original = await CreditHistoryEntry.get(refund_of)
    if original is None or original.user_id != user_id:
        raise NotFoundError("Original spend not found")
    if original.reason != CreditReason.SPEND or original.credit_type != credit_type:
        raise BadRequestError("Refund must reference a spend of the same credit type")
    if amount > -original.delta:
        raise InvalidAmountError("Refund exceeds the original spend", details={"amount": amount})
    entry = await _apply_credit(
        user_id,
        credit_type,
        amount,
        CreditReason.REFUND,
        reference_type=reference_type or original.reference_type,
        reference_id=reference_id or original.reference_id,
        refund_of=original.id,
        idempotency_key=f"refund:{original.id}",
    )
    log.info("credit_refunded", user_id=str(user_id), credit_type=credit_type.value, refund_of=str(original.id))
    return entry


async def admin_adjust(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    delta: int,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> CreditHistoryEntry:
    """Signed manual correction; may not take the balance below zero."""
    credit_type = coerce_credit_type(credit_type)
    if not isinstance(delta, int) or delta == 0:
        raise InvalidAmountError("Adjustment must be a non-zero integer", details={"delta": delta})
    if delta > 0:
        return await _apply_credit(
            user_id,
            credit_type,
            delta,
            CreditReason.ADMIN_ADJUST,
            reference_type="admin",
            reference_id=reference_id,
            idempotency_key=idempotency_key,
        )
    return await _apply_debit(
        user_id,
        credit_type,
        -delta,
        CreditReason.ADMIN_ADJUST,
        reference_type="admin",
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )


@asynccontextmanager
async def credit_gated(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int = 1,
    reference_type: str | None = None,
    reference_id: str | None = None,
) -> AsyncIterator[CreditHistoryEntry]:
    """
    Spend, run the gated action, refund if it raises.

        async with credit_gated(user.id, CreditType.BOOST, 1):
            await boost(take)
    """
    entry = await spend(
        user_id,
        credit_type,
        amount,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    try:
        yield entry
    except Exception as exc:
        log.info(
            "credit_gated_action_failed",
            user_id=str(user_id),
            credit_type=coerce_credit_type(credit_type).value,
            spend_id=str(entry.id),
            error=type(exc).__name__,
        )
        await refund(user_id, credit_type, amount, refund_of=entry.id)
        raise


async def list_history(
    user_id: PydanticObjectId,
    credit_type: CreditType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[CreditHistoryEntry]:
    """History entries newest first."""
    filters = [CreditHistoryEntry.user_id == user_id]
    if credit_type is not None:
        filters.append(CreditHistoryEntry.credit_type == coerce_credit_type(credit_type))
    with storage_errors("list_history"):
        return (
            await CreditHistoryEntry.find(*filters)
            .sort(-CreditHistoryEntry.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )


async def reconcile(user_id: PydanticObjectId, credit_type: CreditType) -> dict:
    """Compare the balance with the sum of its history deltas."""
    credit_type = coerce_credit_type(credit_type)
    balance = await get_balance(user_id, credit_type)
    with storage_errors("reconcile"):
        entries = await CreditHistoryEntry.find(
            CreditHistoryEntry.user_id == user_id,
            CreditHistoryEntry.credit_type == credit_type,
        ).to_list()
    history_sum = sum(e.delta for e in entries)
    return {
        "credit_type": credit_type.value,
        "balance": balance,
        "history_sum": history_sum,
        "consistent": balance == history_sum and balance >= 0,
    }


def history_entry_to_dict(e: CreditHistoryEntry) -> dict:
    return {
        "id": str(e.id),
        "credit_type": e.credit_type.value,
        "delta": e.delta,
        "reason": e.reason.value,
        "reference_type": e.reference_type,
        "reference_id": e.reference_id,
        "refund_of": str(e.refund_of) if e.refund_of else None,
        "created_at": e.created_at.isoformat(),
    }
