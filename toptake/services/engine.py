"""Operations exposed to the UI and to external collaborators.

Every call takes a request-scoped ViewerContext and returns authoritative
state; callers may render optimistic guesses but must reconcile with these
results.
"""

from beanie import PydanticObjectId

from toptake.core.config import get_settings
from toptake.core.context import ViewerContext
from toptake.core.exceptions import AlreadySubmittedError, NotEligibleError, StorageUnavailableError
from toptake.core.logging import get_logger
from toptake.models.credit_balance import CreditType
from toptake.models.credit_history import CreditHistoryEntry
from toptake.models.prompt_day import PromptDay
from toptake.models.submission import Submission
from toptake.services import credits as credits_service
from toptake.services import gate as gate_service
from toptake.services import late_submissions as late_service
from toptake.services import payments as payments_service
from toptake.services import prompts as prompts_service
from toptake.services import streaks as streaks_service
from toptake.services import submissions as submissions_service
from toptake.services import users as users_service
from toptake.services.date_keys import parse_key, shift_key

log = get_logger(__name__)


async def get_gate_state(ctx: ViewerContext) -> gate_service.GateState:
    return await gate_service.get_gate_state(ctx)


async def get_gate_state_for_date(ctx: ViewerContext, prompt_date: str) -> gate_service.GateState:
    return await gate_service.evaluate_date(ctx, prompt_date)


async def get_streak(ctx: ViewerContext) -> streaks_service.StreakSummary:
    return await streaks_service.get_streak(ctx.user_id, ctx.today_key)


async def get_credit_balances(ctx: ViewerContext) -> dict[CreditType, int]:
    return await credits_service.get_balances(ctx.user_id)


async def get_late_eligibility(ctx: ViewerContext, prompt_date: str) -> bool:
    return await gate_service.is_late_eligible(ctx, prompt_date)


async def _refresh_streak_cache(ctx: ViewerContext) -> None:
    # cached fields are derived; a failed refresh must not fail a committed submission
    try:
        await users_service.refresh_streak_cache(ctx.user, ctx.today_key)
    except StorageUnavailableError as e:
        log.warning("streak_cache_refresh_failed", user_id=str(ctx.user_id), error=e.message)


async def submit(
    ctx: ViewerContext,
    content: str,
    is_anonymous: bool = False,
    prompt_date: str | None = None,
) -> Submission:
    """
    Answer today's prompt, or a past one through the late-submission flow.
    Anonymous posts spend an anonymous credit first and refund it if recording fails.
    """
    today = ctx.today_key
    prompt_date = prompt_date or today
    day = parse_key(prompt_date)
    if day < parse_key(today):
        return await late_submit(ctx, prompt_date, content, is_anonymous=is_anonymous)
    if day > parse_key(today):
        raise NotEligibleError(
            "Cannot answer a future prompt",
            details={"prompt_date": prompt_date, "today": today},
        )

    submissions_service.validate_content(content)
    existing = await submissions_service.get_submission(ctx.user_id, today)
    if existing is not None:
        raise AlreadySubmittedError(existing)
    if is_anonymous:
        async with credits_service.credit_gated(
            ctx.user_id,
            CreditType.ANONYMOUS,
            get_settings().anonymous_credit_cost,
            reference_type="submission",
            reference_id=today,
        ):
            submission = await submissions_service.record_submission(
                ctx.user_id, today, content, is_anonymous=True, is_late_submit=False, today_key=today
            )
    else:
        submission = await submissions_service.record_submission(
            ctx.user_id, today, content, is_anonymous=False, is_late_submit=False, today_key=today
        )
    await _refresh_streak_cache(ctx)
    return submission


async def late_submit(
    ctx: ViewerContext,
    prompt_date: str,
    content: str,
    is_anonymous: bool = False,
    payment: late_service.PaymentConfirmation | None = None,
) -> Submission:
    """Backdated submission for a missed prompt, funded by a late-submit credit or a confirmed payment."""
    submission = await late_service.late_submit(ctx, prompt_date, content, is_anonymous=is_anonymous, payment=payment)
    await _refresh_streak_cache(ctx)
    return submission


async def purchase_credits_confirmed(
    user_id: PydanticObjectId,
    credit_type: CreditType,
    amount: int,
    external_receipt_id: str,
) -> CreditHistoryEntry:
    return await payments_service.purchase_credits_confirmed(user_id, credit_type, amount, external_receipt_id)


async def spend_credit_for_action(
    ctx: ViewerContext,
    credit_type: CreditType,
    amount: int = 1,
    idempotency_key: str | None = None,
) -> CreditHistoryEntry:
    """Authoritative spend for a credit-gated action performed by the caller."""
    return await credits_service.spend(
        ctx.user_id,
        credit_type,
        amount,
        reference_type="action",
        idempotency_key=idempotency_key,
    )


async def sneak_peek(ctx: ViewerContext) -> PromptDay:
    """Reveal tomorrow's prompt for one sneak-peek credit; repeat views of the same day are free."""
    tomorrow = shift_key(ctx.today_key, 1)
    prompt = await prompts_service.require_prompt(tomorrow)
    await credits_service.spend(
        ctx.user_id,
        CreditType.SNEAK_PEEK,
        get_settings().sneak_peek_credit_cost,
        reference_type="sneak_peek",
        reference_id=tomorrow,
        idempotency_key=f"sneak_peek:{ctx.user_id}:{tomorrow}",
    )
    return prompt
