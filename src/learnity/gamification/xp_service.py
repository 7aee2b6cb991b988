"""XP ledger with source-scoped idempotency and level recomputation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnity.db.models import Course, Lesson, Quiz, User, UserProgress, XPActivity
from learnity.gamification.errors import (
    CourseNotFound,
    InvalidAmount,
    InvalidSource,
    LessonNotFound,
    QuizNotFound,
    UserNotFound,
)
from learnity.gamification.level_thresholds import compute_level
from learnity.gamification.schemas import XPActivityEntry, XPAwardResult, XPHistoryResponse
from learnity.gamification.xp_rewards import (
    SOURCE_SCOPED_REASONS,
    STREAK_MILESTONE_XP,
    XPReason,
    idempotency_key,
)

logger = logging.getLogger(__name__)


async def _select_progress(
    db: AsyncSession,
    user_id: int,
    *,
    for_update: bool = False,
) -> UserProgress | None:
    stmt = select(UserProgress).where(UserProgress.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_or_create_progress(
    db: AsyncSession,
    user_id: int,
    *,
    for_update: bool = False,
) -> UserProgress:
    """Get or create the denormalized progress row for a user.

    With ``for_update`` the row is locked for the rest of the transaction so
    concurrent XP/streak updates for the same user serialize.
    """
    progress = await _select_progress(db, user_id, for_update=for_update)
    if progress is not None:
        return progress

    if await db.get(User, user_id) is None:
        raise UserNotFound(f"User {user_id} not found")

    progress = UserProgress(
        user_id=user_id,
        total_xp=0,
        current_level=1,
        current_streak=0,
        longest_streak=0,
        updated_at=datetime.now(timezone.utc),
    )
    try:
        async with db.begin_nested():
            db.add(progress)
    except IntegrityError:
        # Created by a concurrent request between our read and insert
        logger.info("Progress row for user %s created concurrently", user_id)
        progress = await _select_progress(db, user_id, for_update=for_update)
        if progress is None:
            raise
    return progress


_SOURCE_ENTITIES = {
    XPReason.LESSON_COMPLETE: (Lesson, LessonNotFound),
    XPReason.QUIZ_PASS: (Quiz, QuizNotFound),
    XPReason.COURSE_COMPLETE: (Course, CourseNotFound),
}


async def _require_source(db: AsyncSession, reason: XPReason, source_id: str) -> None:
    """Source-scoped awards must point at an existing lesson, quiz, course or milestone."""
    if reason == XPReason.STREAK_BONUS:
        if not source_id.isdigit() or int(source_id) not in STREAK_MILESTONE_XP:
            raise InvalidSource(f"{source_id!r} is not a streak milestone")
        return

    model, not_found = _SOURCE_ENTITIES[reason]
    if await db.get(model, source_id) is None:
        raise not_found(f"{model.__name__} {source_id} not found")


async def _ledger_entry_exists(db: AsyncSession, key: str) -> bool:
    result = await db.execute(
        select(XPActivity.id).where(XPActivity.idempotency_key == key)
    )
    return result.scalar_one_or_none() is not None


def _unchanged(progress: UserProgress) -> XPAwardResult:
    return XPAwardResult(
        previous_xp=progress.total_xp,
        new_xp=progress.total_xp,
        xp_awarded=0,
        previous_level=progress.current_level,
        new_level=progress.current_level,
    )


async def award_xp(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: XPReason | str,
    source_id: str | None = None,
    description: str | None = None,
) -> XPAwardResult:
    """Append an XP entry and update the user's totals.

    Awards carrying a ``source_id`` are deduplicated on (user, reason, source):
    a repeat returns ``xp_awarded=0`` with the current totals. Source-scoped
    reasons must reference an existing lesson, quiz, course or streak
    milestone. The ledger row and the counter update happen in the caller's
    transaction.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"XP amount must be a positive integer, got {amount!r}")

    reason = XPReason(reason)
    if source_id is not None:
        source_id = str(source_id)
    if reason in SOURCE_SCOPED_REASONS:
        if not source_id:
            raise InvalidSource(f"{reason.value} awards require a source id")
        await _require_source(db, reason, source_id)

    progress = await get_or_create_progress(db, user_id, for_update=True)

    key = idempotency_key(reason, user_id, source_id) if source_id else None
    if key is not None and await _ledger_entry_exists(db, key):
        return _unchanged(progress)

    now = datetime.now(timezone.utc)
    entry = XPActivity(
        user_id=user_id,
        amount=amount,
        reason=reason.value,
        source_id=source_id,
        description=description,
        created_at=now,
        idempotency_key=key,
    )
    try:
        async with db.begin_nested():
            db.add(entry)
    except IntegrityError:
        logger.info("Duplicate XP award ignored: %s", key)
        await db.refresh(progress)
        return _unchanged(progress)

    previous_xp = progress.total_xp
    previous_level = progress.current_level

    progress.total_xp = previous_xp + amount
    progress.current_level = compute_level(progress.total_xp)
    progress.updated_at = now
    await db.flush()

    if progress.current_level > previous_level:
        logger.info(
            "User %s leveled up: %d -> %d (%d XP)",
            user_id, previous_level, progress.current_level, progress.total_xp,
        )

    return XPAwardResult(
        previous_xp=previous_xp,
        new_xp=progress.total_xp,
        xp_awarded=amount,
        previous_level=previous_level,
        new_level=progress.current_level,
    )


async def get_ledger_total(db: AsyncSession, user_id: int) -> int:
    """Sum of all ledger entries for a user; always equals UserProgress.total_xp."""
    result = await db.execute(
        select(func.coalesce(func.sum(XPActivity.amount), 0)).where(XPActivity.user_id == user_id)
    )
    return int(result.scalar_one())


async def get_recent_activity(
    db: AsyncSession,
    user_id: int,
    limit: int = 10,
) -> list[XPActivityEntry]:
    """Most recent ledger entries, newest first."""
    result = await db.execute(
        select(XPActivity)
        .where(XPActivity.user_id == user_id)
        .order_by(XPActivity.created_at.desc(), XPActivity.id.desc())
        .limit(limit)
    )
    return [XPActivityEntry.model_validate(row) for row in result.scalars()]


async def get_xp_history(
    db: AsyncSession,
    user_id: int,
    limit: int = 20,
    offset: int = 0,
) -> XPHistoryResponse:
    """Paginated ledger for a user."""
    total_result = await db.execute(
        select(func.count(XPActivity.id)).where(XPActivity.user_id == user_id)
    )
    result = await db.execute(
        select(XPActivity)
        .where(XPActivity.user_id == user_id)
        .order_by(XPActivity.created_at.desc(), XPActivity.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return XPHistoryResponse(
        entries=[XPActivityEntry.model_validate(row) for row in result.scalars()],
        total=total_result.scalar_one(),
        limit=limit,
        offset=offset,
    )
