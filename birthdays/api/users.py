"""User record endpoints.

Creating, editing or deleting a user also keeps their pending birthday
message in step with the record.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from birthdays.core.datetime_utils import utc_now
from birthdays.core.logging import get_logger
from birthdays.dependencies import Config, DBSession, Store
from birthdays.models.user import User
from birthdays.schemas.user import OperationError, OperationResponse, UserPayload
from birthdays.services.scan_planner import reschedule_user, schedule_user

logger = get_logger(__name__)

router = APIRouter()


def _error(status_code: int, code: str) -> JSONResponse:
    body = OperationResponse(success=False, error=OperationError(code=code))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _email_taken(db: DBSession, email: str, exclude_id: int | None = None) -> bool:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    result = await db.execute(query)
    return result.first() is not None


@router.post("/user", response_model=OperationResponse)
async def create_user(
    payload: UserPayload,
    db: DBSession,
    store: Store,
    config: Config,
) -> OperationResponse | JSONResponse:
    """
    Create a user.

    If today's daily scan already ran but the user's birthday greeting is
    still due later today, it is scheduled right away.
    """
    if await _email_taken(db, payload.email):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "EMAIL_SHOULD_BE_UNIQUE")

    user = User(**payload.model_dump())
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "EMAIL_SHOULD_BE_UNIQUE")

    await schedule_user(
        store,
        user.id,
        user.birth_date,
        user.location,
        utc_now(),
        template_id=config.scan.template_id,
    )
    logger.bind(user_id=user.id).info("user_created")
    return OperationResponse(success=True)


@router.put("/user/{user_id}", response_model=OperationResponse)
async def update_user(
    user_id: int,
    payload: UserPayload,
    db: DBSession,
    store: Store,
    config: Config,
) -> OperationResponse | JSONResponse:
    """
    Replace a user's record.

    The pending greeting is re-planned only when the birth date or location
    changed. Other edits leave it untouched.
    """
    user = await db.get(User, user_id)
    if user is None:
        return _error(status.HTTP_404_NOT_FOUND, "NOT_FOUND")

    if await _email_taken(db, payload.email, exclude_id=user_id):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "EMAIL_SHOULD_BE_UNIQUE")

    previous_birth_date, previous_location = user.birth_date, user.location
    for key, value in payload.model_dump().items():
        setattr(user, key, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "EMAIL_SHOULD_BE_UNIQUE")

    birthday_moved = (previous_birth_date.month, previous_birth_date.day) != (
        user.birth_date.month,
        user.birth_date.day,
    )
    if birthday_moved or previous_location != user.location:
        await reschedule_user(
            store,
            user.id,
            user.birth_date,
            user.location,
            utc_now(),
            birthday_moved=birthday_moved,
            template_id=config.scan.template_id,
        )
    logger.bind(user_id=user.id).info("user_updated")
    return OperationResponse(success=True)


@router.delete("/user/{user_id}", response_model=OperationResponse)
async def delete_user(
    user_id: int,
    db: DBSession,
    store: Store,
) -> OperationResponse | JSONResponse:
    """Delete a user and cancel their pending messages."""
    user = await db.get(User, user_id)
    if user is None:
        return _error(status.HTTP_404_NOT_FOUND, "NOT_FOUND")

    await store.delete_pending_messages_for_user(user_id)
    await db.delete(user)
    await db.commit()

    logger.bind(user_id=user_id).info("user_deleted")
    return OperationResponse(success=True)
