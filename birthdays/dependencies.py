from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from birthdays.config import AppConfig, Settings, get_config, get_settings
from birthdays.core.database import get_db
from birthdays.services.schedule_store import ScheduleStore, SqlScheduleStore

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


def get_schedule_store(db: DBSession) -> ScheduleStore:
    """Schedule store sharing the request's database session."""
    return SqlScheduleStore(db)


Store = Annotated[ScheduleStore, Depends(get_schedule_store)]
