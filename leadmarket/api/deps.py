from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leadmarket.database import get_db


DB = Annotated[AsyncSession, Depends(get_db)]
