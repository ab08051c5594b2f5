from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker
from typing import Annotated
from pos_boletas.database.database import get_db, get_session_factory

# Request-scoped session
db_dependency = Annotated[Session, Depends(get_db)]

# Factory for services that open their own transactions (folio allocation)
session_factory_dependency = Annotated[sessionmaker, Depends(get_session_factory)]
