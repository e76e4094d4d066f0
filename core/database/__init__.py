from typing import Annotated
from fastapi import Depends
from sqlmodel import Session, SQLModel, create_engine

from core.configuration import settings


def _build_engine():
    database_url = settings.get_database_url()

    connect_args = {}
    if database_url.startswith("sqlite"):
        # FastAPI runs synchronous endpoints in a thread pool.
        connect_args["check_same_thread"] = False

    return create_engine(database_url, connect_args=connect_args)


engine = _build_engine()


def create_db_and_tables():
    # Importing the models registers their tables on the shared metadata.
    from core.database import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


SessionDependency = Annotated[Session, Depends(get_session)]
