"""
Various FastAPI [dependencies](https://fastapi.tiangolo.com/tutorial/dependencies/)

They are used in endpoints function signatures. For example:
```python
async def get_raffle(db: AsyncSession = Depends(get_db)):
```
"""

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated, cast

import starlette
import starlette.datastructures
from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils.config import Settings, construct_prod_settings
from app.types.exceptions import InvalidAppStateTypeError
from app.types.sqlalchemy import SessionLocalType
from app.utils.state import (
    LifespanState,
    RuntimeLifespanState,
    disconnect_redis_client,
    init_engine,
    init_redis_client,
    init_SessionLocal,
)


async def init_app_state(
    app: FastAPI,
    settings: Settings,
    tombola_error_logger: logging.Logger,
) -> LifespanState:
    """
    Initialize the state of the application. This dependency should be used at the start of the application lifespan.

    This methode should be called as a dependency, and test may override it to provide their own state.
    ```python
    state = await app.dependency_overrides.get(
        init_app_state,
        init_app_state,
    )(
        app=app,
        settings=settings,
        tombola_error_logger=tombola_error_logger,
    )
    ```
    """
    engine = init_engine(settings=settings)

    SessionLocal = init_SessionLocal(engine)

    redis_client = init_redis_client(
        settings=settings,
        tombola_error_logger=tombola_error_logger,
    )

    return LifespanState(
        engine=engine,
        SessionLocal=SessionLocal,
        redis_client=redis_client,
    )


async def disconnect_state(
    state: LifespanState,
    tombola_error_logger: logging.Logger,
) -> None:
    """
    Disconnect items requiring it. This dependency should be used at the end of the application lifespan.
    """
    disconnect_redis_client(state["redis_client"])
    await state["engine"].dispose()

    tombola_error_logger.info("Application state disconnected successfully.")


def get_app_state(request: Request) -> RuntimeLifespanState:
    """
    Get the application state from the request. The state is injected by our middleware.
    """
    # `request.state` may be a TypedDict or a starlette State object
    # depending if it is accessed in an endpoint or the lifespan

    if isinstance(request.state, dict):
        return cast("RuntimeLifespanState", request.state)
    if isinstance(request.state, starlette.datastructures.State):
        return cast("RuntimeLifespanState", request.state.__dict__["_state"])
    raise InvalidAppStateTypeError


AppState = Annotated[RuntimeLifespanState, Depends(get_app_state)]


@lru_cache
def get_settings() -> Settings:
    """
    Return a settings object, based on `config.yaml` and `.env`
    """
    # `lru_cache()` decorator is here to prevent the class to be instantiated multiple times.
    # See https://fastapi.tiangolo.com/advanced/settings/#lru_cache-technical-details
    return construct_prod_settings()


async def get_db(state: AppState) -> AsyncGenerator[AsyncSession, None]:
    """
    Return a database session that will be automatically committed and closed after usage.

    If an HTTPException is raised during the request, we consider that the error was expected and managed by the endpoint. We commit the session.
    If an other exception is raised, we rollback the session.

    Cruds and endpoints should never call `db.commit()` or `db.rollback()` directly.
    After adding an object to the session, calling `await db.flush()` will integrate the changes in the transaction without committing them.

    Raffle purchases, grants and draws do not use this dependency: their services open their own bounded transaction
    using `get_session_factory`.
    """
    async with state["SessionLocal"]() as db:
        try:
            yield db
        except HTTPException:
            await db.commit()
            raise
        except Exception:
            await db.rollback()
            raise
        else:
            await db.commit()
        finally:
            await db.close()


def get_session_factory(state: AppState) -> SessionLocalType:
    """
    Dependency that returns the session factory, for services managing their own transactions
    """
    return state["SessionLocal"]
