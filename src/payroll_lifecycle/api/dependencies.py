"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.services.payroll_service import CommandResult, PayrollCommands

# error category -> HTTP status
ERROR_STATUS = {
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "resolution": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "state": status.HTTP_409_CONFLICT,
    "concurrency": status.HTTP_409_CONFLICT,
    "cancelled": status.HTTP_409_CONFLICT,
    "integrity": status.HTTP_409_CONFLICT,
}


def get_commands(request: Request) -> PayrollCommands:
    return request.app.state.commands


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Read-only session; never committed."""
    async with request.app.state.commands.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_actor_id(x_actor_id: Annotated[str | None, Header()] = None) -> UUID:
    """Extract the acting user from the X-Actor-ID header."""
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-ID header is required",
        )
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-ID format",
        ) from None


def command_response(result: CommandResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render a command result with the status code its outcome maps to."""
    if result.success:
        code = success_status
    else:
        code = ERROR_STATUS.get(result.error_category or "", status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=code, content=result.to_dict())


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Commands = Annotated[PayrollCommands, Depends(get_commands)]
ActorId = Annotated[UUID, Depends(get_actor_id)]
