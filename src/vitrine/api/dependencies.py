"""FastAPI dependencies shared by the API routes."""

from typing import Annotated, Callable
from uuid import UUID

from fastapi import Header, HTTPException, Request, status

from vitrine.services.admission import AdmissionService
from vitrine.services.storage import BlobStore
from vitrine.uow import UnitOfWork


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_admission_service(request: Request) -> AdmissionService:
    return request.app.state.admission_service


def get_storage(request: Request) -> BlobStore:
    return request.app.state.storage


def get_account_id(x_account_id: Annotated[str | None, Header()] = None) -> UUID:
    """Caller identity, set by the upstream auth gateway.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID
    """
    if not x_account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Account-Id header"
        )
    try:
        return UUID(x_account_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-Account-Id header"
        )
