"""
GDPR admin routes for subject keys.

Erasing a subject's key makes every record ever encrypted for that subject
permanently unrecoverable. The delete endpoint requires explicit confirmation.
"""
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from transit_envelope.schemas.subject_key import (
    SubjectKeyDeletedResponse,
    SubjectKeyListResponse,
    SubjectKeyStatus,
)
from transit_envelope.services.errors import (
    AuthenticationError,
    ConnectivityError,
    KeyNotFoundError,
    TransitError,
    ValidationError,
)
from transit_envelope.services.transit_client import TransitKeyClient
from transit_envelope.utils.logger import get_logger

logger = get_logger("routes.subjects")

router = APIRouter(prefix="/api/v1/subjects", tags=["Subjects"])


def get_transit_client(request: Request) -> TransitKeyClient:
    """Shared transit client created at startup; 503 when transit is not configured."""
    client = getattr(request.app.state, "transit_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transit service is not configured",
        )
    return client


def _raise_http_error(error: TransitError, operation: str) -> NoReturn:
    """Translate a transit error into the matching HTTP response."""
    if isinstance(error, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error)) from error
    if isinstance(error, KeyNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subject key not found") from error
    if isinstance(error, ConnectivityError):
        logger.error(f"Transit service unavailable during {operation}", error=str(error))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transit service unavailable",
        ) from error
    if isinstance(error, AuthenticationError):
        logger.error(f"Transit service rejected credentials during {operation}", error=str(error))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Transit service rejected credentials",
        ) from error

    logger.error(f"Transit {operation} failed", error=str(error))
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Transit {operation} failed",
    ) from error


@router.get("/keys", response_model=SubjectKeyListResponse)
async def list_subject_keys(
    client: TransitKeyClient = Depends(get_transit_client),
) -> SubjectKeyListResponse:
    """
    List managed subject keys.

    Returns:
        SubjectKeyListResponse with key names carrying the configured prefix
    """
    try:
        keys = await client.list_managed_subject_keys()
    except TransitError as e:
        _raise_http_error(e, "list keys")

    return SubjectKeyListResponse(keys=keys, total=len(keys))


@router.get("/{subject_id}/key", response_model=SubjectKeyStatus)
async def get_subject_key_status(
    subject_id: str,
    client: TransitKeyClient = Depends(get_transit_client),
) -> SubjectKeyStatus:
    """Report whether a subject currently has a key."""
    try:
        key_name = client.generate_key_name(subject_id)
        exists = await client.key_exists(subject_id)
    except TransitError as e:
        _raise_http_error(e, "key lookup")

    return SubjectKeyStatus(subject_id=subject_id, key_name=key_name, exists=exists)


@router.delete(
    "/{subject_id}/key",
    response_model=SubjectKeyDeletedResponse,
    responses={
        200: {"description": "Subject key deleted"},
        400: {"description": "Deletion not confirmed or invalid subject ID"},
        404: {"description": "Subject has no key"},
        502: {"description": "Transit service rejected the request"},
        503: {"description": "Transit service unavailable"},
    },
)
async def delete_subject_key(
    subject_id: str,
    confirm: bool = Query(False, description="Must be true to perform the irreversible erasure"),
    client: TransitKeyClient = Depends(get_transit_client),
) -> SubjectKeyDeletedResponse:
    """
    Erase a subject's key (GDPR right to erasure).

    Irreversible. Every record ever encrypted for the subject becomes
    permanently unrecoverable.

    Raises:
        HTTPException: 400 if not confirmed, 404 if the subject has no key
    """
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subject key deletion is irreversible; pass confirm=true to proceed",
        )

    logger.info("Subject key erasure requested")

    try:
        key_name = client.generate_key_name(subject_id)
        await client.delete_key(subject_id)
    except TransitError as e:
        _raise_http_error(e, "key deletion")

    logger.info("Subject key erased")
    return SubjectKeyDeletedResponse(
        subject_id=subject_id,
        key_name=key_name,
        message="Subject key deleted; data encrypted for this subject is no longer recoverable",
    )
