from fastapi import HTTPException

from app.core.errors import CreditsEngineError, ExternalServiceError, http_detail


def to_http_exception(err: CreditsEngineError) -> HTTPException:
    status = err.http_status if isinstance(err, ExternalServiceError) else err.status_code
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return HTTPException(status_code=status, detail=http_detail(err), headers=headers)
