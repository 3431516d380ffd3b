"""
API errors

Every domain error carries its HTTP status and the French message shown to
users. Handlers registered in main.py render them as ``{"message": ...}``.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ampia.services.logger import logger


class AmpiaError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Requête invalide"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.extra}


class InvalidRequest(AmpiaError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotCompletable(AmpiaError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Défi pas encore complété"


class AuthenticationFailed(AmpiaError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Token invalide"

    def __init__(self, message: Optional[str] = None, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class Forbidden(AmpiaError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Accès interdit"


class NotFound(AmpiaError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Ressource introuvable"


class AlreadyClaimed(AmpiaError):
    status_code = status.HTTP_409_CONFLICT
    message = "Récompense déjà réclamée"


class PaymentProviderError(AmpiaError):
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Erreur du fournisseur de paiement"


async def ampia_error_handler(request: Request, exc: AmpiaError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    content = detail if isinstance(detail, dict) else {"message": str(detail)}
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=exc.headers
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", [])), "error": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Données invalides", "errors": errors},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Erreur serveur"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AmpiaError, ampia_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
