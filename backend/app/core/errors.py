from __future__ import annotations


class CreditsEngineError(RuntimeError):
    code = "error"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.code
        super().__init__(self.message)


class Unauthenticated(CreditsEngineError):
    code = "unauthenticated"
    status_code = 401


class NotFoundError(CreditsEngineError):
    code = "not_found"
    status_code = 404


class InsufficientCreditsError(CreditsEngineError):
    code = "insufficient_credits"
    status_code = 402

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Insufficient credits. Please buy more credits to continue.")


class UnconfiguredError(CreditsEngineError):
    code = "unconfigured"
    status_code = 422


class ConflictError(CreditsEngineError):
    code = "conflict"
    status_code = 409


class ValidationError(CreditsEngineError):
    code = "validation_error"
    status_code = 400


GENERATOR_ERROR_KINDS = ("auth", "safety", "rate_limit", "transient", "unknown")


class ExternalServiceError(CreditsEngineError):
    code = "external_service_error"
    status_code = 502

    def __init__(self, message: str | None = None, *, service: str = "", kind: str = "unknown") -> None:
        self.service = service
        self.kind = kind if kind in GENERATOR_ERROR_KINDS else "unknown"
        super().__init__(message)

    @property
    def http_status(self) -> int:
        if self.kind == "rate_limit":
            return 429
        if self.kind == "safety":
            return 422
        return self.status_code


def http_detail(err: CreditsEngineError) -> dict:
    detail = {"code": err.code, "message": err.message}
    if isinstance(err, ExternalServiceError):
        detail["kind"] = err.kind
    return detail
