"""
Erreurs métier typées du cœur (inscriptions, tokens de présence, registre de présences).

Toutes héritent de ValueError : elles sont détectées localement, renvoyées
de façon synchrone à l'appelant et traduites en réponse HTTP par le handler
enregistré dans app.main. `details` transporte l'invariant concerné et les
compteurs utiles (capacité, nombre d'inscrits, usages…).
"""

from typing import Any, Dict, Optional


class ServiceError(ValueError):
    status_code = 400
    code = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class InactiveError(ServiceError):
    status_code = 410
    code = "INACTIVE"


class ExpiredError(InactiveError):
    code = "EXPIRED"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


class AlreadyEnrolledError(ConflictError):
    code = "ALREADY_ENROLLED"


class NotEnrolledError(ConflictError):
    code = "NOT_ENROLLED"


class DuplicateScanError(ConflictError):
    code = "DUPLICATE_SCAN"


class UsageExceededError(ConflictError):
    code = "USAGE_EXCEEDED"


class CapacityConflictError(ConflictError):
    code = "CAPACITY_CONFLICT"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidError(ServiceError):
    status_code = 400
    code = "INVALID"
