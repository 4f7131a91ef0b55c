from __future__ import annotations

from .validation import Violation


class AppError(Exception):
    """Base class for errors the request handlers know how to present."""

    public_message = "Ocurrió un error inesperado"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(AppError):
    public_message = "Los datos ingresados no son válidos"

    def __init__(self, violations: list[Violation], message: str | None = None):
        super().__init__(message)
        self.violations = list(violations)


class NotFound(AppError):
    public_message = "El recurso solicitado no existe"


class Forbidden(AppError):
    public_message = "No tienes permiso para realizar esta acción"


class Unauthenticated(AppError):
    public_message = "Por favor, inicie sesión para acceder a esta página."


class TransientExternalFailure(AppError):
    public_message = "Un servicio externo no está disponible"


class PersistenceFailure(AppError):
    public_message = "No se pudo completar la operación"
