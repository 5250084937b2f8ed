from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


ModelT = TypeVar("ModelT", bound=BaseModel)


class RentalServiceError(RuntimeError):
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(RentalServiceError):
    kind = "validation"


class ConflictError(RentalServiceError):
    kind = "conflict"


class NotFoundError(RentalServiceError):
    kind = "not_found"


class AuthenticationError(RentalServiceError):
    kind = "authentication"


class PersistenceError(RentalServiceError):
    kind = "persistence"


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc") or ()) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts) or "Invalid payload."


def parse_payload(model: type[ModelT], payload: Any) -> ModelT:
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc
