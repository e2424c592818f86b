# quickbase/errors.py
import json
import re
from typing import Any, Dict, Optional, Union

DEFAULT_ERROR_MESSAGE = "Quick Base Error"
DEFAULT_ERROR_DESCRIPTION = "There was an unexpected error, please check your request and try again"

_EXPIRED_TICKET_RX = re.compile(r"Your ticket has expired")


class QuickBaseValidationError(TypeError):
    """Raised when serialized input cannot be turned back into an object."""


class ConnectionLimitError(RuntimeError):
    """Raised by the throttle when it is set to reject instead of queue."""


class QuickBaseError(Exception):
    """
    Normalized Quick Base API error.

    - code: HTTP status code
    - message: short message from the API (or a generic default)
    - description: longer explanation
    - ray_id: value of the qb-api-ray response header, for support tickets
    """

    def __init__(self, code: int, message: str, description: Optional[str] = None, ray_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.description = description
        self.ray_id = ray_id

    def __str__(self) -> str:
        if self.description:
            return f"[{self.code}] {self.message}: {self.description}"
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"QuickBaseError(code={self.code!r}, message={self.message!r}, "
            f"description={self.description!r}, ray_id={self.ray_id!r})"
        )

    @property
    def is_expired_ticket(self) -> bool:
        return bool(self.description) and bool(_EXPIRED_TICKET_RX.search(self.description))

    @classmethod
    def from_body(cls, status: int, body: Any, ray_id: Optional[str] = None) -> "QuickBaseError":
        """Build an error from whatever shape of error body the API returned."""
        data = body if isinstance(body, dict) else {}
        return cls(status, data.get("message") or DEFAULT_ERROR_MESSAGE, resolve_description(data), ray_id)

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "description": self.description,
            "rayId": self.ray_id,
        }

    @classmethod
    def from_json(cls, data: Union[str, Dict[str, Any]]) -> "QuickBaseError":
        data = load_json_object(data)
        return cls(data.get("code"), data.get("message"), data.get("description"), data.get("rayId"))


def resolve_description(data: Dict[str, Any]) -> str:
    """
    Error bodies are inconsistent; first match wins:
    errors (list, joined by spaces) -> error -> description -> default.
    """
    errors = data.get("errors")
    if isinstance(errors, (list, tuple)) and errors:
        return " ".join(str(e) for e in errors)
    if data.get("error"):
        return str(data["error"])
    if data.get("description"):
        return str(data["description"])
    return DEFAULT_ERROR_DESCRIPTION


def load_json_object(data: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise QuickBaseValidationError("json argument must be a dict or a valid JSON string") from e
    if not isinstance(data, dict):
        raise QuickBaseValidationError("json argument must be a dict or a valid JSON string")
    return data
