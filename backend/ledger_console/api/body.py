"""JSON request body parsing for pipeline handlers."""

from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from backend.ledger_console.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def read_json_object(request: Request) -> dict[str, Any]:
    """Read the body as a JSON object.

    Raises:
        ValidationError: Body is not valid JSON or not an object
    """
    try:
        data = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON", code="invalid_json") from e

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")

    return data


async def parse_json_body(request: Request, model: type[ModelT]) -> ModelT:
    """Read and validate the body against ``model``.

    Raises:
        ValidationError: Invalid JSON or a field failing validation
    """
    data = await read_json_object(request)

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        raise ValidationError(f"{field}: {first['msg']}") from e
