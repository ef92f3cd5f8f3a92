from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response


def success(*, data: dict, http_status: int = status.HTTP_200_OK) -> Response:
    return Response({"success": True, "data": data}, status=http_status)


def error(
    *,
    message: str,
    field: str | None = None,
    code: str | None = None,
    details: dict | None = None,
    http_status: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    payload: dict = {"success": False, "data": {}, "error": {"message": message}}
    if field:
        payload["error"]["field"] = field
    if code:
        payload["error"]["code"] = code
    if details:
        payload["error"]["details"] = details
    return Response(payload, status=http_status)


def invalid_input(serializer) -> Response:
    return error(
        message="Invalid input.",
        code="validation_error",
        details=serializer.errors,
        http_status=status.HTTP_400_BAD_REQUEST,
    )
