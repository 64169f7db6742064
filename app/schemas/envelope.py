from typing import Any


def ok(data: Any = None, message: str | None = None) -> dict:
    """Success envelope shared by every route: {success, message?, data?}."""
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def fail(message: str, code: str) -> dict:
    return {"success": False, "message": message, "error": {"code": code}}
