"""API errors and validation helpers."""


class QueryValidationError(Exception):
    """Query parameters failed validation."""

    def __init__(self, errors: list[dict]):
        self.errors = errors
        super().__init__(f"{len(errors)} invalid query parameter(s)")


class InternalError(Exception):
    """Database, cache or unexpected failure. Details stay in the server log."""

    def __init__(self, message: str = "Internal Server Error"):
        self.message = message
        super().__init__(self.message)


def format_validation_errors(errors) -> list[dict]:
    """Flatten pydantic error dicts into ``{code, path, message}`` entries.

    Errors raised for a rule spanning several fields carry those fields in
    ``ctx["fields"]``; every other error is located by its own ``loc``.
    """
    formatted = []
    for err in errors:
        ctx = err.get("ctx") or {}
        fields = ctx.get("fields")
        if fields:
            path = list(fields)
        else:
            # FastAPI prefixes request errors with the parameter source
            path = [str(p) for p in err.get("loc", ()) if p not in ("query", "header")]
        formatted.append({
            "code": err.get("type", "invalid"),
            "path": path,
            "message": err.get("msg", "Invalid value"),
        })
    return formatted
