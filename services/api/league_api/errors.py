"""Domain errors raised by the service layer.

Route handlers raise `HTTPException` directly for request-shape problems they
detect themselves. Deeper code (services, calculations, config cache) raises the
classes below, and `main.py` maps them to JSON responses:

- `NotFoundError`   -> 404
- `ValidationError` -> 400, with a list of messages
- `ConflictError`   -> 409 (duplicate values, stale versions)
"""


class LeagueError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"ok": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(LeagueError):
    status_code = 404


class ValidationError(LeagueError):
    status_code = 400

    def __init__(self, message: str, *, errors: list[str] | None = None):
        super().__init__(message, details=errors)
        self.errors = errors or []


class ConflictError(LeagueError):
    status_code = 409
