"""User-visible outcomes of view actions."""

from dataclasses import asdict, dataclass

SUCCESS = "success"
INFO = "info"
ERROR = "error"
REDIRECT = "redirect"


@dataclass(frozen=True)
class Notice:
    kind: str
    message: str
    target: str | None = None

    @classmethod
    def success(cls, message: str) -> "Notice":
        return cls(SUCCESS, message)

    @classmethod
    def info(cls, message: str) -> "Notice":
        return cls(INFO, message)

    @classmethod
    def error(cls, message: str) -> "Notice":
        return cls(ERROR, message)

    @classmethod
    def redirect(cls, target: str, message: str = "Please sign in to continue.") -> "Notice":
        return cls(REDIRECT, message, target)

    def to_message(self) -> dict:
        """Wire form pushed to a live view's socket."""
        return {"type": "notice", **asdict(self)}
