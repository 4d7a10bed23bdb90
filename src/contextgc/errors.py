class ContextGCError(Exception):
    """Base error for the context garbage collector."""


class PruneRequestError(ContextGCError, ValueError):
    """A manual prune request was malformed or resolved to no valid ids."""


class SessionNotFoundError(ContextGCError, KeyError):
    """No state is registered for the requested session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Unknown session: {self.session_id}"
