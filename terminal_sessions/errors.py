from typing import Optional


class SessionError(Exception):
    """Base class for terminal session failures."""

    code = "SESSION_ERROR"

    def __init__(self, message: str, *, session_id: Optional[str] = None):
        self.message = message
        self.session_id = session_id
        super().__init__(message)


class CreationError(SessionError):
    """Process, attach, or multiplexer-create step failed while spawning."""

    code = "CREATION_FAILED"


class NotFoundError(SessionError):
    """Operation issued against an unknown session id."""

    code = "NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found", session_id=session_id)


class InactiveError(SessionError):
    """Write issued against a session that is not active."""

    code = "INACTIVE"

    def __init__(self, session_id: str, status: str):
        self.status = status
        super().__init__(f"Session {session_id} is not active (status: {status})", session_id=session_id)


class MultiplexerError(SessionError):
    """A multiplexer invocation returned non-zero where the caller cannot proceed."""

    code = "MULTIPLEXER_FAILED"

    def __init__(self, message: str, *, command: Optional[list] = None, returncode: Optional[int] = None, stderr: str = ""):
        self.command = list(command or [])
        self.returncode = returncode
        self.stderr = stderr
        detail = f"{message} (exit={returncode})" if returncode is not None else message
        if stderr:
            detail = f"{detail}: {stderr.strip()}"
        super().__init__(detail)
