"""
Typed failures for the node update pipeline.

Clients raise CommandError when an external tool (git, docker compose) fails.
The kind is taken from the exception type wherever Python gives us one and
only falls back to sniffing the tool output when the tool returned nothing
but text. Pipeline stages wrap those into UpdateError subclasses that carry
the stage they failed in and the step log accumulated so far.
"""

from typing import List, Optional

from .schemas import ErrorKind, UpdateStage

MAX_DETAIL_CHARS = 4000

_SUGGESTIONS = {
    ErrorKind.PRECONDITION: "Check AR_IO_NODE_PATH and make sure the node checkout and its compose file exist.",
    ErrorKind.ABORTED: "Commit or stash your local changes, or re-run with --handle-changes preserve|archive|discard.",
    ErrorKind.RECONCILIATION: "Inspect the node checkout with 'git status' and resolve the repository state manually.",
    ErrorKind.TIMEOUT: "The operation took too long. Check network connectivity or raise the timeout in the configuration.",
    ErrorKind.TOOL_NOT_FOUND: "Make sure docker (with the compose plugin) and git are installed and on your PATH.",
    ErrorKind.PERMISSION_DENIED: "Run as a user that can access the Docker socket and the node directory.",
    ErrorKind.GENERIC: "Review the output above for details.",
    ErrorKind.VERIFICATION_SHORTFALL: "Some services did not come back up. Check 'gateway-node status' and the service logs.",
    ErrorKind.ALREADY_RUNNING: "Wait for the running update to finish before starting another one.",
}


def classify_failure(text: str) -> ErrorKind:
    """Best-effort classification of unstructured tool output."""
    lowered = (text or "").lower()
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorKind.TIMEOUT
    if "enoent" in lowered or "command not found" in lowered or "executable file not found" in lowered:
        return ErrorKind.TOOL_NOT_FOUND
    if "eacces" in lowered or "permission denied" in lowered:
        return ErrorKind.PERMISSION_DENIED
    return ErrorKind.GENERIC


def suggestion_for(kind: Optional[ErrorKind]) -> Optional[str]:
    if kind is None:
        return None
    return _SUGGESTIONS.get(kind)


def trim_output(output: Optional[str], limit: int = MAX_DETAIL_CHARS) -> Optional[str]:
    """Keeps the tail of raw tool output, where the actual error usually is."""
    if output is None:
        return None
    output = output.strip()
    if len(output) <= limit:
        return output
    return "...\n" + output[-limit:]


class CommandError(Exception):
    """An external command exited non-zero or could not be run at all."""

    def __init__(self, command: List[str], output: str = "", kind: Optional[ErrorKind] = None, returncode: Optional[int] = None):
        self.command = list(command)
        self.output = output or ""
        self.returncode = returncode
        self.kind = kind or classify_failure(self.output)
        super().__init__(f"`{' '.join(self.command)}` failed ({self.kind.value})")


class UpdateError(Exception):
    """A fatal pipeline failure, carrying the stage and the partial step log."""

    kind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        stage: Optional[UpdateStage] = None,
        steps: Optional[List[str]] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.stage = stage
        self.steps = list(steps or [])
        self.details = trim_output(details)

    @property
    def suggestion(self) -> Optional[str]:
        return suggestion_for(self.kind)


class PreconditionError(UpdateError):
    kind = ErrorKind.PRECONDITION


class UpdateAbortedError(UpdateError):
    """Local modifications are present and the caller asked to abort."""

    kind = ErrorKind.ABORTED

    def __init__(self, message: str, change_set: List[str], **kwargs):
        super().__init__(message, **kwargs)
        self.change_set = list(change_set)


class ReconciliationError(UpdateError):
    kind = ErrorKind.RECONCILIATION


class ImageRefreshError(UpdateError):
    pass


class StackRestartError(UpdateError):
    pass


class UpdateInProgressError(UpdateError):
    kind = ErrorKind.ALREADY_RUNNING
