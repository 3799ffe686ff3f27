"""Error taxonomy.

Every error raised by lintflow carries a short context string naming the step
that failed ("failed to query", "failed to marshal", ...). The underlying
cause is chained with ``raise ... from err`` so the CLI can print the whole
chain.
"""

from __future__ import annotations


class LintflowError(Exception):
    """Base class for all lintflow failures."""

    # Set by fetch when it fails after it started staging files.
    staging_root = None


class TransportError(LintflowError):
    """Connection failure, non-success HTTP status or failed gRPC call."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(LintflowError):
    """Malformed JSON or a payload that does not match the expected schema."""


class WorkspaceError(LintflowError):
    """Local file system failure while staging or reading content."""


class ValidationError(LintflowError):
    """Input rejected before any I/O: empty paths, empty payloads, no match."""


class ConfigError(LintflowError):
    """Invalid configuration file or values."""


class DispatchError(LintflowError):
    """A lint engine failed; the whole dispatch run is discarded."""

    def __init__(self, engine: str, message: str):
        super().__init__(f"{engine}: {message}")
        self.engine = engine


def error_chain(err: BaseException) -> list[str]:
    """Return the messages of ``err`` and each chained cause, outermost first."""
    messages = []
    seen = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        messages.append(str(current) or type(current).__name__)
        current = current.__cause__ or current.__context__
    return messages
