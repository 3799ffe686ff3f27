"""Value types shared by the dispatcher, the Gerrit adapter and the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

# Staged name of the unified patch. Listed alongside changed files so engines
# that include ".patch" receive it.
PATCH_NAME = "base64.patch"

# Appended to every staged content file: Gerrit serves file content base64
# encoded and the staged copy is kept as served.
CONTENT_SUFFIX = ".base64"


class Finding(BaseModel):
    """One lint result as reported by a lint engine."""

    model_config = ConfigDict(frozen=True)

    file: str
    line: int
    details: str


@dataclass(frozen=True)
class LintEngineConfig:
    """One lint engine reachable over gRPC.

    ``extensions`` is the include filter: only files whose extension is in
    this set are sent to the engine.
    """

    name: str
    host: str
    port: int
    extensions: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class VoteConfig:
    label: str = "Code-Review"
    approval: str = "+1"
    disapproval: str = "-1"
    approval_message: str = "Voting Code-Review by lintflow"
    disapproval_message: str = "Voting Code-Review by lintflow"


@dataclass(frozen=True)
class ReviewConfig:
    """Connection settings for the Gerrit REST API."""

    host: str
    port: int
    user: str = ""
    password: str = ""
    vote: VoteConfig = field(default_factory=VoteConfig)

    @property
    def authenticated(self) -> bool:
        # Gerrit only accepts basic auth under the /a prefix.
        return bool(self.user and self.password)
