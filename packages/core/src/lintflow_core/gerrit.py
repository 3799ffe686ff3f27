"""Gerrit REST adapter: fetch a change into the workspace and post the vote.

Gerrit prefixes every JSON response with ``)]}'`` to defeat XSSI; the four
bytes are stripped before decoding. Responses are decoded into typed pydantic
models, so a payload missing a field fails with DecodeError instead of a
KeyError deep inside the fetch loop.

When both a user and a password are configured, every URL moves under the
``/a`` prefix and every request carries HTTP basic auth.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import quote

import httpx
import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from lintflow_core import workspace
from lintflow_core.errors import DecodeError, LintflowError, TransportError, ValidationError
from lintflow_core.models import PATCH_NAME, Finding, ReviewConfig, VoteConfig

logger = logging.getLogger(__name__)

MAGIC_PREFIX = b")]}'"

QUERY_FETCH_OPTIONS = ("CURRENT_FILES", "CURRENT_REVISION")
QUERY_VOTE_OPTIONS = ("CURRENT_REVISION",)

DEFAULT_TIMEOUT = 30.0


# ---------------------------------------------------------------------- #
# Response schemas                                                       #
# ---------------------------------------------------------------------- #


class FileInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str | None = None
    binary: bool = False
    lines_inserted: int = 0
    lines_deleted: int = 0


class RevisionInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number: int = Field(alias="_number")
    ref: str | None = None
    files: dict[str, FileInfo] = Field(default_factory=dict)


class ChangeInfo(BaseModel):
    """One element of a change query result."""

    model_config = ConfigDict(populate_by_name=True)

    number: int = Field(alias="_number")
    current_revision: str
    revisions: dict[str, RevisionInfo]
    project: str | None = None
    branch: str | None = None
    subject: str | None = None

    def current(self) -> RevisionInfo:
        try:
            return self.revisions[self.current_revision]
        except KeyError:
            raise DecodeError(f"current revision {self.current_revision} missing from query result") from None


class AccountInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: int | None = Field(default=None, alias="_account_id")
    name: str | None = None
    email: str | None = None
    username: str | None = None


class ChangeDetail(BaseModel):
    """Result of the change detail endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    number: int = Field(alias="_number")
    project: str
    branch: str
    subject: str
    status: str
    owner: AccountInfo = Field(default_factory=AccountInfo)


_QUERY_RESULT = TypeAdapter(list[ChangeInfo])


def strip_magic(data: bytes) -> bytes:
    """Remove Gerrit's XSSI prefix from a JSON response body."""
    if not data.startswith(MAGIC_PREFIX):
        raise DecodeError("failed to unmarshal: missing )]}' prefix")
    return data[len(MAGIC_PREFIX) :]


def decode_query(data: bytes) -> ChangeInfo:
    """Decode a change query response and return its first match."""
    try:
        changes = _QUERY_RESULT.validate_json(strip_magic(data))
    except pydantic.ValidationError as e:
        raise DecodeError("failed to unmarshal query result") from e
    if not changes:
        raise ValidationError("failed to match")
    return changes[0]


def decode_detail(data: bytes) -> ChangeDetail:
    try:
        return ChangeDetail.model_validate_json(strip_magic(data))
    except pydantic.ValidationError as e:
        raise DecodeError("failed to unmarshal change detail") from e


def build_vote_payload(findings: list[Finding], vote: VoteConfig) -> dict:
    """Build the review body posted to Gerrit.

    No findings means approval with an empty comments map. Otherwise comments
    are grouped per file, keeping the order in which findings arrived.
    """
    if not findings:
        return {"comments": {}, "labels": {vote.label: vote.approval}, "message": vote.approval_message}

    comments: dict[str, list[dict]] = {}
    for finding in findings:
        comments.setdefault(finding.file, []).append({"line": finding.line, "message": finding.details})
    return {"comments": comments, "labels": {vote.label: vote.disapproval}, "message": vote.disapproval_message}


class GerritReview:
    """Talks to one Gerrit server.

    Owns an ``httpx.Client`` unless one is passed in. Use as a context manager
    or call ``close()`` when done.
    """

    def __init__(self, config: ReviewConfig, client: httpx.Client | None = None):
        self._config = config
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=DEFAULT_TIMEOUT)
        self._auth = httpx.BasicAuth(config.user, config.password) if config.authenticated else None

    def __enter__(self) -> GerritReview:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def fetch(self, commit: str) -> tuple[Path, list[str]]:
        """Stage the patch and every changed file of ``commit``'s current revision.

        Returns the revision-scoped staging directory and the file list: the
        patch's staged name followed by each changed file's original path.
        Nothing is retried. On failure, whatever was staged so far stays on
        disk and the raised error's ``staging_root`` names the directory, so
        the caller can clean it.
        """
        root = workspace.make_root()
        change = self._query(commit, QUERY_FETCH_OPTIONS)
        revision = change.current()
        path = root / str(change.number) / change.current_revision

        logger.info(
            "Fetching change %d revision %d (%d file(s)) into %s",
            change.number,
            revision.number,
            len(revision.files),
            path,
        )

        try:
            patch = self._get(self._url_patch(change.number, revision.number), step="patch")
            workspace.write(path, PATCH_NAME, patch)

            for name in revision.files:
                content = self._get(self._url_content(change.number, revision.number, name), step="content")
                workspace.write(path, workspace.staged_name(name), content)
        except LintflowError as e:
            e.staging_root = path
            raise

        return path, [PATCH_NAME, *revision.files]

    def vote(self, commit: str, findings: list[Finding]) -> None:
        """Post the review for ``commit``'s current revision.

        The change is queried again because the revision may have moved on
        since fetch.
        """
        change = self._query(commit, QUERY_VOTE_OPTIONS)
        revision = change.current()
        payload = build_vote_payload(findings, self._config.vote)

        logger.info(
            "Voting %s on change %d revision %d with %d comment(s)",
            payload["labels"][self._config.vote.label],
            change.number,
            revision.number,
            len(findings),
        )
        self._post(self._url_review(change.number, revision.number), payload, step="review")

    def detail(self, change_number: int) -> ChangeDetail:
        return decode_detail(self._get_bytes(self._url_detail(change_number), step="detail"))

    def clean(self, root: str | Path) -> None:
        workspace.clean(root)

    # ------------------------------------------------------------------ #
    # URLs                                                                 #
    # ------------------------------------------------------------------ #

    def _base(self) -> str:
        base = f"{self._config.host}:{self._config.port}"
        if self._config.authenticated:
            base += "/a"
        return base

    def _url_query(self) -> str:
        return f"{self._base()}/changes/"

    def _url_detail(self, change: int) -> str:
        return f"{self._base()}/changes/{change}/detail"

    def _url_patch(self, change: int, revision: int) -> str:
        return f"{self._base()}/changes/{change}/revisions/{revision}/patch"

    def _url_content(self, change: int, revision: int, name: str) -> str:
        return f"{self._base()}/changes/{change}/revisions/{revision}/files/{quote(name, safe='')}/content"

    def _url_review(self, change: int, revision: int) -> str:
        return f"{self._base()}/changes/{change}/revisions/{revision}/review"

    # ------------------------------------------------------------------ #
    # HTTP                                                                 #
    # ------------------------------------------------------------------ #

    def _query(self, commit: str, options: tuple[str, ...], start: int = 0) -> ChangeInfo:
        params = [("q", f"commit:{commit}"), *(("o", o) for o in options), ("n", str(start))]
        return decode_query(self._get_bytes(self._url_query(), params=params, step="query"))

    def _request(self, method: str, url: str, step: str, **kwargs) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            response = self._client.request(method, url, auth=self._auth, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"failed to {step}") from e
        if response.status_code != httpx.codes.OK:
            raise TransportError(
                f"failed to {step}: invalid status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def _get_bytes(self, url: str, step: str, params=None) -> bytes:
        return self._request("GET", url, step, params=params).content

    def _get(self, url: str, step: str) -> str:
        return self._request("GET", url, step).text

    def _post(self, url: str, payload: dict, step: str) -> None:
        self._request(
            "POST",
            url,
            step,
            content=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json;charset=utf-8"},
        )
