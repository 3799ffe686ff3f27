"""Concurrent dispatch of staged files to the configured lint engines.

One worker thread per engine. Each worker filters the file list by the
engine's extensions, reads the selected staged files into a JSON payload and
sends it over gRPC. Results are tracked by engine index, so the merged output
follows configuration order no matter which engine answers first.

The first failure aborts the run: findings already collected from other
engines are dropped and peers that have not reached their RPC call yet are
cancelled.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from lintflow_core import workspace
from lintflow_core.errors import DispatchError, ValidationError
from lintflow_core.models import CONTENT_SUFFIX, PATCH_NAME, Finding, LintEngineConfig
from lintflow_core.rpc import LintClient

logger = logging.getLogger(__name__)


def filter_files(extensions: Iterable[str], files: Iterable[str]) -> list[str]:
    """Return the files whose extension is in ``extensions``, in input order.

    The extension is taken after dropping the staged-content suffix, so
    ``main.go.base64`` matches ``.go``.
    """
    include = set(extensions)
    return [name for name in files if os.path.splitext(name.removesuffix(CONTENT_SUFFIX))[1] in include]


def marshal(root: str | os.PathLike, files: Sequence[str]) -> str:
    """Serialize the staged content of ``files`` as ``{path: content}`` JSON.

    ``PATCH_NAME`` names the staged patch. Every other entry is a changed
    file and is read from its suffixed staged path.
    """
    buf: dict[str, str] = {}
    for name in files:
        if not name:
            raise ValidationError("invalid data: empty file name")
        staged = PATCH_NAME if name == PATCH_NAME else workspace.staged_name(name)
        buf[name] = workspace.read(root, staged)
    if not buf:
        raise ValidationError("invalid data: nothing to marshal")
    return json.dumps(buf)


class LintDispatcher:
    def __init__(
        self,
        engines: Sequence[LintEngineConfig],
        client_factory: Callable[[LintEngineConfig], LintClient] = LintClient,
    ):
        self.engines = tuple(engines)
        self._client_factory = client_factory

    def run(self, root: str | os.PathLike, files: Sequence[str]) -> list[Finding]:
        """Lint ``files`` staged under ``root`` with every configured engine.

        Raises DispatchError on the first engine failure.
        """
        if not self.engines:
            return []

        files = tuple(files)
        cancelled = threading.Event()
        results: list[list[Finding]] = [[] for _ in self.engines]

        executor = ThreadPoolExecutor(max_workers=len(self.engines), thread_name_prefix="lint")
        futures: dict[Future, int] = {
            executor.submit(self._lint, engine, root, files, cancelled): index
            for index, engine in enumerate(self.engines)
        }
        try:
            for future in as_completed(futures):
                index = futures[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    cancelled.set()
                    for peer in futures:
                        peer.cancel()
                    engine = self.engines[index]
                    logger.error("Lint engine %s failed: %s", engine.name, e)
                    raise DispatchError(engine.name, "failed to lint") from e
        finally:
            # Running peers notice the cancel event before their RPC call;
            # there is no need to wait for them.
            executor.shutdown(wait=False, cancel_futures=True)

        return [finding for findings in results for finding in findings]

    def _lint(
        self,
        engine: LintEngineConfig,
        root: str | os.PathLike,
        files: Sequence[str],
        cancelled: threading.Event,
    ) -> list[Finding]:
        selected = filter_files(engine.extensions, files)
        if not selected:
            logger.debug("No files for lint engine %s", engine.name)
            return []

        payload = marshal(root, selected)
        if cancelled.is_set():
            logger.debug("Lint engine %s cancelled before sending", engine.name)
            return []

        findings = self._client_factory(engine).send(payload)
        logger.info("Lint engine %s reported %d finding(s) for %d file(s)", engine.name, len(findings), len(selected))
        return findings
