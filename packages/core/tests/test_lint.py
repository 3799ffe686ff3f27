"""Tests for filtering, marshalling and concurrent dispatch."""

from __future__ import annotations

import json
import threading

import pytest

from lintflow_core import workspace
from lintflow_core.errors import DispatchError, TransportError, ValidationError, WorkspaceError
from lintflow_core.lint import LintDispatcher, filter_files, marshal
from lintflow_core.models import PATCH_NAME, Finding, LintEngineConfig


def _engine(name, *extensions, port=9090):
    return LintEngineConfig(name=name, host="127.0.0.1", port=port, extensions=tuple(extensions))


def _stage(root, files: dict[str, str]):
    for name, content in files.items():
        workspace.write(root, workspace.staged_name(name), content)


class StubClient:
    """Replaces LintClient; records payloads and replies per engine name."""

    def __init__(self, replies: dict, calls: list | None = None):
        self.replies = replies
        self.calls = calls if calls is not None else []
        self.lock = threading.Lock()

    def __call__(self, engine):
        stub = self

        class _Client:
            def send(self, payload):
                with stub.lock:
                    stub.calls.append((engine.name, json.loads(payload)))
                reply = stub.replies[engine.name]
                if isinstance(reply, Exception):
                    raise reply
                if callable(reply):
                    return reply()
                return reply

        return _Client()


# ---------------------------------------------------------------------------
# filter_files
# ---------------------------------------------------------------------------


class TestFilterFiles:
    def test_keeps_matching_extensions_in_order(self):
        files = ["b.go", "a.txt", "c.go", "d.py"]
        assert filter_files([".go", ".py"], files) == ["b.go", "c.go", "d.py"]

    def test_strips_content_suffix_before_matching(self):
        assert filter_files([".go"], ["main.go.base64", "notes.txt.base64"]) == ["main.go.base64"]

    def test_suffix_itself_is_not_an_extension(self):
        assert filter_files([".base64"], ["main.go.base64"]) == []

    def test_patch_matched_by_patch_extension(self):
        assert filter_files([".patch"], [PATCH_NAME, "a.go"]) == [PATCH_NAME]

    def test_disjoint_set_returns_empty(self):
        assert filter_files([".rs"], ["a.go", "b.txt"]) == []

    def test_no_extension_never_matches_dotted_filter(self):
        assert filter_files([".go"], ["Makefile", "/COMMIT_MSG"]) == []

    def test_nested_paths(self):
        assert filter_files([".go"], ["pkg/sub.dir/x.go", "pkg/sub.go/readme"]) == ["pkg/sub.dir/x.go"]


# ---------------------------------------------------------------------------
# marshal
# ---------------------------------------------------------------------------


class TestMarshal:
    def test_maps_original_path_to_staged_content(self, tmp_path):
        _stage(tmp_path, {"a.go": "YQ==", "dir/b.go": "Yg=="})
        payload = json.loads(marshal(tmp_path, ["a.go", "dir/b.go"]))
        assert payload == {"a.go": "YQ==", "dir/b.go": "Yg=="}

    def test_reads_patch_under_its_own_name(self, tmp_path):
        workspace.write(tmp_path, PATCH_NAME, "cGF0Y2g=")
        assert json.loads(marshal(tmp_path, [PATCH_NAME])) == {PATCH_NAME: "cGF0Y2g="}

    def test_empty_file_name_rejected(self, tmp_path):
        _stage(tmp_path, {"a.go": "x"})
        with pytest.raises(ValidationError):
            marshal(tmp_path, ["a.go", ""])

    def test_empty_file_list_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            marshal(tmp_path, [])

    def test_unreadable_file_raises(self, tmp_path):
        with pytest.raises(WorkspaceError):
            marshal(tmp_path, ["missing.go"])


# ---------------------------------------------------------------------------
# LintDispatcher.run
# ---------------------------------------------------------------------------


class TestDispatcherRun:
    def test_end_to_end_single_engine_only_gets_matching_file(self, tmp_path):
        _stage(tmp_path, {"a.go": "YS5nbw==", "b.txt": "Yi50eHQ="})
        stub = StubClient({"golint": [Finding(file="a.go", line=1, details="exported func")]})
        dispatcher = LintDispatcher([_engine("golint", ".go")], client_factory=stub)

        findings = dispatcher.run(tmp_path, [PATCH_NAME, "a.go", "b.txt"])

        assert stub.calls == [("golint", {"a.go": "YS5nbw=="})]
        assert findings == [Finding(file="a.go", line=1, details="exported func")]

    def test_disjoint_engine_makes_no_call(self, tmp_path):
        _stage(tmp_path, {"a.go": "x"})
        stub = StubClient({})
        dispatcher = LintDispatcher([_engine("rust", ".rs")], client_factory=stub)

        assert dispatcher.run(tmp_path, ["a.go"]) == []
        assert stub.calls == []

    def test_no_engines_returns_empty(self, tmp_path):
        assert LintDispatcher([]).run(tmp_path, ["a.go"]) == []

    def test_results_follow_configuration_order(self, tmp_path):
        _stage(tmp_path, {"a.go": "x", "b.py": "y"})
        go_released = threading.Event()

        def slow_go():
            go_released.wait(timeout=5)
            return [Finding(file="a.go", line=1, details="go")]

        def fast_py():
            go_released.set()
            return [Finding(file="b.py", line=2, details="py")]

        stub = StubClient({"go": slow_go, "py": fast_py})
        dispatcher = LintDispatcher([_engine("go", ".go"), _engine("py", ".py")], client_factory=stub)

        findings = dispatcher.run(tmp_path, ["a.go", "b.py"])

        assert [f.details for f in findings] == ["go", "py"]

    def test_within_engine_order_preserved(self, tmp_path):
        _stage(tmp_path, {"a.go": "x"})
        reply = [Finding(file="a.go", line=n, details=str(n)) for n in (9, 2, 5)]
        dispatcher = LintDispatcher([_engine("go", ".go")], client_factory=StubClient({"go": reply}))
        assert [f.line for f in dispatcher.run(tmp_path, ["a.go"])] == [9, 2, 5]

    def test_one_failure_discards_all_findings(self, tmp_path):
        _stage(tmp_path, {"a.go": "x", "b.py": "y", "c.sh": "z"})
        stub = StubClient(
            {
                "go": [Finding(file="a.go", line=1, details="ok")],
                "py": TransportError("failed to send: UNAVAILABLE"),
                "sh": [Finding(file="c.sh", line=3, details="ok")],
            }
        )
        dispatcher = LintDispatcher(
            [_engine("go", ".go"), _engine("py", ".py"), _engine("sh", ".sh")], client_factory=stub
        )

        with pytest.raises(DispatchError) as info:
            dispatcher.run(tmp_path, ["a.go", "b.py", "c.sh"])

        assert info.value.engine == "py"
        assert isinstance(info.value.__cause__, TransportError)

    def test_marshal_failure_reported_once_and_no_rpc(self, tmp_path):
        # a.go is listed but never staged.
        stub = StubClient({"go": []})
        dispatcher = LintDispatcher([_engine("go", ".go")], client_factory=stub)

        with pytest.raises(DispatchError) as info:
            dispatcher.run(tmp_path, ["a.go"])

        assert isinstance(info.value.__cause__, WorkspaceError)
        assert stub.calls == []

    def test_failure_cancels_peers_waiting_to_send(self, tmp_path, monkeypatch):
        _stage(tmp_path, {"a.go": "x", "b.py": "y"})
        gate = threading.Event()
        real_marshal = marshal

        def gated_marshal(root, files):
            if files == ["b.py"]:
                # Hold the peer until the failing engine has been reported.
                gate.wait(timeout=5)
            return real_marshal(root, files)

        monkeypatch.setattr("lintflow_core.lint.marshal", gated_marshal)
        stub = StubClient({"go": TransportError("failed to send: UNAVAILABLE"), "py": []})
        dispatcher = LintDispatcher([_engine("go", ".go"), _engine("py", ".py")], client_factory=stub)

        with pytest.raises(DispatchError):
            dispatcher.run(tmp_path, ["a.go", "b.py"])
        gate.set()
        for thread in threading.enumerate():
            if thread.name.startswith("lint_"):
                thread.join(timeout=5)

        assert [name for name, _ in stub.calls] == ["go"]

    def test_files_passed_as_generator_are_shared_by_engines(self, tmp_path):
        _stage(tmp_path, {"a.go": "x", "b.py": "y"})
        stub = StubClient({"go": [], "py": []})
        dispatcher = LintDispatcher([_engine("go", ".go"), _engine("py", ".py")], client_factory=stub)

        dispatcher.run(tmp_path, (name for name in ["a.go", "b.py"]))

        assert sorted(name for name, _ in stub.calls) == ["go", "py"]
