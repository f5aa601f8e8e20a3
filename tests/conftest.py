"""Pytest configuration and fixtures for Callsite tests."""

import asyncio
import json
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from callsite.config import Settings
from callsite.core.index_manager import DEFAULT_INDEX_PATH, IndexManager
from callsite.core.watcher import FileWatcher


class FakeWatcher(FileWatcher):
    """In-memory watcher; tests fire events by hand."""

    def __init__(self):
        self.path = None
        self.starts = 0
        self.stops = 0
        self._on_change = None
        self._on_delete = None

    def start(self, path, on_change, on_delete):
        self.path = Path(path)
        self.starts += 1
        self._on_change = on_change
        self._on_delete = on_delete

    def stop(self):
        self.stops += 1
        self.path = None

    def fire_change(self):
        self._on_change()

    def fire_delete(self):
        self._on_delete()


async def settle(manager: IndexManager | None = None) -> None:
    """Let callbacks scheduled with ``call_soon_threadsafe`` run."""
    for _ in range(3):
        await asyncio.sleep(0)
    if manager is not None:
        await manager.wait_for_reloads()


async def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def make_node(node_id, display_name, relative_path, start_line=None, end_line=None, **extra):
    parent, _, file_name = relative_path.rpartition("/")
    node = {
        "id": node_id,
        "display_name": display_name,
        "symbol": f"crate::{display_name}",
        "relative_path": relative_path,
        "file_name": file_name,
        "parent_folder": parent,
        "is_libsignal": False,
        "dependencies": [],
        "dependents": [],
    }
    if start_line is not None:
        node["start_line"] = start_line
    if end_line is not None:
        node["end_line"] = end_line
    node.update(extra)
    return node


@pytest.fixture
def sample_graph() -> dict:
    """Five functions across three files, with mixed modes and statuses."""
    nodes = [
        make_node("func_a", "function_a", "src/module.rs", 10, 20,
                  dependencies=["func_b", "func_c"], mode="exec", verification_status="verified"),
        make_node("func_b", "function_b", "src/module.rs", 25, 35,
                  dependencies=["func_d"], dependents=["func_a"], mode="proof", verification_status="verified"),
        make_node("func_c", "function_c", "src/module.rs", 40, 50,
                  dependents=["func_a"], mode="spec", verification_status="failed"),
        make_node("func_d", "function_d", "src/utils.rs", 5, 15,
                  dependents=["func_b"], mode="exec", verification_status="unverified"),
        make_node("func_e", "function_e", "src/other.rs", 1, 10,
                  dependencies=["func_a"], mode="exec"),
    ]
    return {
        "nodes": nodes,
        "links": [
            {"source": "func_a", "target": "func_b", "type": "inner"},
            {"source": "func_a", "target": "func_c", "type": "precondition"},
            {"source": "func_b", "target": "func_d"},
            {"source": "func_e", "target": "func_a", "type": "postcondition"},
        ],
        "metadata": {
            "total_nodes": 5,
            "total_edges": 4,
            "project_root": "/test/project",
            "generated_at": "2024-01-05T15:07:00Z",
        },
    }


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        index_path="",
        pipeline_repo_path="",
        pipeline_timeout_s=20.0,
        debounce_delay_ms=100,
        diagnostic_tail_lines=5,
    )


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_index(project: Path) -> Callable[[dict], Path]:
    def write(graph: dict, path: Path | None = None) -> Path:
        target = path or project / DEFAULT_INDEX_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(graph), encoding="utf-8")
        return target

    return write


@pytest.fixture
def watcher() -> FakeWatcher:
    return FakeWatcher()


@pytest.fixture
def manager(config: Settings, watcher: FakeWatcher) -> IndexManager:
    manager = IndexManager(config, watcher=watcher)
    yield manager
    manager.clear()


PIPELINE_SCRIPT = textwrap.dedent(
    """
    import json
    import pathlib
    import subprocess
    import sys
    import time

    here = pathlib.Path(__file__).parent
    args = sys.argv[1:]
    out = pathlib.Path(args[args.index("-o") + 1])
    mode = (here / "mode.txt").read_text().strip()
    (here / "argv.json").write_text(json.dumps(args))

    print("started", flush=True)
    print("warming up", file=sys.stderr, flush=True)
    if mode == "sleep":
        time.sleep(60)
    if mode == "fork":
        # A helper tool that inherits the output pipes.
        subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        print("helper running", flush=True)
        time.sleep(60)
    if mode == "long":
        print("x" * 200000, flush=True)
    if mode == "fail":
        for i in range(10):
            print(f"error line {i}", file=sys.stderr, flush=True)
        sys.exit(3)
    out.write_text((here / "graph.json").read_text())
    print("done", flush=True)
    """
)


class FakePipeline:
    """A Python script standing in for the scip-callgraph ``pipeline`` binary."""

    def __init__(self, directory: Path, graph: dict):
        directory.mkdir(parents=True, exist_ok=True)
        self.directory = directory
        self.script = directory / "pipeline.py"
        self.script.write_text(PIPELINE_SCRIPT, encoding="utf-8")
        self.set_graph(graph)
        self.set_mode("ok")

    @property
    def executable(self) -> list[str]:
        return [sys.executable, str(self.script)]

    def set_mode(self, mode: str) -> None:
        (self.directory / "mode.txt").write_text(mode, encoding="utf-8")

    def set_graph(self, graph: dict) -> None:
        (self.directory / "graph.json").write_text(json.dumps(graph), encoding="utf-8")

    def last_argv(self) -> list[str]:
        return json.loads((self.directory / "argv.json").read_text())


@pytest.fixture
def fake_pipeline(tmp_path: Path, sample_graph: dict) -> FakePipeline:
    return FakePipeline(tmp_path / "fake_pipeline", sample_graph)
