"""Tests for the in-memory index builder and its query methods."""

import json
from datetime import datetime, timezone
from pathlib import Path

from conftest import make_node

from callsite.core.index import build_index
from callsite.core.parser import parse_graph

INDEX_PATH = Path("/test/project/.vscode/call_graph_index.json")


def build(graph: dict):
    return build_index(parse_graph(json.dumps(graph)), INDEX_PATH)


class TestBuildIndex:
    def test_every_node_indexed_by_id(self, sample_graph):
        index = build(sample_graph)
        assert len(index.nodes_by_id) == len(sample_graph["nodes"])
        assert index.find_node_by_id("func_c").display_name == "function_c"

    def test_nodes_grouped_by_file(self, sample_graph):
        index = build(sample_graph)
        assert len(index.nodes_by_file["src/module.rs"]) == 3
        assert [n.id for n in index.nodes_by_file["src/module.rs"]] == ["func_a", "func_b", "func_c"]
        assert len(index.nodes_by_file["src/utils.rs"]) == 1

    def test_line_ranges_are_inclusive(self, sample_graph):
        index = build(sample_graph)
        lines = index.nodes_by_line["src/module.rs"]
        assert lines[15].id == "func_a"
        assert lines[10].id == "func_a"
        assert lines[20].id == "func_a"
        assert 21 not in lines
        assert lines[25].id == "func_b"
        assert lines[50].id == "func_c"

    def test_every_line_in_range_maps_to_node(self, sample_graph):
        index = build(sample_graph)
        for node in sample_graph["nodes"]:
            line_map = index.nodes_by_line[node["relative_path"]]
            for line in range(node["start_line"], node["end_line"] + 1):
                assert line_map[line].id == node["id"]

    def test_overlapping_ranges_last_processed_wins(self):
        outer = make_node("outer", "outer", "src/lib.rs", 1, 30)
        inner = make_node("inner", "inner", "src/lib.rs", 10, 12)
        index = build({"nodes": [outer, inner], "links": []})
        lines = index.nodes_by_line["src/lib.rs"]
        assert lines[5].id == "outer"
        assert lines[11].id == "inner"
        assert lines[13].id == "outer"

        # Reversing the order reverses the winner.
        index = build({"nodes": [inner, outer], "links": []})
        assert index.nodes_by_line["src/lib.rs"][11].id == "outer"

    def test_duplicate_display_names_are_kept_in_order(self):
        nodes = [
            make_node("a::new", "new", "src/a.rs", 1, 3),
            make_node("b::new", "new", "src/b.rs", 1, 3),
        ]
        index = build({"nodes": nodes, "links": []})
        assert [n.id for n in index.find_nodes_by_name("new")] == ["a::new", "b::new"]

    def test_missing_end_line_covers_start_line_only(self):
        node = make_node("n", "n", "src/lib.rs", 7)
        index = build({"nodes": [node], "links": []})
        assert list(index.nodes_by_line["src/lib.rs"]) == [7]

    def test_node_without_lines_is_not_line_indexed(self):
        node = make_node("n", "n", "src/lib.rs")
        index = build({"nodes": [node], "links": []})
        assert "src/lib.rs" in index.nodes_by_file
        assert "src/lib.rs" not in index.nodes_by_line

    def test_file_name_used_when_relative_path_missing(self):
        node = make_node("n", "n", "lib.rs", 1, 2)
        node["relative_path"] = ""
        index = build({"nodes": [node], "links": []})
        assert "lib.rs" in index.nodes_by_file

    def test_links_are_kept_unmodified(self, sample_graph):
        index = build(sample_graph)
        assert [(l.source, l.target) for l in index.links] == [
            ("func_a", "func_b"),
            ("func_a", "func_c"),
            ("func_b", "func_d"),
            ("func_e", "func_a"),
        ]

    def test_dangling_dependencies_miss_on_lookup(self, sample_graph):
        sample_graph["nodes"][0]["dependencies"].append("ghost")
        index = build(sample_graph)
        assert "ghost" in index.find_node_by_id("func_a").dependencies
        assert index.find_node_by_id("ghost") is None

    def test_metadata(self, sample_graph):
        loaded = datetime(2024, 2, 1, tzinfo=timezone.utc)
        index = build_index(parse_graph(json.dumps(sample_graph)), INDEX_PATH, loaded_at=loaded)
        meta = index.metadata
        assert meta.total_nodes == 5
        assert meta.total_edges == 4
        assert meta.project_root == "/test/project"
        assert meta.generated_at == datetime(2024, 1, 5, 15, 7, tzinfo=timezone.utc)
        assert meta.index_path == INDEX_PATH
        assert meta.loaded_at == loaded

    def test_generated_at_falls_back_to_load_time(self, sample_graph):
        del sample_graph["metadata"]
        loaded = datetime(2024, 2, 1, tzinfo=timezone.utc)
        index = build_index(parse_graph(json.dumps(sample_graph)), INDEX_PATH, loaded_at=loaded)
        assert index.metadata.generated_at == loaded
        assert index.metadata.project_root == ""

    def test_build_is_deterministic(self, sample_graph):
        first = build(sample_graph)
        second = build(sample_graph)
        assert list(first.nodes_by_id) == list(second.nodes_by_id)
        assert {k: [n.id for n in v] for k, v in first.nodes_by_file.items()} == {
            k: [n.id for n in v] for k, v in second.nodes_by_file.items()
        }


class TestQueries:
    def test_find_nodes_by_name_unknown_is_empty(self, sample_graph):
        assert build(sample_graph).find_nodes_by_name("nope") == []

    def test_find_nodes_by_name_returns_copy(self, sample_graph):
        index = build(sample_graph)
        index.find_nodes_by_name("function_a").clear()
        assert len(index.find_nodes_by_name("function_a")) == 1

    def test_position_with_relative_path(self, sample_graph):
        index = build(sample_graph)
        assert index.find_node_at_position("src/module.rs", 30).id == "func_b"

    def test_position_outside_any_range(self, sample_graph):
        index = build(sample_graph)
        assert index.find_node_at_position("src/module.rs", 22) is None

    def test_position_unknown_file(self, sample_graph):
        index = build(sample_graph)
        assert index.find_node_at_position("src/missing.rs", 1) is None

    def test_position_with_absolute_path_under_project_root(self, sample_graph):
        index = build(sample_graph)
        assert index.find_node_at_position("/test/project/src/utils.rs", 6).id == "func_d"

    def test_position_with_foreign_absolute_path_uses_src_segment(self, sample_graph):
        index = build(sample_graph)
        assert index.find_node_at_position("/home/me/checkout/src/module.rs", 41).id == "func_c"

    def test_position_with_windows_path(self, sample_graph):
        index = build(sample_graph)
        assert index.find_node_at_position("C:\\work\\proj\\src\\other.rs", 3).id == "func_e"

    def test_position_falls_back_to_file_name_suffix(self):
        node = make_node("n", "n", "crates/core/lib/engine.rs", 1, 5)
        index = build({"nodes": [node], "links": []})
        assert index.find_node_at_position("/elsewhere/engine.rs", 2).id == "n"

    def test_find_nodes_in_file_accepts_absolute_path(self, sample_graph):
        index = build(sample_graph)
        ids = [n.id for n in index.find_nodes_in_file("/test/project/src/module.rs")]
        assert ids == ["func_a", "func_b", "func_c"]
