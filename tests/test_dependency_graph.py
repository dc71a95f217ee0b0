"""Tests for the DependencyGraph.

Covers:
- Build: discovery, classification, idempotence, failure handling
- Import resolution: relative paths, sections, dangling imports, cache fallback
- Impact queries: fan-out, transitivity, diamonds, cycles, unknown files
- Incremental update/remove and reverse-index consistency
"""

import os

import pytest

from mcp_workflow_graph.dependency_graph import DependencyGraph
from mcp_workflow_graph.errors import DiscoveryError, ExtractionError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chain(workflows_dir, write_workflow):
    """a.md (top-level) -> shared/mid.md -> shared/leaf.md"""
    paths = {
        "leaf": write_workflow("shared/leaf.md"),
        "mid": write_workflow("shared/mid.md", imports=["leaf.md"]),
        "a": write_workflow("a.md", imports=["shared/mid.md"]),
    }
    graph = DependencyGraph(str(workflows_dir))
    graph.build()
    return graph, paths


@pytest.fixture
def diamond(workflows_dir, write_workflow):
    """a.md and b.md both import shared/mid.md, which imports shared/leaf.md"""
    paths = {
        "leaf": write_workflow("shared/leaf.md"),
        "mid": write_workflow("shared/mid.md", imports=["leaf.md"]),
        "a": write_workflow("a.md", imports=["shared/mid.md"]),
        "b": write_workflow("b.md", imports=["shared/mid.md"]),
    }
    graph = DependencyGraph(str(workflows_dir))
    graph.build()
    return graph, paths


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class TestBuild:
    def test_discovers_nested_documents(self, chain):
        graph, paths = chain
        assert len(graph) == 3
        assert set(graph.workflow_paths()) == set(paths.values())

    def test_classifies_by_location(self, chain):
        graph, paths = chain
        assert graph.get_node(paths["a"]).is_top_level
        assert not graph.get_node(paths["mid"]).is_top_level
        assert not graph.get_node(paths["leaf"]).is_top_level

    def test_classification_ignores_content(self, workflows_dir, write_workflow):
        path = write_workflow("shared/deep/nested/frag.md", body="top-level: true\n")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert not graph.get_node(path).is_top_level

    def test_resolves_imports_to_absolute_paths(self, chain):
        graph, paths = chain
        assert graph.imports_of(paths["a"]) == [paths["mid"]]
        assert graph.imports_of(paths["mid"]) == [paths["leaf"]]
        assert graph.importers_of(paths["leaf"]) == [paths["mid"]]

    def test_skips_lock_files_and_other_files(self, workflows_dir, write_workflow):
        write_workflow("a.md")
        (workflows_dir / "a.lock.yml").write_text("name: a\n")
        (workflows_dir / "notes.txt").write_text("not a workflow\n")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert [os.path.basename(p) for p in graph.workflow_paths()] == ["a.md"]

    def test_missing_directory_raises_discovery_error(self, tmp_path):
        graph = DependencyGraph(str(tmp_path / "nope"))
        with pytest.raises(DiscoveryError):
            graph.build()

    def test_file_instead_of_directory_raises_discovery_error(self, tmp_path):
        target = tmp_path / "file.md"
        target.write_text("x")
        with pytest.raises(DiscoveryError):
            DependencyGraph(str(target)).build()

    def test_empty_directory_builds_empty_graph(self, workflows_dir):
        graph = DependencyGraph(str(workflows_dir))
        assert graph.build() == []
        assert len(graph) == 0
        assert graph.get_top_level_workflows() == set()

    def test_build_twice_is_idempotent(self, diamond):
        graph, paths = diamond
        before_len = len(graph)
        before_index = graph.reverse_index()
        before_affected = graph.get_affected_workflows(paths["leaf"])

        assert graph.build() == []

        assert len(graph) == before_len
        assert graph.reverse_index() == before_index
        assert graph.get_affected_workflows(paths["leaf"]) == before_affected

    def test_build_skips_known_paths_without_merging(self, workflows_dir, write_workflow):
        a = write_workflow("a.md")
        mid = write_workflow("shared/mid.md")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()

        # Changed on disk, but build() must not pick it up
        write_workflow("a.md", imports=["shared/mid.md"])
        graph.build()
        assert graph.imports_of(a) == []
        assert graph.importers_of(mid) == []

    def test_stats(self, diamond):
        graph, _ = diamond
        stats = graph.stats()
        assert stats.total_workflows == 4
        assert stats.top_level_workflows == 2
        assert stats.fragments == 2
        assert stats.import_edges == 3
        assert stats.imported_files == 2


class TestExtractionFailures:
    def test_unparsable_document_becomes_leaf(self, workflows_dir, write_workflow):
        bad = workflows_dir / "shared" / "bad.md"
        bad.parent.mkdir(parents=True)
        bad.write_text("---\nimports: [unclosed\n---\nbody\n")
        a = write_workflow("a.md", imports=["shared/bad.md"])

        graph = DependencyGraph(str(workflows_dir))
        warnings = graph.build()

        assert len(warnings) == 1
        assert str(bad) in warnings[0]
        assert graph.get_node(str(bad)).imports == []
        # Its importers still reach it
        assert graph.get_affected_workflows(str(bad)) == {a}

    def test_extractor_error_does_not_stop_batch(self, workflows_dir, write_workflow):
        a = write_workflow("a.md")
        b = write_workflow("b.md")

        def extractor(path):
            if path == a:
                raise ExtractionError("boom")
            return []

        graph = DependencyGraph(str(workflows_dir), extractor=extractor)
        warnings = graph.build()
        assert len(warnings) == 1
        assert a in graph and b in graph

    def test_custom_extractor(self, workflows_dir, write_workflow):
        a = write_workflow("a.md")
        frag = write_workflow("shared/frag.md")
        graph = DependencyGraph(
            str(workflows_dir),
            extractor=lambda path: ["shared/frag.md"] if path == a else [],
        )
        graph.build()
        assert graph.imports_of(a) == [frag]


class TestImportResolution:
    def test_section_suffix_is_stripped(self, workflows_dir, write_workflow):
        mid = write_workflow("shared/mid.md")
        a = write_workflow("a.md", imports=["shared/mid.md#Tools"])
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.imports_of(a) == [mid]

    def test_unresolvable_import_is_dropped(self, workflows_dir, write_workflow):
        a = write_workflow("a.md", imports=["shared/missing.md", "shared/real.md"])
        real = write_workflow("shared/real.md")
        graph = DependencyGraph(str(workflows_dir))
        assert graph.build() == []

        assert graph.imports_of(a) == [real]
        missing = str(workflows_dir / "shared" / "missing.md")
        assert missing not in graph.reverse_index()

    def test_object_import_with_path(self, workflows_dir, write_workflow):
        mid = write_workflow("shared/mid.md")
        a = workflows_dir / "a.md"
        a.write_text("---\nimports:\n  - path: shared/mid.md\n    inputs:\n      x: 1\n---\n")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.imports_of(str(a)) == [mid]

    def test_body_include_directive(self, workflows_dir, write_workflow):
        mid = write_workflow("shared/mid.md")
        a = write_workflow("a.md", body="# A\n\n{{#import shared/mid.md}}\n")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.imports_of(a) == [mid]

    def test_falls_back_to_repository_root(self, tmp_path):
        repo = tmp_path / "repo"
        workflows = repo / ".github" / "workflows"
        (repo / ".git").mkdir(parents=True)
        (workflows / "shared").mkdir(parents=True)
        frag = workflows / "shared" / "frag.md"
        frag.write_text("# fragment\n")
        a = workflows / "a.md"
        a.write_text("---\nimports:\n  - .github/workflows/shared/frag.md\n---\n")

        graph = DependencyGraph(str(workflows))
        graph.build()
        assert graph.imports_of(str(a)) == [str(frag)]


# ---------------------------------------------------------------------------
# Impact queries
# ---------------------------------------------------------------------------


class TestAffectedWorkflows:
    def test_fan_out(self, workflows_dir, write_workflow):
        tools = write_workflow("shared/tools.md")
        importers = {
            write_workflow(f"{name}.md", imports=["shared/tools.md"]) for name in "abc"
        }
        write_workflow("d.md")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.get_affected_workflows(tools) == importers

    def test_fan_out_independent_of_insertion_order(self, workflows_dir, write_workflow):
        tools = write_workflow("shared/tools.md")
        importers = [
            write_workflow(f"{name}.md", imports=["shared/tools.md"]) for name in "abc"
        ]
        graph = DependencyGraph(str(workflows_dir))
        for path in reversed(importers + [tools]):
            graph.update(path)
        assert graph.get_affected_workflows(tools) == set(importers)

    def test_transitive(self, chain):
        graph, paths = chain
        assert graph.get_affected_workflows(paths["leaf"]) == {paths["a"]}
        assert graph.get_affected_workflows(paths["mid"]) == {paths["a"]}

    def test_diamond_has_no_duplicates(self, diamond):
        graph, paths = diamond
        affected = graph.get_affected_workflows(paths["leaf"])
        assert affected == {paths["a"], paths["b"]}

    def test_top_level_answers_itself(self, diamond):
        graph, paths = diamond
        assert graph.get_affected_workflows(paths["a"]) == {paths["a"]}

    def test_new_top_level_file(self, diamond, workflows_dir):
        graph, _ = diamond
        new = str(workflows_dir / "brand-new.md")
        assert graph.get_affected_workflows(new) == {new}

    def test_new_fragment_affects_every_top_level(self, diamond, workflows_dir):
        graph, paths = diamond
        new = str(workflows_dir / "shared" / "brand-new.md")
        assert graph.get_affected_workflows(new) == {paths["a"], paths["b"]}

    def test_unimported_fragment_affects_nothing(self, workflows_dir, write_workflow):
        write_workflow("a.md")
        lonely = write_workflow("shared/lonely.md")
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.get_affected_workflows(lonely) == set()

    def test_cycle_terminates(self, workflows_dir, write_workflow):
        x = write_workflow("shared/x.md", imports=["y.md"])
        y = write_workflow("shared/y.md", imports=["x.md"])
        a = write_workflow("a.md", imports=["shared/x.md"])
        graph = DependencyGraph(str(workflows_dir))
        graph.build()

        assert graph.get_affected_workflows(y) == {a}
        assert graph.get_affected_workflows(x) == {a}

    def test_self_import_terminates(self, workflows_dir, write_workflow):
        loop = workflows_dir / "shared" / "loop.md"
        loop.parent.mkdir(parents=True)
        loop.write_text("---\nimports:\n  - loop.md\n---\n")
        a = write_workflow("a.md", imports=["shared/loop.md"])
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.get_affected_workflows(str(loop)) == {a}

    def test_relative_query_path_is_normalized(self, chain, workflows_dir, monkeypatch):
        graph, paths = chain
        monkeypatch.chdir(workflows_dir)
        assert graph.get_affected_workflows(os.path.join("shared", "leaf.md")) == {paths["a"]}


# ---------------------------------------------------------------------------
# Incremental mutators
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_dropped_import_no_longer_affects(self, chain, write_workflow):
        graph, paths = chain
        write_workflow("shared/mid.md", imports=[])
        graph.update(paths["mid"])

        assert paths["a"] not in graph.get_affected_workflows(paths["leaf"])
        assert paths["leaf"] not in graph.reverse_index()
        assert graph.check_consistency()

    def test_superset_and_disjoint_imports(self, workflows_dir, write_workflow):
        one = write_workflow("shared/one.md")
        two = write_workflow("shared/two.md")
        three = write_workflow("shared/three.md")
        a = write_workflow("a.md", imports=["shared/one.md"])
        graph = DependencyGraph(str(workflows_dir))
        graph.build()

        write_workflow("a.md", imports=["shared/one.md", "shared/two.md"])
        graph.update(a)
        assert graph.importers_of(one) == [a]
        assert graph.importers_of(two) == [a]

        write_workflow("a.md", imports=["shared/three.md"])
        graph.update(a)
        assert graph.importers_of(one) == []
        assert graph.importers_of(two) == []
        assert graph.importers_of(three) == [a]
        assert graph.check_consistency()

    def test_duplicate_declarations_keep_one_entry_each(self, workflows_dir, write_workflow):
        mid = write_workflow("shared/mid.md")
        a = write_workflow("a.md", imports=["shared/mid.md", "shared/mid.md#Other"])
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.importers_of(mid) == [a, a]
        assert graph.get_affected_workflows(mid) == {a}

        write_workflow("a.md", imports=["shared/mid.md"])
        graph.update(a)
        assert graph.importers_of(mid) == [a]
        assert graph.check_consistency()

    def test_update_adds_new_file(self, chain, write_workflow):
        graph, paths = chain
        b = write_workflow("b.md", imports=["shared/leaf.md"])
        assert graph.update(b) is None
        assert graph.get_affected_workflows(paths["leaf"]) == {paths["a"], b}

    def test_update_of_deleted_file_degrades_to_leaf(self, chain):
        graph, paths = chain
        os.remove(paths["mid"])
        warning = graph.update(paths["mid"])

        assert warning is not None
        assert graph.get_node(paths["mid"]).imports == []
        assert graph.importers_of(paths["leaf"]) == []

    def test_update_sees_newly_created_import_target(self, workflows_dir, write_workflow):
        a = write_workflow("a.md", imports=["shared/later.md"])
        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        assert graph.imports_of(a) == []

        later = write_workflow("shared/later.md")
        graph.update(a)
        assert graph.imports_of(a) == [later]


class TestRemove:
    def test_remove_clears_edges_and_key(self, chain):
        graph, paths = chain
        assert graph.remove(paths["mid"]) is True

        assert paths["mid"] not in graph
        index = graph.reverse_index()
        assert paths["mid"] not in index
        assert all(paths["mid"] not in importers for importers in index.values())
        assert paths["leaf"] not in index
        assert graph.check_consistency()

    def test_remove_matches_never_added(self, workflows_dir, write_workflow):
        write_workflow("shared/leaf.md")
        extra = write_workflow("shared/extra.md", imports=["leaf.md"])
        write_workflow("a.md", imports=["shared/leaf.md"])

        graph = DependencyGraph(str(workflows_dir))
        graph.build()
        graph.remove(extra)

        os.remove(extra)
        fresh = DependencyGraph(str(workflows_dir))
        fresh.build()

        assert graph.workflow_paths() == fresh.workflow_paths()
        assert graph.reverse_index() == fresh.reverse_index()

    def test_remove_unknown_is_noop(self, chain, workflows_dir):
        graph, _ = chain
        before = graph.reverse_index()
        assert graph.remove(str(workflows_dir / "ghost.md")) is False
        assert graph.reverse_index() == before

    def test_removed_fragment_is_treated_as_new(self, diamond):
        graph, paths = diamond
        graph.remove(paths["leaf"])
        # Unknown fragment: conservative answer
        assert graph.get_affected_workflows(paths["leaf"]) == {paths["a"], paths["b"]}


class TestConsistency:
    def test_consistent_after_mixed_mutations(self, diamond, write_workflow):
        graph, paths = diamond
        assert graph.check_consistency()

        write_workflow("b.md", imports=["shared/leaf.md"])
        graph.update(paths["b"])
        assert graph.check_consistency()

        graph.remove(paths["a"])
        assert graph.check_consistency()

        c = write_workflow("c.md", imports=["shared/mid.md", "shared/leaf.md"])
        graph.update(c)
        assert graph.check_consistency()
        assert graph.get_affected_workflows(paths["leaf"]) == {paths["b"], c}

    def test_remove_then_update_restores_importers(self, diamond, workflows_dir):
        graph, paths = diamond
        graph.remove(paths["mid"])
        graph.update(paths["mid"])

        assert graph.check_consistency()
        assert graph.importers_of(paths["mid"]) == [paths["a"], paths["b"]]
        assert graph.get_affected_workflows(paths["mid"]) == {paths["a"], paths["b"]}

        fresh = DependencyGraph(str(workflows_dir))
        fresh.build()
        assert graph.reverse_index() == fresh.reverse_index()

    def test_update_of_new_file_without_importers_adds_no_key(self, diamond, write_workflow):
        graph, _ = diamond
        extra = write_workflow("shared/extra.md")
        graph.update(extra)

        assert extra not in graph.reverse_index()
        assert graph.check_consistency()

    def test_node_copies_do_not_leak_state(self, chain):
        graph, paths = chain
        node = graph.get_node(paths["a"])
        node.imports.append("/elsewhere.md")
        graph.importers_of(paths["mid"]).append("/elsewhere.md")
        graph.reverse_index()[paths["mid"]].append("/elsewhere.md")

        assert graph.imports_of(paths["a"]) == [paths["mid"]]
        assert graph.importers_of(paths["mid"]) == [paths["a"]]
