"""
Tests for the plugin tree model.

This test suite covers:
1. Location parsing (remote URLs vs local paths)
2. Pre-order traversal
3. Disablement propagation
4. Lookup helpers
"""

from pathlib import Path

from cesto.plugin.tree import (
    Forest,
    LocalDirectory,
    PluginNode,
    RemoteRepository,
    parse_location,
)


def remote(name: str, *children: PluginNode, disabled: bool = False) -> PluginNode:
    return PluginNode(
        name=name,
        location=RemoteRepository(f"https://example.com/{name}"),
        disabled_declared=disabled,
        children=list(children),
    )


class TestParseLocation:
    """Test location classification."""

    def test_urls_are_remote(self):
        """URL schemes and scp-like git addresses should be remote."""
        for url in (
            "https://github.com/user/plugin",
            "http://example.com/plugin.git",
            "git@github.com:user/plugin.git",
            "file:///srv/git/plugin",
        ):
            assert isinstance(parse_location(url), RemoteRepository)

    def test_paths_are_local(self):
        """Anything else should be a local directory."""
        location = parse_location("/home/user/src/plugin")
        assert isinstance(location, LocalDirectory)
        assert location.path == Path("/home/user/src/plugin")

    def test_home_is_expanded(self):
        """A leading ~ should expand to the home directory."""
        location = parse_location("~/src/plugin")
        assert isinstance(location, LocalDirectory)
        assert location.path == Path.home() / "src" / "plugin"


class TestWalk:
    """Test traversal order."""

    def test_pre_order(self):
        """Parents should come before children, siblings in declaration order."""
        forest = Forest(
            [
                remote("a", remote("a1", remote("a1x")), remote("a2")),
                remote("b"),
            ]
        )
        assert forest.names() == ["a", "a1", "a1x", "a2", "b"]

    def test_walk_yields_parents(self):
        """Each node should come with its parent, roots with None."""
        forest = Forest([remote("a", remote("child"))])
        pairs = [(node.name, parent.name if parent else None) for node, parent in forest.walk()]
        assert pairs == [("a", None), ("child", "a")]

    def test_depth_and_order(self):
        """depth_of and declaration_order should follow the walk."""
        forest = Forest([remote("a", remote("b", remote("c"))), remote("d")])
        assert forest.depth_of() == {"a": 0, "b": 1, "c": 2, "d": 0}
        assert forest.declaration_order() == {"a": 0, "b": 1, "c": 2, "d": 3}
        assert len(forest) == 4

    def test_empty_forest(self):
        """An empty forest should walk nothing."""
        forest = Forest()
        assert forest.names() == []
        assert len(forest) == 0


class TestDisablement:
    """Test effective disablement."""

    def test_disabled_parent_disables_subtree(self):
        """A disabled node's descendants should all be effectively disabled."""
        forest = Forest([remote("a", remote("b", remote("c")), disabled=True), remote("d")])

        assert forest.find("a").disabled_effective
        assert forest.find("b").disabled_effective
        assert forest.find("c").disabled_effective
        assert not forest.find("d").disabled_effective
        assert not forest.find("b").disabled_declared

    def test_disabled_child_keeps_parent_enabled(self):
        """Disabling a child should not affect its parent or siblings."""
        forest = Forest([remote("a", remote("b", disabled=True), remote("c"))])

        assert not forest.find("a").disabled_effective
        assert forest.find("b").disabled_effective
        assert [child.name for child in forest.find("a").enabled_children] == ["c"]

    def test_effective_is_monotonic(self):
        """No enabled node should have a disabled ancestor."""
        forest = Forest(
            [
                remote("a", remote("b", remote("c", disabled=True), remote("d")), disabled=False),
                remote("e", remote("f", remote("g")), disabled=True),
            ]
        )
        for node, parent in forest.walk():
            if parent is not None and parent.disabled_effective:
                assert node.disabled_effective

    def test_enabled_nodes(self):
        """enabled_nodes should skip every effectively disabled node."""
        forest = Forest([remote("a", remote("b"), disabled=True), remote("c")])
        assert [node.name for node in forest.enabled_nodes()] == ["c"]

    def test_find_missing(self):
        """find should return None for unknown names."""
        assert Forest([remote("a")]).find("zzz") is None
