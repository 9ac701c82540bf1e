"""Unit tests for dependency ordering and skip propagation."""

import pytest

from fleetguard._types import BaselineItem, ItemKind
from fleetguard.ordering import detect_cycles, order_items, should_skip, topological_order


def item(item_id: str, *deps: str) -> BaselineItem:
    return BaselineItem(id=item_id, kind=ItemKind.SERVICE, target=item_id, desired={"active": True}, depends_on=deps)


@pytest.mark.unit
class TestTopologicalOrder:
    def test_no_edges_keeps_declaration_order(self) -> None:
        assert topological_order(["c", "a", "b"], {}) == ["c", "a", "b"]

    def test_dependency_moves_ahead(self) -> None:
        assert topological_order(["web", "pkg"], {"web": ["pkg"]}) == ["pkg", "web"]

    def test_ties_broken_by_declaration(self) -> None:
        deps = {"d": ["a"], "b": ["a"]}
        assert topological_order(["d", "b", "a", "c"], deps) == ["a", "d", "b", "c"]

    def test_cycle_raises(self) -> None:
        with pytest.raises(ValueError, match="cycle"):
            topological_order(["a", "b"], {"a": ["b"], "b": ["a"]})

    def test_order_items(self) -> None:
        ordered = order_items([item("svc", "rules"), item("rules", "pkg"), item("pkg")])
        assert [i.id for i in ordered] == ["pkg", "rules", "svc"]


@pytest.mark.unit
class TestDetectCycles:
    def test_acyclic(self) -> None:
        assert detect_cycles(["a", "b"], {"b": ["a"]}) == []

    def test_three_node_cycle(self) -> None:
        cycles = detect_cycles(["a", "b", "c"], {"a": ["b"], "b": ["c"], "c": ["a"]})
        assert cycles == [["a", "b", "c", "a"]]


@pytest.mark.unit
class TestShouldSkip:
    ITEMS = {i.id: i for i in [item("pkg"), item("rules", "pkg"), item("svc", "rules"), item("other")]}

    def test_direct_dependency(self) -> None:
        skip, reason = should_skip("rules", self.ITEMS, {"pkg"})
        assert skip
        assert reason == "dependency not satisfied: pkg"

    def test_transitive_dependency(self) -> None:
        skip, reason = should_skip("svc", self.ITEMS, {"pkg"})
        assert skip
        assert "transitive" in reason and "pkg" in reason

    def test_independent_item_runs(self) -> None:
        assert should_skip("other", self.ITEMS, {"pkg"}) == (False, "")

    def test_unknown_item(self) -> None:
        assert should_skip("ghost", self.ITEMS, {"pkg"}) == (False, "")
