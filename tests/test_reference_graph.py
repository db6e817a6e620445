"""Tests for the reference graph builder."""

from omnistudio_resolver.graph import ReferenceGraphBuilder, render_path
from omnistudio_resolver.models import BlockKind, Component, ComponentType, Step

IP = ComponentType.INTEGRATION_PROCEDURE


# ── Helpers ───────────────────────────────────────────────────

def _ref(target, name=None):
    return Step(name=name or f"Call{target}", block_kind=BlockKind.IP_REFERENCE,
                referenced_ip=target, has_children=True)


def _component(name, *steps, unique_id=None, component_type=IP):
    return Component(
        id=f"id-{name}",
        name=name,
        component_type=component_type,
        unique_id=unique_id or name,
        steps=list(steps),
    )


def _ip(name, *targets):
    return _component(name, *(_ref(t) for t in targets))


def _chain(n):
    return [_ip(f"C{i}", f"C{i + 1}") if i < n else _ip(f"C{i}") for i in range(1, n + 1)]


# ── Builder ───────────────────────────────────────────────────

class TestReferenceGraphBuilder:
    def test_build_empty(self):
        graph = ReferenceGraphBuilder().build([])
        assert graph.components == {}
        assert graph.edges == []

    def test_direct_reference(self):
        parent, child = _ip("Parent", "Child"), _ip("Child")
        graph = ReferenceGraphBuilder().build([parent, child])

        assert graph.has_edge("Parent", "Child")
        assert [c.unique_id for c in parent.child_components] == ["Child"]
        ref = parent.child_components[0]
        assert ref.level == 1
        assert ref.referenced_in_step == "CallChild"
        assert ref.path_string == "IP-Parent"

        [entry] = child.referenced_by
        assert entry.parent_unique_id == "Parent"
        assert entry.step_name == "CallChild"

    def test_child_summary_stamped_on_step(self):
        parent = _ip("Parent", "Child")
        child = _ip("Child", "Leaf")
        graph = ReferenceGraphBuilder().build([parent, child, _ip("Leaf")])
        summary = parent.steps[0].child_component
        assert summary.unique_id == "Child"
        assert summary.steps_count == 1
        assert summary.component_type is IP
        assert len(graph.edges) == 2

    def test_resolve_by_name_when_unique_id_differs(self):
        parent = _ip("Parent", "Order List")
        child = _component("Order List", unique_id="Order_List")
        graph = ReferenceGraphBuilder().build([parent, child])
        assert graph.has_edge("Parent", "Order_List")
        assert parent.steps[0].child_component.unique_id == "Order_List"

    def test_unique_id_preferred_over_name(self):
        parent = _ip("Parent", "Shared")
        by_uid = _component("Something", unique_id="Shared")
        by_name = _component("Shared", unique_id="Other")
        graph = ReferenceGraphBuilder().build([parent, by_name, by_uid])
        assert graph.forward["Parent"] == ["Shared"]

    def test_unresolved_reference(self):
        parent = _ip("Parent", "Ghost")
        graph = ReferenceGraphBuilder().build([parent])
        assert graph.unresolved == [("Parent", "CallGhost", "Ghost")]
        assert parent.steps[0].child_component is None
        assert parent.child_components == []

    def test_duplicate_unique_id_first_wins(self):
        first = _component("First", unique_id="Dup")
        second = _component("Second", unique_id="Dup")
        graph = ReferenceGraphBuilder().build([first, second])
        assert graph.components["Dup"] is first

    def test_reference_inside_block_steps(self):
        block = Step(name="IfReady", block_kind=BlockKind.CONDITIONAL, block_steps=[_ref("Child")])
        parent = _component("Parent", block)
        graph = ReferenceGraphBuilder().build([parent, _ip("Child")])
        assert graph.has_edge("Parent", "Child")
        assert block.block_steps[0].child_component is not None

    def test_transitive_child_components(self):
        a, b, c = _ip("A", "B"), _ip("B", "C"), _ip("C")
        ReferenceGraphBuilder().build([a, b, c])

        assert [(r.unique_id, r.level) for r in a.child_components] == [("B", 1), ("C", 2)]
        assert a.child_components[1].path == ["A", "B"]
        assert a.child_components[1].path_string == "IP-A => IP-B"
        # The direct parent owns the incoming reference
        assert [r.parent_unique_id for r in c.referenced_by] == ["B"]

    def test_reference_entries_are_deduplicated(self):
        a, b, c = _ip("A", "C"), _ip("B", "C"), _ip("C")
        top = _ip("Top", "A", "B")
        ReferenceGraphBuilder().build([top, a, b, c])
        assert sorted(r.parent_unique_id for r in c.referenced_by) == ["A", "B"]
        assert [r.unique_id for r in top.child_components] == ["A", "C", "B"]

    def test_omniscript_prefix_in_paths(self):
        script = _component("Onboarding", _ref("Child"), component_type=ComponentType.OMNISCRIPT)
        child = _ip("Child", "Leaf")
        graph = ReferenceGraphBuilder().build([script, child, _ip("Leaf")])
        leaf_ref = script.child_components[1]
        assert leaf_ref.path_string == "OS-Onboarding => IP-Child"
        assert render_path(graph, ["Onboarding", "Child", "Leaf"]) == "OS-Onboarding => IP-Child => IP-Leaf"


class TestCycles:
    def test_mutual_reference_records_one_direction(self):
        a, b = _ip("A", "B"), _ip("B", "A")
        graph = ReferenceGraphBuilder().build([a, b])

        directions = [graph.has_edge("A", "B"), graph.has_edge("B", "A")]
        assert directions.count(True) == 1
        assert graph.cycles
        assert ReferenceGraphBuilder().detect_cycles(graph) == []

    def test_self_reference(self):
        a = _ip("A", "A")
        graph = ReferenceGraphBuilder().build([a])
        assert graph.edges == []
        assert graph.cycles == [["A", "A"]]
        assert a.child_components == []

    def test_three_cycle_terminates(self):
        a, b, c = _ip("A", "B"), _ip("B", "C"), _ip("C", "A")
        graph = ReferenceGraphBuilder().build([a, b, c])
        assert len(graph.edges) == 2
        assert ReferenceGraphBuilder().detect_cycles(graph) == []

    def test_cycle_does_not_stop_rest_of_step(self):
        back = Step(
            name="IfBack",
            block_kind=BlockKind.CONDITIONAL,
            referenced_ip="A",
            has_ip_reference=True,
            block_steps=[_ref("C")],
        )
        a, b, c = _ip("A", "B"), _component("B", back), _ip("C")
        graph = ReferenceGraphBuilder().build([a, b, c])
        assert graph.has_edge("B", "C")
        assert not graph.has_edge("B", "A")

    def test_detect_cycles_over_edges(self):
        graph = ReferenceGraphBuilder().build([_ip("A"), _ip("B")])
        graph.add_edge("A", "B")
        graph.add_edge("B", "A")
        assert ReferenceGraphBuilder().detect_cycles(graph) == [["A", "B", "A"]]


class TestDepthCap:
    def test_walk_stops_past_max_depth(self):
        chain = _chain(8)
        graph = ReferenceGraphBuilder(max_depth=4).build(chain)
        root = chain[0]
        assert [r.unique_id for r in root.child_components] == ["C2", "C3", "C4", "C5", "C6"]
        assert "C1" in graph.depth_limited

    def test_short_chain_not_limited(self):
        chain = _chain(3)
        graph = ReferenceGraphBuilder(max_depth=4).build(chain)
        assert graph.depth_limited == []
        assert len(chain[0].child_components) == 2
