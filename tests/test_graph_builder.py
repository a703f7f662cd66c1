"""Tests for the resource graph builder."""

import pytest

from stackplan.core.errors import (
    ConfigurationError,
    CycleError,
    DuplicateResourceError,
    IndexOutOfRangeError,
    UnresolvedReferenceError,
)
from stackplan.graph.builder import GraphBuilder
from stackplan.graph.expressions import Reference, iter_references
from stackplan.graph.models import Edge, ResourceAddress, ResourceDefinition, ResourceStatus


def addr(value):
    return ResourceAddress.parse(value)


class TestEdges:
    """The edge set mirrors the references in the document."""

    def test_edge_set_equals_references(self, parse_resources, vpc_stack):
        graph = GraphBuilder().build(parse_resources(vpc_stack))

        expected = set()
        for node in graph:
            for reference in iter_references(node.attributes):
                expected.add(Edge(source=node.address, target=reference.target))

        assert graph.edges == expected
        assert graph.edges == {
            Edge(addr("aws_subnet.s1"), addr("aws_vpc.main")),
            Edge(addr("aws_subnet.s2"), addr("aws_vpc.main")),
        }

    def test_dependents_and_dependencies(self, parse_resources, vpc_stack):
        graph = GraphBuilder().build(parse_resources(vpc_stack))

        assert graph.dependencies_of(addr("aws_subnet.s1")) == {addr("aws_vpc.main")}
        assert graph.dependents_of(addr("aws_vpc.main")) == {
            addr("aws_subnet.s1"),
            addr("aws_subnet.s2"),
        }

    def test_transitive_dependents(self, parse_resources):
        graph = GraphBuilder().build(
            parse_resources(
                """
resources:
  - {kind: aws_vpc, name: main, attributes: {cidr_block: 10.0.0.0/16}}
  - {kind: aws_subnet, name: a, attributes: {vpc_id: "${aws_vpc.main.id}"}}
  - {kind: aws_instance, name: web, attributes: {subnet_id: "${aws_subnet.a.id}"}}
"""
            )
        )
        assert graph.transitive_dependents(addr("aws_vpc.main")) == {
            addr("aws_subnet.a"),
            addr("aws_instance.web"),
        }

    def test_depends_on_adds_edges(self, parse_resources):
        graph = GraphBuilder().build(
            parse_resources(
                """
resources:
  - {kind: aws_iam_role, name: cluster, attributes: {name: eks}}
  - kind: aws_eks_cluster
    name: main
    depends_on: [aws_iam_role.cluster]
    attributes: {name: dev}
"""
            )
        )
        assert graph.edges == {Edge(addr("aws_eks_cluster.main"), addr("aws_iam_role.cluster"))}

    def test_new_nodes_start_planned(self, parse_resources, vpc_stack):
        graph = GraphBuilder().build(parse_resources(vpc_stack))
        assert {node.status for node in graph} == {ResourceStatus.PLANNED}


class TestCycles:
    """Cycles are rejected with the cycle path."""

    def test_two_node_cycle(self, parse_resources):
        with pytest.raises(CycleError) as exc_info:
            GraphBuilder().build(
                parse_resources(
                    """
resources:
  - {kind: aws_a, name: x, attributes: {peer: "${aws_b.y.id}"}}
  - {kind: aws_b, name: y, attributes: {peer: "${aws_a.x.id}"}}
"""
                )
            )
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"aws_a.x", "aws_b.y"}

    def test_self_reference(self, parse_resources):
        with pytest.raises(CycleError):
            GraphBuilder().build(
                parse_resources(
                    """
resources:
  - {kind: aws_a, name: x, attributes: {name: n, me: "${aws_a.x.name}"}}
"""
                )
            )

    def test_cycle_through_depends_on(self, parse_resources):
        with pytest.raises(CycleError):
            GraphBuilder().build(
                parse_resources(
                    """
resources:
  - {kind: aws_a, name: x, depends_on: [aws_c.z]}
  - {kind: aws_b, name: y, attributes: {a: "${aws_a.x.id}"}}
  - {kind: aws_c, name: z, attributes: {b: "${aws_b.y.id}"}}
"""
                )
            )


class TestValidation:
    """Reference and definition validation."""

    def test_duplicate_resource(self):
        definitions = [
            ResourceDefinition(kind="aws_vpc", name="main", position=0),
            ResourceDefinition(kind="aws_vpc", name="main", position=1),
        ]
        with pytest.raises(DuplicateResourceError):
            GraphBuilder().build(definitions)

    def test_reference_to_undeclared_resource(self, parse_resources):
        with pytest.raises(UnresolvedReferenceError, match="not declared"):
            GraphBuilder().build(
                parse_resources(
                    """
resources:
  - {kind: aws_subnet, name: a, attributes: {vpc_id: "${aws_vpc.missing.id}"}}
"""
                )
            )

    def test_reference_to_undeclared_attribute(self, parse_resources, vpc_stack):
        text = vpc_stack + """
  - {kind: aws_route, name: r, attributes: {vpc: "${aws_vpc.main.owner}"}}
"""
        with pytest.raises(UnresolvedReferenceError, match="no attribute 'owner'"):
            GraphBuilder().build(parse_resources(text))

    def test_computed_attribute_is_accepted(self, parse_resources):
        text = """
resources:
  - {kind: aws_eks_cluster, name: main, attributes: {name: dev}}
  - {kind: aws_eks_node_group, name: ng, attributes: {endpoint: "${aws_eks_cluster.main.endpoint}"}}
"""
        with pytest.raises(UnresolvedReferenceError):
            GraphBuilder().build(parse_resources(text))

        graph = GraphBuilder(lambda kind: {"endpoint"}).build(parse_resources(text))
        assert len(graph.edges) == 1

    def test_depends_on_undeclared(self, parse_resources):
        with pytest.raises(UnresolvedReferenceError):
            GraphBuilder().build(
                parse_resources(
                    """
resources:
  - {kind: aws_vpc, name: main, depends_on: [aws_iam_role.nope]}
"""
                )
            )

    def test_negative_count(self):
        with pytest.raises(ConfigurationError, match="invalid count"):
            GraphBuilder().build([ResourceDefinition(kind="aws_subnet", name="a", count=-1)])

    def test_indexing_resource_without_count(self, parse_resources, vpc_stack):
        text = vpc_stack + """
  - {kind: aws_route, name: r, attributes: {vpc: "${aws_vpc.main[0].id}"}}
"""
        with pytest.raises(UnresolvedReferenceError, match="cannot be indexed"):
            GraphBuilder().build(parse_resources(text))

    def test_counted_resource_requires_index(self, parse_resources):
        text = """
resources:
  - {kind: aws_subnet, name: public, count: 2, attributes: {cidr: x}}
  - {kind: aws_route, name: r, attributes: {subnet: "${aws_subnet.public.id}"}}
"""
        with pytest.raises(UnresolvedReferenceError, match="has count"):
            GraphBuilder().build(parse_resources(text))

    def test_literal_index_out_of_range(self, parse_resources):
        text = """
resources:
  - {kind: aws_subnet, name: public, count: 2, attributes: {cidr: x}}
  - {kind: aws_route, name: r, attributes: {subnet: "${aws_subnet.public[2].id}"}}
"""
        with pytest.raises(UnresolvedReferenceError, match="out of range"):
            GraphBuilder().build(parse_resources(text))


class TestCount:
    """Expansion of counted resources."""

    SUBNETS = """
resources:
  - {kind: aws_vpc, name: main, attributes: {cidr_block: 10.0.0.0/16}}
  - kind: aws_subnet
    name: public
    count: 2
    attributes:
      vpc_id: ${aws_vpc.main.id}
      cidr_block: 10.0.${count.index}.0/24
      availability_zone:
        $element: {list: [us-east-1a, us-east-1b], index: "${count.index}"}
"""

    def test_expands_replicas(self, parse_resources):
        graph = GraphBuilder().build(parse_resources(self.SUBNETS))

        first = graph.nodes[addr("aws_subnet.public[0]")]
        second = graph.nodes[addr("aws_subnet.public[1]")]
        assert first.attributes["availability_zone"] == "us-east-1a"
        assert second.attributes["availability_zone"] == "us-east-1b"
        assert second.attributes["cidr_block"] == "10.0.1.0/24"
        assert first.attributes["vpc_id"] == Reference("aws_vpc", "main", "id")
        assert first.dependencies == {addr("aws_vpc.main")}

    def test_element_index_beyond_list(self, parse_resources):
        text = self.SUBNETS.replace("count: 2", "count: 3")
        with pytest.raises(IndexOutOfRangeError):
            GraphBuilder().build(parse_resources(text))

    def test_count_zero_yields_no_nodes(self, parse_resources):
        text = self.SUBNETS.replace("count: 2", "count: 0")
        graph = GraphBuilder().build(parse_resources(text))
        assert list(graph.nodes) == [addr("aws_vpc.main")]

    def test_count_index_reference_pairs_replicas(self, parse_resources):
        text = self.SUBNETS + """
  - kind: aws_nat_gateway
    name: nat
    count: 2
    attributes:
      subnet_id: ${aws_subnet.public[count.index].id}
"""
        graph = GraphBuilder().build(parse_resources(text))
        assert graph.dependencies_of(addr("aws_nat_gateway.nat[1]")) == {addr("aws_subnet.public[1]")}

    def test_count_index_reference_needs_enough_replicas(self, parse_resources):
        text = self.SUBNETS + """
  - kind: aws_nat_gateway
    name: nat
    count: 3
    attributes:
      subnet_id: ${aws_subnet.public[count.index].id}
"""
        with pytest.raises(UnresolvedReferenceError):
            GraphBuilder().build(parse_resources(text))

    def test_splat_depends_on_every_replica(self, parse_resources):
        text = self.SUBNETS + """
  - kind: aws_eks_cluster
    name: main
    attributes:
      subnet_ids: ${aws_subnet.public[*].id}
"""
        graph = GraphBuilder().build(parse_resources(text))
        assert graph.dependencies_of(addr("aws_eks_cluster.main")) == {
            addr("aws_subnet.public[0]"),
            addr("aws_subnet.public[1]"),
        }


class TestTopologicalOrder:
    """Order is dependencies first, then declaration order."""

    def test_dependencies_first(self, parse_resources, vpc_stack):
        graph = GraphBuilder().build(parse_resources(vpc_stack))
        assert [str(a) for a in graph.topological_order()] == [
            "aws_vpc.main",
            "aws_subnet.s1",
            "aws_subnet.s2",
        ]

    def test_ties_follow_declaration_order(self, parse_resources):
        graph = GraphBuilder().build(
            parse_resources(
                """
resources:
  - {kind: zz_last, name: b, attributes: {}}
  - {kind: aa_first, name: a, attributes: {}}
"""
            )
        )
        assert [str(a) for a in graph.topological_order()] == ["zz_last.b", "aa_first.a"]
