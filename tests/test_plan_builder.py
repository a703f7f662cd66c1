"""Tests for the plan builder."""

import pytest

from stackplan.graph.expressions import UNKNOWN
from stackplan.graph.models import ResourceAddress
from stackplan.orchestration.plan_builder import PlanBuilder
from stackplan.orchestration.results import Action


def keys(plan):
    return [change.key for change in plan.changes]


def actions(plan):
    return [(change.key, change.action) for change in plan.changes]


class TestCreatePlan:
    """Plans against empty state."""

    @pytest.mark.asyncio
    async def test_vpc_and_subnets(self, build_plan, vpc_stack):
        plan = await build_plan(vpc_stack)

        assert actions(plan) == [
            ("aws_vpc.main", Action.CREATE),
            ("aws_subnet.s1", Action.CREATE),
            ("aws_subnet.s2", Action.CREATE),
        ]
        assert plan.counts() == {"create": 3, "update": 0, "replace": 0, "delete": 0}
        assert plan.get("aws_subnet.s1").depends_on == ("aws_vpc.main",)
        assert plan.get("aws_vpc.main").depends_on == ()

    @pytest.mark.asyncio
    async def test_unknown_values_flow_to_dependents(self, build_plan, vpc_stack):
        plan = await build_plan(vpc_stack)

        assert plan.get("aws_vpc.main").after["id"] is UNKNOWN
        assert plan.get("aws_subnet.s1").after["vpc_id"] is UNKNOWN
        assert plan.get("aws_subnet.s1").after["cidr_block"] == "10.0.1.0/24"

    @pytest.mark.asyncio
    async def test_dependencies_precede_dependents(self, build_plan):
        plan = await build_plan(
            """
resources:
  - {kind: aws_eks_node_group, name: ng, attributes: {cluster: "${aws_eks_cluster.main.name}"}}
  - {kind: aws_eks_cluster, name: main, attributes: {name: dev, role: "${aws_iam_role.cluster.id}"}}
  - {kind: aws_iam_role, name: cluster, attributes: {name: eks}}
"""
        )
        assert keys(plan) == ["aws_iam_role.cluster", "aws_eks_cluster.main", "aws_eks_node_group.ng"]

    @pytest.mark.asyncio
    async def test_plan_to_dict_renders_unknown(self, build_plan, vpc_stack):
        data = (await build_plan(vpc_stack)).to_dict()

        assert data["summary"]["create"] == 3
        assert data["changes"][1]["after"]["vpc_id"] == "(known after apply)"
        assert data["changes"][1]["depends_on"] == ["aws_vpc.main"]


class TestDiffPlan:
    """Plans against existing state."""

    @pytest.mark.asyncio
    async def test_second_plan_is_empty(self, apply_stack, build_plan, vpc_stack):
        _, result = await apply_stack(vpc_stack)
        assert result.success

        plan = await build_plan(vpc_stack)
        assert plan.is_empty
        assert [str(a) for a in plan.unchanged] == ["aws_vpc.main", "aws_subnet.s1", "aws_subnet.s2"]

    @pytest.mark.asyncio
    async def test_mutable_change_is_update(self, apply_stack, build_plan, vpc_stack):
        await apply_stack(vpc_stack)

        plan = await build_plan(vpc_stack.replace("10.0.2.0/24", "10.0.3.0/24"))

        assert actions(plan) == [("aws_subnet.s2", Action.UPDATE)]
        change = plan.changes[0]
        assert change.changed_attributes == ("cidr_block",)
        assert change.before["cidr_block"] == "10.0.2.0/24"
        assert change.after["cidr_block"] == "10.0.3.0/24"
        assert change.resource_id == change.before["id"]

    @pytest.mark.asyncio
    async def test_removed_attribute_is_a_change(self, apply_stack, build_plan):
        await apply_stack(
            """
resources:
  - {kind: aws_s3_bucket, name: logs, attributes: {bucket: logs, acl: private}}
"""
        )
        plan = await build_plan(
            """
resources:
  - {kind: aws_s3_bucket, name: logs, attributes: {bucket: logs}}
"""
        )
        assert actions(plan) == [("aws_s3_bucket.logs", Action.UPDATE)]
        assert plan.changes[0].changed_attributes == ("acl",)

    @pytest.mark.asyncio
    async def test_immutable_change_is_replace_before_destroy(self, apply_stack, build_plan, vpc_stack):
        await apply_stack(vpc_stack)

        plan = await build_plan(vpc_stack.replace("10.0.0.0/16", "172.16.0.0/16"))

        replace = plan.changes[0]
        assert (replace.key, replace.action) == ("aws_vpc.main", Action.REPLACE)
        # Subnets pick up the new vpc id, which is unknown until apply.
        assert plan.get("aws_subnet.s1").action is Action.UPDATE
        assert plan.get("aws_subnet.s2").action is Action.UPDATE

        deposed = plan.changes[-1]
        assert deposed.deposed
        assert deposed.action is Action.DELETE
        assert deposed.resource_id == replace.resource_id
        assert deposed.key == f"aws_vpc.main (deposed {replace.resource_id})"
        assert set(deposed.depends_on) == {"aws_vpc.main", "aws_subnet.s1", "aws_subnet.s2"}
        assert plan.counts() == {"create": 0, "update": 2, "replace": 1, "delete": 0}

    @pytest.mark.asyncio
    async def test_noop_ancestors_are_skipped_in_depends_on(self, apply_stack, build_plan):
        text = """
resources:
  - {kind: aws_vpc, name: main, attributes: {cidr_block: 10.0.0.0/16}}
  - {kind: aws_subnet, name: a, attributes: {vpc_id: "${aws_vpc.main.id}", tag: one}}
  - {kind: aws_instance, name: web, attributes: {subnet_id: "${aws_subnet.a.id}", size: small}}
"""
        await apply_stack(text)

        plan = await build_plan(text.replace("tag: one", "tag: two").replace("small", "large"))

        assert keys(plan) == ["aws_subnet.a", "aws_instance.web"]
        assert plan.get("aws_subnet.a").depends_on == ()
        assert plan.get("aws_instance.web").depends_on == ("aws_subnet.a",)


class TestDeletePlan:
    """Orphaned StateRecords become deletes in reverse dependency order."""

    @pytest.mark.asyncio
    async def test_removed_resources_delete_dependents_first(self, apply_stack, build_plan, vpc_stack):
        await apply_stack(vpc_stack)

        plan = await build_plan("resources: []")

        assert [change.action for change in plan.changes] == [Action.DELETE] * 3
        assert keys(plan)[-1] == "aws_vpc.main"
        assert set(plan.get("aws_vpc.main").depends_on) == {"aws_subnet.s1", "aws_subnet.s2"}

    @pytest.mark.asyncio
    async def test_delete_waits_for_kept_resource_to_move(self, apply_stack, build_plan):
        await apply_stack(
            """
resources:
  - {kind: aws_vpc, name: old, attributes: {cidr_block: 10.0.0.0/16}}
  - {kind: aws_subnet, name: a, attributes: {vpc_id: "${aws_vpc.old.id}"}}
"""
        )

        plan = await build_plan(
            """
resources:
  - {kind: aws_vpc, name: new, attributes: {cidr_block: 10.1.0.0/16}}
  - {kind: aws_subnet, name: a, attributes: {vpc_id: "${aws_vpc.new.id}"}}
"""
        )

        assert actions(plan) == [
            ("aws_vpc.new", Action.CREATE),
            ("aws_subnet.a", Action.UPDATE),
            ("aws_vpc.old", Action.DELETE),
        ]
        assert plan.get("aws_vpc.old").depends_on == ("aws_subnet.a",)

    @pytest.mark.asyncio
    async def test_destroy_plan(self, apply_stack, registry, store, vpc_stack):
        await apply_stack(vpc_stack)

        plan = PlanBuilder(registry).build_destroy(await store.load())

        assert plan.destroy
        assert plan.counts()["delete"] == 3
        order = keys(plan)
        assert order.index("aws_vpc.main") > order.index("aws_subnet.s1")
        assert order.index("aws_vpc.main") > order.index("aws_subnet.s2")

    @pytest.mark.asyncio
    async def test_destroy_of_empty_state(self, registry, store):
        plan = PlanBuilder(registry).build_destroy(await store.load())
        assert plan.is_empty

    @pytest.mark.asyncio
    async def test_leftover_deposed_object_is_deleted(self, build_plan, store, vpc_stack):
        await store.record_success(
            ResourceAddress("aws_vpc", "main"),
            "vpc-new",
            {"cidr_block": "10.0.0.0/16", "arn": "arn"},
            provider="aws",
            deposed=["vpc-old"],
        )

        plan = await build_plan(vpc_stack)

        deposed = plan.get("aws_vpc.main (deposed vpc-old)")
        assert deposed is not None
        assert deposed.action is Action.DELETE
        assert deposed.resource_id == "vpc-old"
