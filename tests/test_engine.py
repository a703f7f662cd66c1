"""Tests for the execution engine."""

import pytest
from tenacity import wait_none

from stackplan.core.errors import ConfigurationError, ProviderError
from stackplan.graph.builder import GraphBuilder
from stackplan.graph.models import ResourceAddress
from stackplan.orchestration.engine import ExecutionEngine, is_retryable
from stackplan.orchestration.plan_builder import PlanBuilder
from stackplan.orchestration.results import OperationStatus, RunState
from stackplan.providers.memory import InMemoryProvider
from stackplan.providers.registry import ProviderRegistry

BUCKET = """
resources:
  - {kind: aws_s3_bucket, name: logs, attributes: {bucket: logs}}
"""

BUCKETS = """
resources:
  - {kind: aws_s3_bucket, name: a, attributes: {bucket: a}}
  - {kind: aws_s3_bucket, name: b, attributes: {bucket: b}}
  - {kind: aws_s3_bucket, name: c, attributes: {bucket: c}}
  - {kind: aws_s3_bucket, name: d, attributes: {bucket: d}}
  - {kind: aws_s3_bucket, name: e, attributes: {bucket: e}}
"""


async def run(registry, store, definitions, **options):
    graph = GraphBuilder(registry.computed_attributes).build(definitions)
    snapshot = await store.load()
    plan = PlanBuilder(registry).build(graph, snapshot)
    engine = ExecutionEngine(registry, store, retry_wait=wait_none(), **options)
    return engine, await engine.execute(plan, snapshot)


class TestEngineConfiguration:
    """Constructor validation."""

    def test_parallelism_must_be_positive(self, registry, store):
        with pytest.raises(ConfigurationError):
            ExecutionEngine(registry, store, parallelism=0)

    def test_negative_retries_rejected(self, registry, store):
        with pytest.raises(ConfigurationError):
            ExecutionEngine(registry, store, max_retries=-1)

    def test_starts_idle(self, registry, store):
        assert ExecutionEngine(registry, store).state is RunState.IDLE

    def test_is_retryable(self):
        assert is_retryable(ProviderError("throttled", retryable=True))
        assert not is_retryable(ProviderError("bad request"))
        assert not is_retryable(ValueError("boom"))


class TestSuccessfulRuns:
    """Happy-path execution."""

    @pytest.mark.asyncio
    async def test_creates_everything(self, apply_stack, provider, store, vpc_stack):
        plan, result = await apply_stack(vpc_stack)

        assert result.state is RunState.COMPLETED
        assert result.done == ["aws_vpc.main", "aws_subnet.s1", "aws_subnet.s2"]
        assert result.completed_counts() == {"added": 3, "changed": 0, "destroyed": 0}
        assert len(provider.objects()) == 3

        snapshot = await store.load()
        vpc = snapshot.get(ResourceAddress("aws_vpc", "main"))
        subnet = snapshot.get(ResourceAddress("aws_subnet", "s1"))
        assert subnet.attributes["vpc_id"] == vpc.resource_id
        assert subnet.dependencies == ["aws_vpc.main"]
        assert subnet.provider == "aws"

    @pytest.mark.asyncio
    async def test_vpc_created_before_subnets(self, apply_stack, provider, vpc_stack):
        await apply_stack(vpc_stack)
        kinds = [kind for _, kind, _ in provider.calls_for("create")]
        assert kinds[0] == "aws_vpc"

    @pytest.mark.asyncio
    async def test_empty_plan_completes(self, apply_stack):
        plan, result = await apply_stack("resources: []")
        assert plan.is_empty
        assert result.state is RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_update_in_place(self, apply_stack, provider, store, vpc_stack):
        await apply_stack(vpc_stack)
        before = await store.load()

        _, result = await apply_stack(vpc_stack.replace("10.0.2.0/24", "10.0.9.0/24"))

        assert result.completed_counts() == {"added": 0, "changed": 1, "destroyed": 0}
        after = await store.load()
        address = ResourceAddress("aws_subnet", "s2")
        assert after.get(address).resource_id == before.get(address).resource_id
        assert after.get(address).attributes["cidr_block"] == "10.0.9.0/24"
        assert len(provider.calls_for("update")) == 1

    @pytest.mark.asyncio
    async def test_delete_removed_resources(self, apply_stack, provider, store, vpc_stack):
        await apply_stack(vpc_stack)

        _, result = await apply_stack("resources: []")

        assert result.completed_counts()["destroyed"] == 3
        assert result.done[-1] == "aws_vpc.main"
        assert len(await store.load()) == 0
        assert provider.objects() == {}

    @pytest.mark.asyncio
    async def test_replace_creates_then_deletes_old(self, apply_stack, provider, store, vpc_stack):
        await apply_stack(vpc_stack)
        old_id = (await store.load()).get(ResourceAddress("aws_vpc", "main")).resource_id

        plan, result = await apply_stack(vpc_stack.replace("10.0.0.0/16", "172.16.0.0/16"))

        assert result.state is RunState.COMPLETED
        assert result.done[-1] == f"aws_vpc.main (deposed {old_id})"
        snapshot = await store.load()
        vpc = snapshot.get(ResourceAddress("aws_vpc", "main"))
        assert vpc.resource_id != old_id
        assert vpc.deposed == []
        assert snapshot.get(ResourceAddress("aws_subnet", "s1")).attributes["vpc_id"] == vpc.resource_id
        assert old_id not in provider.objects()
        assert result.completed_counts() == {"added": 1, "changed": 2, "destroyed": 0}


class TestFailures:
    """Failure isolation, skipping and retries."""

    @pytest.mark.asyncio
    async def test_failed_dependency_skips_dependents(self, apply_stack, provider, vpc_stack):
        provider.inject_failure("create", "aws_vpc")

        _, result = await apply_stack(vpc_stack)

        assert result.state is RunState.COMPLETED_WITH_ERRORS
        assert result.failed == ["aws_vpc.main"]
        assert result.skipped == ["aws_subnet.s1", "aws_subnet.s2"]
        assert "aws_vpc.main" in result.errors
        assert len(provider.calls_for("create")) == 1

    @pytest.mark.asyncio
    async def test_skipping_is_transitive(self, apply_stack, provider, vpc_stack):
        provider.inject_failure("create", "aws_vpc")
        text = vpc_stack + """
  - {kind: aws_instance, name: web, attributes: {subnet_id: "${aws_subnet.s1.id}"}}
"""
        _, result = await apply_stack(text)

        assert result.statuses["aws_instance.web"] is OperationStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_independent_branches_continue(self, apply_stack, provider, store, vpc_stack):
        provider.inject_failure("create", "aws_vpc")
        text = vpc_stack + """
  - {kind: aws_s3_bucket, name: logs, attributes: {bucket: logs}}
"""
        _, result = await apply_stack(text)

        assert result.done == ["aws_s3_bucket.logs"]
        snapshot = await store.load()
        assert list(snapshot.records) == [ResourceAddress("aws_s3_bucket", "logs")]

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, apply_stack, provider):
        provider.inject_failure("create", "aws_s3_bucket", retryable=True, times=2)

        _, result = await apply_stack(BUCKET, max_retries=3)

        assert result.state is RunState.COMPLETED
        assert len(provider.calls_for("create")) == 3

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, apply_stack, provider):
        provider.inject_failure("create", "aws_s3_bucket", retryable=True)

        _, result = await apply_stack(BUCKET, max_retries=2)

        assert result.failed == ["aws_s3_bucket.logs"]
        assert len(provider.calls_for("create")) == 3

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, apply_stack, provider):
        provider.inject_failure("create", "aws_s3_bucket", retryable=False)

        _, result = await apply_stack(BUCKET, max_retries=5)

        assert result.failed == ["aws_s3_bucket.logs"]
        assert len(provider.calls_for("create")) == 1

    @pytest.mark.asyncio
    async def test_failed_deposed_delete_is_kept_for_next_run(
        self, apply_stack, build_plan, provider, store, vpc_stack
    ):
        await apply_stack(vpc_stack)
        old_id = (await store.load()).get(ResourceAddress("aws_vpc", "main")).resource_id
        provider.inject_failure("delete", "aws_vpc", times=1)
        changed = vpc_stack.replace("10.0.0.0/16", "172.16.0.0/16")

        _, result = await apply_stack(changed)

        assert result.failed == [f"aws_vpc.main (deposed {old_id})"]
        vpc = (await store.load()).get(ResourceAddress("aws_vpc", "main"))
        assert vpc.deposed == [old_id]

        plan = await build_plan(changed)
        assert [change.key for change in plan.changes] == [f"aws_vpc.main (deposed {old_id})"]

        _, retry = await apply_stack(changed)
        assert retry.state is RunState.COMPLETED
        assert (await store.load()).get(ResourceAddress("aws_vpc", "main")).deposed == []


class TestConcurrency:
    """Parallelism bound and cancellation."""

    @pytest.mark.asyncio
    async def test_parallelism_is_bounded(self, parse_resources, store):
        provider = InMemoryProvider("aws", latency=0.01)
        registry = ProviderRegistry()
        registry.add("aws", provider)

        _, result = await run(registry, store, parse_resources(BUCKETS), parallelism=2)

        assert result.state is RunState.COMPLETED
        assert provider.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_serial_execution(self, parse_resources, store):
        provider = InMemoryProvider("aws", latency=0.01)
        registry = ProviderRegistry()
        registry.add("aws", provider)

        await run(registry, store, parse_resources(BUCKETS), parallelism=1)

        assert provider.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_cancel_lets_in_flight_finish(self, parse_resources, store, vpc_stack):
        class CancellingProvider(InMemoryProvider):
            engine = None

            async def create(self, kind, attributes):
                created = await super().create(kind, attributes)
                if kind == "aws_vpc":
                    self.engine.cancel()
                return created

        provider = CancellingProvider("aws")
        registry = ProviderRegistry()
        registry.add("aws", provider)
        graph = GraphBuilder(registry.computed_attributes).build(parse_resources(vpc_stack))
        snapshot = await store.load()
        plan = PlanBuilder(registry).build(graph, snapshot)
        engine = ExecutionEngine(registry, store, retry_wait=wait_none())
        provider.engine = engine

        result = await engine.execute(plan, snapshot)

        assert result.state is RunState.ABORTED
        assert engine.state is RunState.ABORTED
        assert result.done == ["aws_vpc.main"]
        assert result.not_started == ["aws_subnet.s1", "aws_subnet.s2"]
        assert ResourceAddress("aws_vpc", "main") in await store.load()
