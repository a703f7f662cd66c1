"""Root test configuration."""

import logging

import pytest
import structlog
import yaml
from tenacity import wait_none

from stackplan.config.document import parse_document
from stackplan.config.settings import Settings
from stackplan.graph.builder import GraphBuilder
from stackplan.orchestration.engine import ExecutionEngine
from stackplan.orchestration.plan_builder import PlanBuilder
from stackplan.providers.memory import InMemoryProvider
from stackplan.providers.registry import ProviderRegistry
from stackplan.state.store import LocalStateStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


VPC_STACK = """
resources:
  - kind: aws_vpc
    name: main
    attributes:
      cidr_block: 10.0.0.0/16
  - kind: aws_subnet
    name: s1
    attributes:
      vpc_id: ${aws_vpc.main.id}
      cidr_block: 10.0.1.0/24
  - kind: aws_subnet
    name: s2
    attributes:
      vpc_id: ${aws_vpc.main.id}
      cidr_block: 10.0.2.0/24
"""


def definitions_from(text):
    """Parse the resources of a YAML stack document."""
    return parse_document(yaml.safe_load(text)).definitions


@pytest.fixture
def provider():
    """Simulated provider serving every aws_* kind; VPC CIDRs are immutable."""
    return InMemoryProvider("aws", immutable={"aws_vpc": ["cidr_block"]})


@pytest.fixture
def registry(provider):
    registry = ProviderRegistry()
    registry.register("memory", InMemoryProvider)
    registry.add("aws", provider)
    return registry


@pytest.fixture
def store(tmp_path):
    return LocalStateStore(tmp_path / "state.json")


@pytest.fixture
def test_settings(tmp_path):
    """Settings with fast retries and the provider lock file under tmp_path."""
    return Settings(
        max_retries=2,
        retry_backoff_min=0.0,
        retry_backoff_max=0.0,
        lock_timeout=0.0,
        lock_poll_interval=0.01,
        provider_lock_path=str(tmp_path / "stackplan.lock.json"),
    )


@pytest.fixture
def build_plan(registry, store):
    """Build a plan for a YAML stack against the current state."""

    async def _build(text):
        graph = GraphBuilder(registry.computed_attributes).build(definitions_from(text))
        snapshot = await store.load()
        return PlanBuilder(registry).build(graph, snapshot)

    return _build


@pytest.fixture
def apply_stack(registry, store):
    """Plan and apply a YAML stack, returning ``(plan, result)``."""

    async def _apply(text, **engine_options):
        graph = GraphBuilder(registry.computed_attributes).build(definitions_from(text))
        snapshot = await store.load()
        plan = PlanBuilder(registry).build(graph, snapshot)
        engine_options.setdefault("retry_wait", wait_none())
        engine = ExecutionEngine(registry, store, **engine_options)
        result = await engine.execute(plan, snapshot)
        return plan, result

    return _apply


@pytest.fixture
def vpc_stack():
    """VPC with two subnets referencing its id."""
    return VPC_STACK


@pytest.fixture
def parse_resources():
    return definitions_from
