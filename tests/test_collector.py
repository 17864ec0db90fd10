import httpx
from conftest import make_agent, make_metric, make_token

from replication_monitor.services.collector import MetricsCollector
from replication_monitor.services.models import PublicationStats
from replication_monitor.utils.diagnostics import DiagnosticError


async def test_collect_returns_all_categories(source, connection, logger):
    source.agents["prod"] = [make_agent()]
    source.latency["prod"] = [make_metric()]
    source.tokens["prod"] = [make_token()]
    source.publications["prod"] = [PublicationStats(name="SalesPub")]

    collected = await MetricsCollector(source, logger).collect(connection)

    assert collected.connection == connection
    assert len(collected.agents) == 1
    assert len(collected.latency_metrics) == 1
    assert len(collected.tracer_tokens) == 1
    assert collected.publication_stats[0].name == "SalesPub"


async def test_failed_category_does_not_hide_the_others(source, connection, logger):
    source.agents["prod"] = [make_agent()]
    source.latency["prod"] = [make_metric()]
    source.failures[("prod", "tracer_tokens")] = httpx.ConnectError("permission denied")
    source.failures[("prod", "publications")] = DiagnosticError("GatewayError", "boom")

    collected = await MetricsCollector(source, logger).collect(connection)

    assert len(collected.agents) == 1
    assert len(collected.latency_metrics) == 1
    assert collected.tracer_tokens == ()
    assert collected.publication_stats == ()


async def test_tracer_tokens_skipped_when_disabled(source, connection, logger):
    source.tokens["prod"] = [make_token()]

    collected = await MetricsCollector(source, logger).collect(connection, include_tracer_tokens=False)

    assert collected.tracer_tokens == ()
    assert ("prod", "tracer_tokens") not in source.calls


async def test_insert_tracer_tokens_posts_one_per_publication(source, connection, logger):
    source.publications["prod"] = [PublicationStats(name="SalesPub"), PublicationStats(name="HRPub")]

    posted = await MetricsCollector(source, logger).insert_tracer_tokens(connection)

    assert posted == 2
    assert source.inserted == [("prod", "SalesPub"), ("prod", "HRPub")]


async def test_insert_failures_are_counted_out(source, connection, logger):
    source.publications["prod"] = [PublicationStats(name="SalesPub")]
    source.failures[("prod", "insert")] = httpx.ReadTimeout("slow")

    assert await MetricsCollector(source, logger).insert_tracer_tokens(connection) == 0
