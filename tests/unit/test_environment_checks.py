"""Tests for the environment prober and HTTP health source."""

import asyncio
import time

import httpx
import pytest

from conftest import FEATURE
from staged_launch.core.launch.checks import (
    EnvironmentProber,
    HttpHealthSource,
    check_dependencies,
    check_runtime_version,
)
from staged_launch.core.launch.models import LaunchStage
from staged_launch.core.launch.validation import StageRequirements, endpoint_check_key


def transport_for(statuses):
    """MockTransport answering by path, 404 for anything unknown."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(statuses.get(request.url.path, 404))

    return httpx.MockTransport(handler), seen


class TestLocalChecks:
    """Tests for the built-in compatibility checks."""

    def test_runtime_version(self):
        """Test the running interpreter satisfies the minimum."""
        assert check_runtime_version() is True
        assert check_runtime_version((99, 0)) is False

    def test_dependencies(self):
        """Test installed and missing distributions."""
        assert check_dependencies(["httpx"]) is True
        assert check_dependencies(["httpx", "definitely-not-installed-dist"]) is False


class TestEnvironmentProber:
    """Tests for EnvironmentProber.probe."""

    @pytest.mark.asyncio
    async def test_probe_beta(self):
        """Test endpoint probes and compatibility checks for beta."""
        transport, seen = transport_for({"/api/health": 200, "/api/launch/metrics": 503})
        prober = EnvironmentProber(
            base_url="http://launch.internal",
            transport=transport,
            compatibility_checks={"database_migration": lambda: True},
        )
        results = await prober.probe(FEATURE, LaunchStage.BETA)

        assert results[endpoint_check_key("health")] is True
        assert results[endpoint_check_key("metrics")] is False
        assert results["runtime_version"] is True
        assert results["database_migration"] is True
        assert any(url.params.get("feature") == FEATURE for url in seen)

    @pytest.mark.asyncio
    async def test_no_base_url_is_undetermined(self):
        """Test endpoints are unknown when nothing can be probed."""
        results = await EnvironmentProber().probe(FEATURE, LaunchStage.DEV)
        assert results[endpoint_check_key("health")] is None

    @pytest.mark.asyncio
    async def test_unregistered_and_raising_checks(self):
        """Test missing or failing checks report None."""

        def broken():
            raise RuntimeError("cdn api down")

        prober = EnvironmentProber(compatibility_checks={"cdn_cache": broken})
        results = await prober.probe(FEATURE, LaunchStage.GRADUAL)
        assert results["cdn_cache"] is None
        assert results["database_migration"] is None

    @pytest.mark.asyncio
    async def test_async_check(self):
        """Test coroutine checks are awaited."""

        async def load_balancer():
            return False

        prober = EnvironmentProber()
        prober.register_check("load_balancer", load_balancer)
        results = await prober.probe(FEATURE, LaunchStage.FULL)
        assert results["load_balancer"] is False

    @pytest.mark.asyncio
    async def test_connection_error_is_failure(self):
        """Test an unreachable endpoint is reported as unavailable."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        prober = EnvironmentProber(
            base_url="http://launch.internal", transport=httpx.MockTransport(handler)
        )
        results = await prober.probe(FEATURE, LaunchStage.DEV)
        assert results[endpoint_check_key("health")] is False

    @pytest.mark.asyncio
    async def test_unknown_required_endpoint_is_failure(self):
        """Test a required endpoint with no probe path counts as unavailable."""
        transport, seen = transport_for({"/api/health": 200})
        prober = EnvironmentProber(
            base_url="http://launch.internal",
            transport=transport,
            requirements={
                LaunchStage.DEV: StageRequirements(0.0, ("health", "queue"), 1000, 0.9, ()),
            },
        )
        results = await prober.probe(FEATURE, LaunchStage.DEV)
        assert results[endpoint_check_key("health")] is True
        assert results[endpoint_check_key("queue")] is False
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_blocking_check_times_out(self):
        """Test a blocking plain-function check is undetermined after the timeout."""

        def cdn_cache():
            time.sleep(0.5)
            return True

        prober = EnvironmentProber(timeout=0.05, compatibility_checks={"cdn_cache": cdn_cache})
        loop = asyncio.get_running_loop()
        started = loop.time()
        results = await prober.probe(FEATURE, LaunchStage.GRADUAL)
        assert results["cdn_cache"] is None
        assert loop.time() - started < 0.3

    @pytest.mark.asyncio
    async def test_off_needs_nothing(self):
        """Test the off stage requires no checks."""
        assert await EnvironmentProber().probe(FEATURE, LaunchStage.OFF) == {}


class TestHttpHealthSource:
    """Tests for HttpHealthSource."""

    @pytest.mark.asyncio
    async def test_fetches_sample(self):
        """Test the JSON body is parsed into a health sample."""

        def handler(request):
            assert request.url.path == f"/launch/{FEATURE}"
            return httpx.Response(
                200,
                json={
                    "success_rate": 0.99,
                    "error_count": 1,
                    "response_time_ms": 850,
                    "user_engagement": 0.88,
                },
            )

        source = HttpHealthSource(
            "http://metrics.internal/launch/{feature}", transport=httpx.MockTransport(handler)
        )
        sample = await source(FEATURE)
        assert sample.response_time_ms == 850
        assert sample.error_count == 1

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        """Test non-2xx responses raise for the monitor to log."""
        source = HttpHealthSource(
            "http://metrics.internal/{feature}",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await source(FEATURE)
