"""Environment checks feeding the Launch Validator, and the HTTP health source.

Endpoint probes go over HTTP; compatibility checks run locally or through
callables supplied by the deployment. A check that cannot be determined
is reported as None rather than as a failure.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from importlib import metadata
from typing import Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import httpx

from staged_launch.core.launch.calls import call_maybe_async
from staged_launch.core.launch.models import LaunchMetrics, LaunchStage
from staged_launch.core.launch.validation import (
    STAGE_REQUIREMENTS,
    StageRequirements,
    endpoint_check_key,
)

logger = logging.getLogger(__name__)

CompatibilityCheck = Callable[[], Union[bool, Awaitable[bool]]]

ENDPOINT_PATHS: Dict[str, str] = {
    "health": "/api/health",
    "metrics": "/api/launch/metrics?feature={feature}",
    "rollback": "/api/launch/status",
    "monitoring": "/api/launch/status",
}

MIN_PYTHON: Tuple[int, int] = (3, 10)


def check_runtime_version(minimum: Tuple[int, int] = MIN_PYTHON) -> bool:
    return sys.version_info[:2] >= minimum


def check_dependencies(distributions: Iterable[str]) -> bool:
    """True when every named distribution is installed."""
    for name in distributions:
        try:
            metadata.version(name)
        except metadata.PackageNotFoundError:
            logger.warning(f"Required distribution not installed: {name}")
            return False
    return True


class EnvironmentProber:
    """Collects endpoint and compatibility results for a target stage."""

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 5.0,
        required_distributions: Iterable[str] = ("httpx", "pydantic", "PyYAML"),
        compatibility_checks: Optional[Mapping[str, CompatibilityCheck]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        requirements: Optional[Mapping[LaunchStage, StageRequirements]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.requirements = dict(requirements or STAGE_REQUIREMENTS)
        self._transport = transport
        distributions = tuple(required_distributions)
        self._checks: Dict[str, CompatibilityCheck] = {
            "runtime_version": check_runtime_version,
            "dependencies": lambda: check_dependencies(distributions),
        }
        self._checks.update(compatibility_checks or {})

    def register_check(self, name: str, check: CompatibilityCheck) -> None:
        self._checks[name] = check

    async def probe(
        self, feature_key: str, target_stage: LaunchStage
    ) -> Dict[str, Optional[bool]]:
        """Run every endpoint and compatibility check the stage requires."""
        criteria = self.requirements[target_stage]
        results: Dict[str, Optional[bool]] = {}

        if criteria.required_endpoints:
            async with httpx.AsyncClient(
                base_url=self.base_url or "http://localhost",
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                for endpoint in criteria.required_endpoints:
                    results[endpoint_check_key(endpoint)] = await self._probe_endpoint(
                        client, feature_key, endpoint
                    )

        for name in criteria.compatibility_checks:
            results[name] = await self._run_check(name)

        return results

    async def _probe_endpoint(
        self, client: httpx.AsyncClient, feature_key: str, endpoint: str
    ) -> Optional[bool]:
        path = ENDPOINT_PATHS.get(endpoint)
        if path is None:
            logger.warning(f"No probe path known for required endpoint: {endpoint}")
            return False
        if not self.base_url and self._transport is None:
            return None
        try:
            response = await client.get(path.format(feature=quote(feature_key)))
        except httpx.HTTPError as e:
            logger.warning(f"Endpoint probe '{endpoint}' failed: {e}")
            return False
        return response.is_success

    async def _run_check(self, name: str) -> Optional[bool]:
        check = self._checks.get(name)
        if check is None:
            return None
        try:
            outcome = await asyncio.wait_for(call_maybe_async(check), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Compatibility check '{name}' timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.warning(f"Compatibility check '{name}' could not run: {e}")
            return None
        return bool(outcome)


class HttpHealthSource:
    """Health-check source that fetches a JSON sample over HTTP.

    The URL template may contain a `{feature}` placeholder. The response body
    must carry the LaunchMetrics fields; a missing timestamp means "now".
    """

    def __init__(
        self,
        url_template: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self._transport = transport

    async def __call__(self, feature_key: str) -> LaunchMetrics:
        url = self.url_template.format(feature=quote(feature_key))
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url)
            response.raise_for_status()
            return LaunchMetrics.from_dict(response.json())
