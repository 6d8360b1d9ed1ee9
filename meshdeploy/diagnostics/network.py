# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Network prerequisite checks run before registration.

Eight checks, each independently fault-tolerant: a check that raises is
reported as failed with a warning, and never aborts the battery.

Critical (all must pass):
    - active_adapter: at least one network adapter is Up
    - default_gateway: a 0.0.0.0/0 route exists
    - dns_servers: at least one DNS server is configured
    - dns_resolution: the management hostname resolves
    - internet: ICMP to the anchor address, falling back to an HTTP
      204/200 probe when ICMP is filtered

Advisory (never block):
    - time_sync: local clock within 5 minutes of a reference Date header
    - no_proxy: no HTTP(S) proxy configured
    - relay_reachable: at least one relay/signal host accepts a TCP
      connection on port 443 within 5 seconds

Cross-confirmation:
    Enumeration cmdlets can be missing in constrained sessions (e.g. before
    user logon) while the capability they enumerate still works. A
    successful DNS resolution therefore marks dns_servers true, and a
    successful internet probe marks active_adapter true.

Example:
    ```python
    from meshdeploy.config import load_deploy_config
    from meshdeploy.diagnostics import NetworkPrerequisiteChecker

    result = NetworkPrerequisiteChecker(load_deploy_config()).check_prerequisites()
    print(result.passed, result.blocking_issues)
    ```

"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
import socket
import urllib.request

import requests

from meshdeploy.client.runner import Runner, run_command, run_powershell
from meshdeploy.config import DeployConfig
from meshdeploy.exceptions import ClientError
from meshdeploy.logging import Logger, get_global_logger
from meshdeploy.results import (
    ADVISORY_CHECKS,
    CRITICAL_CHECKS,
    CheckName,
    NetworkCheckResult,
)

MAX_CLOCK_SKEW_SECONDS = 300
RELAY_PORT = 443
RELAY_TIMEOUT = 5
HTTP_TIMEOUT = 10

_BLOCKING_MESSAGES: dict[CheckName, str] = {
    CheckName.ACTIVE_ADAPTER: "No active network adapter found",
    CheckName.DEFAULT_GATEWAY: "No default gateway configured",
    CheckName.DNS_SERVERS: "No DNS servers configured",
    CheckName.DNS_RESOLUTION: "DNS cannot resolve the management server",
    CheckName.INTERNET: "No internet connectivity",
}

_WARNING_MESSAGES: dict[CheckName, str] = {
    CheckName.TIME_SYNC: "System clock may be out of sync (more than 5 minutes)",
    CheckName.NO_PROXY: "An HTTP proxy is configured; the client may need proxy settings",
    CheckName.RELAY_REACHABLE: "No relay/signal server reachable on port 443",
}


class NetworkPrerequisiteChecker:
    """Run the fixed network check battery.

    Args:
        config: Deployment configuration (management URL, anchor, probe
            URLs, relay hosts).
        runner: Command runner for PowerShell cmdlets and ping.
        resolver: Hostname resolver, ``socket.getaddrinfo`` by default.
        connect: TCP connector, ``socket.create_connection`` by default.
        now: Returns the current UTC time (used by the time-sync check).
        logger: Logger; defaults to the global logger.
    """

    def __init__(
        self,
        config: DeployConfig,
        *,
        runner: Runner = run_command,
        resolver: Callable[..., object] = socket.getaddrinfo,
        connect: Callable[..., socket.socket] = socket.create_connection,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self._runner = runner
        self._resolver = resolver
        self._connect = connect
        self._now = now
        self._logger = logger or get_global_logger()

    def _checks(self) -> dict[CheckName, Callable[[], bool]]:
        return {
            CheckName.ACTIVE_ADAPTER: self.check_active_adapter,
            CheckName.DEFAULT_GATEWAY: self.check_default_gateway,
            CheckName.DNS_SERVERS: self.check_dns_servers,
            CheckName.DNS_RESOLUTION: self.check_dns_resolution,
            CheckName.INTERNET: self.check_internet,
            CheckName.TIME_SYNC: self.check_time_sync,
            CheckName.NO_PROXY: self.check_no_proxy,
            CheckName.RELAY_REACHABLE: self.check_relay_reachable,
        }

    def check_prerequisites(self) -> NetworkCheckResult:
        """Run all eight checks and classify the outcome."""
        logger = self._logger
        checks: dict[CheckName, bool] = {}
        warnings: list[str] = []

        for name, check in self._checks().items():
            try:
                checks[name] = bool(check())
            except Exception as err:
                logger.warning("NETWORK", f"Check {name.value} raised: {err}")
                warnings.append(f"Check {name.value} could not run: {err}")
                checks[name] = False
            logger.verbose(
                "NETWORK", f"{name.value}: {'OK' if checks[name] else 'FAILED'}"
            )

        if checks[CheckName.DNS_RESOLUTION] and not checks[CheckName.DNS_SERVERS]:
            logger.verbose(
                "NETWORK", "DNS resolution works; treating DNS servers as configured"
            )
            checks[CheckName.DNS_SERVERS] = True
        if checks[CheckName.INTERNET] and not checks[CheckName.ACTIVE_ADAPTER]:
            logger.verbose(
                "NETWORK", "Internet reachable; treating adapter as active"
            )
            checks[CheckName.ACTIVE_ADAPTER] = True

        blocking = [
            _BLOCKING_MESSAGES[name] for name in CRITICAL_CHECKS if not checks[name]
        ]
        for name in ADVISORY_CHECKS:
            if not checks[name]:
                warnings.append(_WARNING_MESSAGES[name])

        result = NetworkCheckResult(
            checks=checks, blocking_issues=blocking, warnings=warnings
        )
        if result.passed:
            logger.info("NETWORK", "All critical network checks passed")
        else:
            for issue in blocking:
                logger.error("NETWORK", issue)
        for warning in warnings:
            logger.warning("NETWORK", warning)
        return result

    # -------------------------------
    # Critical checks
    # -------------------------------

    def _powershell_count(self, script: str) -> int:
        result = run_powershell(script, runner=self._runner, timeout=20)
        if not result.ok:
            return 0
        text = result.stdout.strip()
        return int(text) if text.isdigit() else 0

    def check_active_adapter(self) -> bool:
        return (
            self._powershell_count(
                "@(Get-NetAdapter | Where-Object { $_.Status -eq 'Up' }).Count"
            )
            > 0
        )

    def check_default_gateway(self) -> bool:
        return (
            self._powershell_count(
                "@(Get-NetRoute -DestinationPrefix '0.0.0.0/0' "
                "-ErrorAction SilentlyContinue).Count"
            )
            > 0
        )

    def check_dns_servers(self) -> bool:
        return (
            self._powershell_count(
                "@(Get-DnsClientServerAddress -AddressFamily IPv4 | "
                "Where-Object { $_.ServerAddresses.Count -gt 0 }).Count"
            )
            > 0
        )

    def check_dns_resolution(self) -> bool:
        host = self.config.management_host
        if not host:
            return False
        try:
            return bool(self._resolver(host, 443))
        except OSError as err:
            self._logger.debug("NETWORK", f"Cannot resolve {host}: {err}")
            return False

    def check_internet(self) -> bool:
        anchor = self.config.internet_anchor
        try:
            result = self._runner(["ping", "-n", "1", "-w", "3000", anchor], timeout=10)
        except ClientError as err:
            self._logger.debug("NETWORK", f"ping unavailable: {err}")
        else:
            if result.ok:
                return True
        self._logger.debug(
            "NETWORK", f"ICMP to {anchor} failed, trying {self.config.http_probe_url}"
        )
        try:
            response = requests.get(
                self.config.http_probe_url, timeout=HTTP_TIMEOUT, allow_redirects=False
            )
        except requests.exceptions.RequestException as err:
            self._logger.debug("NETWORK", f"HTTP probe failed: {err}")
            return False
        return response.status_code in (200, 204)

    # -------------------------------
    # Advisory checks
    # -------------------------------

    def check_time_sync(self) -> bool:
        response = requests.head(
            self.config.time_reference_url, timeout=HTTP_TIMEOUT, allow_redirects=True
        )
        header = response.headers.get("Date")
        if not header:
            return False
        reference = parsedate_to_datetime(header)
        skew = abs((self._now() - reference).total_seconds())
        self._logger.debug("NETWORK", f"Clock skew: {skew:.0f}s")
        return skew <= MAX_CLOCK_SKEW_SECONDS

    def check_no_proxy(self) -> bool:
        proxies = urllib.request.getproxies()
        configured = {k: v for k, v in proxies.items() if k in ("http", "https")}
        if configured:
            self._logger.debug("NETWORK", f"Proxy settings: {configured}")
        return not configured

    def check_relay_reachable(self) -> bool:
        for host in self.config.relay_hosts:
            try:
                conn = self._connect((host, RELAY_PORT), timeout=RELAY_TIMEOUT)
            except OSError as err:
                self._logger.debug("NETWORK", f"{host}:{RELAY_PORT} unreachable: {err}")
                continue
            conn.close()
            self._logger.debug("NETWORK", f"{host}:{RELAY_PORT} reachable")
            return True
        return False
