"""Health probes for the stack's HTTP endpoints and databases."""

import time
from typing import Callable, Optional, Protocol

import psycopg2
import requests
import structlog

from shivish_deploy.errors import ProbeError
from shivish_deploy.models import HealthStatus, ProbeResult

logger = structlog.get_logger(__name__)

REDIRECT_CODES = (301, 302)


class Probe(Protocol):
    name: str

    def check(self) -> ProbeResult:
        ...


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


class HttpProbe:
    """
    GET a URL and classify the response.

    Any response below 500 counts as healthy, since placeholder and real
    services answer unknown paths with 404. A 5xx is degraded and a
    connection failure or timeout is unhealthy. With ``expect_redirect`` the
    response is not followed and only 301/302 count as healthy.
    """

    def __init__(
        self,
        name: str,
        url: str,
        *,
        timeout: float = 5.0,
        verify_tls: bool = True,
        expect_redirect: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not url.startswith(("http://", "https://")):
            raise ProbeError(f"Probe {name} needs an http(s) URL, got {url!r}")
        self.name = name
        self.url = url
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.expect_redirect = expect_redirect
        self.session = session or requests.Session()

    def check(self) -> ProbeResult:
        started = time.perf_counter()
        try:
            response = self.session.get(
                self.url,
                timeout=self.timeout,
                verify=self.verify_tls,
                allow_redirects=not self.expect_redirect,
            )
        except requests.exceptions.Timeout:
            return self._result(HealthStatus.UNHEALTHY, "timed out", started)
        except requests.exceptions.RequestException as e:
            return self._result(HealthStatus.UNHEALTHY, f"connection failed: {type(e).__name__}", started)

        code = response.status_code
        if self.expect_redirect:
            if code in REDIRECT_CODES:
                location = response.headers.get("Location", "")
                return self._result(HealthStatus.HEALTHY, f"HTTP {code} -> {location}".strip(), started)
            return self._result(HealthStatus.UNHEALTHY, f"expected redirect, got HTTP {code}", started)

        status = HealthStatus.DEGRADED if code >= 500 else HealthStatus.HEALTHY
        return self._result(status, f"HTTP {code}", started)

    def _result(self, status: HealthStatus, detail: str, started: float) -> ProbeResult:
        result = ProbeResult(
            name=self.name,
            target=self.url,
            status=status,
            kind="http",
            detail=detail,
            latency_ms=_elapsed_ms(started),
        )
        logger.debug("probe_finished", name=self.name, url=self.url, status=status.value, detail=detail)
        return result


class PostgresProbe:
    """Connect to PostgreSQL and count active connections."""

    def __init__(
        self,
        name: str = "PostgreSQL",
        *,
        host: str = "localhost",
        port: int = 5432,
        database: str = "postgres",
        user: str = "postgres",
        password: str = "",
        timeout: float = 5.0,
        connect: Callable[..., "psycopg2.extensions.connection"] = psycopg2.connect,
    ) -> None:
        self.name = name
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.timeout = timeout
        self._connect = connect

    @property
    def target(self) -> str:
        return f"postgresql://{self.user}@{self.host}:{self.port}/{self.database}"

    def check(self) -> ProbeResult:
        started = time.perf_counter()
        try:
            conn = self._connect(
                host=self.host,
                port=self.port,
                dbname=self.database,
                user=self.user,
                password=self.password,
                connect_timeout=max(1, int(self.timeout)),
            )
        except psycopg2.Error as e:
            detail = str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__
            return ProbeResult(
                name=self.name,
                target=self.target,
                status=HealthStatus.UNHEALTHY,
                kind="postgres",
                detail=detail,
                latency_ms=_elapsed_ms(started),
            )

        try:
            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM pg_stat_activity")
                (active,) = cur.fetchone()
        except psycopg2.Error as e:
            return ProbeResult(
                name=self.name,
                target=self.target,
                status=HealthStatus.DEGRADED,
                kind="postgres",
                detail=f"query failed: {e}".strip(),
                latency_ms=_elapsed_ms(started),
            )
        finally:
            conn.close()

        return ProbeResult(
            name=self.name,
            target=self.target,
            status=HealthStatus.HEALTHY,
            kind="postgres",
            detail=f"{active} active connections",
            latency_ms=_elapsed_ms(started),
        )


class RedisProbe:
    """``redis-cli ping`` inside the Redis container."""

    def __init__(self, engine, container: str, password: Optional[str] = None, name: str = "Redis") -> None:
        self.name = name
        self.engine = engine
        self.container = container
        self.password = password

    def check(self) -> ProbeResult:
        started = time.perf_counter()
        command = ["redis-cli"]
        if self.password:
            command += ["-a", self.password, "--no-auth-warning"]
        command.append("ping")

        result = self.engine.exec(self.container, command)
        answer = result.stdout.strip()
        if result.ok and answer == "PONG":
            status, detail = HealthStatus.HEALTHY, "PONG"
        elif result.ok:
            status, detail = HealthStatus.DEGRADED, answer or "empty reply"
        else:
            status, detail = HealthStatus.UNHEALTHY, (result.stderr.strip() or f"exit status {result.returncode}")

        return ProbeResult(
            name=self.name,
            target=f"docker://{self.container}",
            status=status,
            kind="redis",
            detail=detail,
            latency_ms=_elapsed_ms(started),
        )


def wait_for(
    probe: Probe,
    timeout: float,
    interval: float = 2.0,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ProbeResult:
    """
    Poll ``probe`` until it reports healthy or ``timeout`` seconds pass.

    Returns:
        The first healthy result, or the last result when the budget is spent
    """
    deadline = clock() + timeout
    attempt = 0
    while True:
        attempt += 1
        result = probe.check()
        if result.healthy:
            logger.info("probe_ready", name=probe.name, attempts=attempt)
            return result

        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning("probe_wait_exhausted", name=probe.name, attempts=attempt, detail=result.detail)
            return result

        sleep(min(interval, remaining))
