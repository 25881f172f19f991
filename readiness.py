"""
Readiness gate for freshly enabled Google Cloud APIs.

Enabling a service returns before the control plane is consistent, so
resources that use the API can fail for a while afterwards. The gate sits
between the project services and everything that consumes them and blocks
until the Service Usage API reports every service as ENABLED, backing off
exponentially up to a timeout. The "fixed" strategy keeps the old constant
sleep for stacks that relied on it.
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import pulumi
import pulumi.dynamic
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_exponential,
)

SERVICE_USAGE_API = "https://serviceusage.googleapis.com/v1"

StatusCheck = Callable[[str], bool]


class ServiceNotReadyError(Exception):
    def __init__(self, pending: List[str]):
        super().__init__(f"services not enabled yet: {', '.join(pending)}")
        self.pending = pending


class ServiceActivationTimeoutError(Exception):
    """
    Raised when services are still not ENABLED once the timeout has passed.

    Nothing has been half-created at that point; re-running the deployment
    resumes polling from scratch.
    """

    def __init__(self, pending: List[str], timeout: float):
        super().__init__(
            f"timed out after {timeout:g}s waiting for services to be enabled: "
            f"{', '.join(pending)}"
        )
        self.pending = pending
        self.timeout = timeout


def service_usage_check(project: str, access_token: str, client: httpx.Client) -> StatusCheck:
    """Return a check that asks Service Usage whether one service is ENABLED; the caller owns client."""

    def is_enabled(service: str) -> bool:
        response = client.get(
            f"{SERVICE_USAGE_API}/projects/{project}/services/{service}",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return response.json().get("state") == "ENABLED"

    return is_enabled


def wait_for_services(
    services: Iterable[str],
    is_enabled: StatusCheck,
    timeout: float = 300.0,
    max_interval: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Poll until is_enabled() is true for every service.

    Services that already reported ENABLED are not asked again. Transport
    errors count as "not ready"; HTTP errors such as permission denial are
    raised as they are.
    """
    pending = sorted(set(services))
    if not pending:
        return

    retrying = Retrying(
        retry=retry_if_exception_type((ServiceNotReadyError, httpx.TransportError)),
        wait=wait_exponential(multiplier=1, min=1, max=max_interval),
        stop=stop_after_delay(timeout),
        sleep=sleep,
    )
    try:
        for attempt in retrying:
            with attempt:
                pending = [service for service in pending if not is_enabled(service)]
                if pending:
                    pulumi.log.info(
                        f"Attempt {attempt.retry_state.attempt_number}: waiting on {', '.join(pending)}"
                    )
                    raise ServiceNotReadyError(pending)
    except RetryError as e:
        raise ServiceActivationTimeoutError(pending, timeout) from e

    pulumi.log.info("All required services report ENABLED")


def fixed_settle(seconds: float, sleep: Callable[[float], None] = time.sleep) -> None:
    # TODO: drop once no stack sets settle_strategy: fixed
    pulumi.log.warn(f"Waiting a fixed {seconds:g}s for enabled services to settle")
    sleep(seconds)


class ApiReadinessProvider(pulumi.dynamic.ResourceProvider):
    def create(self, props: Dict[str, Any]) -> pulumi.dynamic.CreateResult:
        services = list(props["services"])
        if props["strategy"] == "fixed":
            fixed_settle(float(props["sleep_time"]))
        else:
            with httpx.Client(timeout=10.0) as client:
                is_enabled = service_usage_check(props["project"], props["access_token"], client)
                wait_for_services(services, is_enabled, timeout=float(props["timeout"]))
        outs = {k: v for k, v in props.items() if k != "access_token"}
        return pulumi.dynamic.CreateResult(id_=f"{props['project']}-apis-ready", outs=outs)

    def diff(self, _id: str, olds: Dict[str, Any], news: Dict[str, Any]) -> pulumi.dynamic.DiffResult:
        # the access token rotates every run and must not trigger a replace
        changed = [
            key for key in ("project", "services", "strategy")
            if olds.get(key) != news.get(key)
        ]
        return pulumi.dynamic.DiffResult(
            changes=bool(changed),
            replaces=changed,
            delete_before_replace=False,
        )


class ApiReadinessGate(pulumi.dynamic.Resource):
    """Completes once the listed services are usable; depend on it, not on the services."""

    def __init__(
        self,
        name: str,
        project: pulumi.Input[str],
        services: List[str],
        strategy: str,
        sleep_time: int,
        timeout: int,
        access_token: pulumi.Input[str],
        opts: Optional[pulumi.ResourceOptions] = None,
    ):
        super().__init__(
            ApiReadinessProvider(),
            name,
            {
                "project": project,
                "services": services,
                "strategy": strategy,
                "sleep_time": sleep_time,
                "timeout": timeout,
                "access_token": pulumi.Output.secret(access_token),
            },
            opts,
        )
