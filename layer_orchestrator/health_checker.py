"""
Single-attempt health probes.

Every probe makes one attempt bounded by a caller-supplied timeout and
reports the result as a HealthOutcome. The timeout is a deadline for the
whole probe: multi-request probes split what is left of it between their
requests, and a probe that finishes past it is unhealthy. Ordinary
connectivity failures never raise. Retrying is the caller's job (see
LayerToolkit.wait_for_healthy).

Probe shapes:
    check_http      - reachability with an expected status code
    check_rpc       - NEAR RPC reachability plus chain id match
    check_mpc_node  - MPC node reachability cross-referenced with the
                      NEAR RPC it depends on and its signer contract
    check_tcp       - plain TCP connect
    check_many      - independent probes run concurrently; healthy only
                      if all are
"""

import logging
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional

import requests

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.core.models import HealthOutcome

logger = logging.getLogger(__name__)

Probe = Callable[[], HealthOutcome]


def _rpc_base(url: str) -> str:
    url = url.rstrip("/")
    if url.endswith("/status"):
        url = url[: -len("/status")]
    return url


class DeadlineExceeded(Exception):
    """The probe's time budget ran out before its next request."""


class Deadline:
    """Time budget shared by every request of one probe."""

    def __init__(self, timeout: float, clock: Callable[[], float]):
        self.timeout = timeout
        self._clock = clock
        self.start = clock()
        self.expires = self.start + timeout

    def elapsed(self) -> float:
        return self._clock() - self.start

    def expired(self) -> bool:
        return self._clock() >= self.expires

    def remaining(self) -> float:
        """
        Seconds left for the next request.

        Raises:
            DeadlineExceeded: If nothing is left
        """
        left = self.expires - self._clock()
        if left <= 0:
            raise DeadlineExceeded(f"Deadline of {self.timeout}s exceeded")
        return left


class HealthChecker:
    """
    Runs health probes with a default timeout.

    Args:
        default_timeout: Seconds per probe when the caller passes none
        session: Optional requests.Session (shared connection pool)
        clock: Monotonic clock (defaults to time.monotonic, looked up per call)
    """

    def __init__(
        self,
        default_timeout: float = CONSTANTS.HEALTH_CHECK_TIMEOUT,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.default_timeout = default_timeout
        self.session = session or requests.Session()
        self._clock = clock

    def _now(self) -> float:
        return (self._clock or time.monotonic)()

    def _deadline(self, timeout: Optional[float]) -> Deadline:
        return Deadline(self.default_timeout if timeout is None else timeout, self._now)

    # ==========================================
    # Generic reachability
    # ==========================================

    def check_http(
        self,
        url: str,
        timeout: Optional[float] = None,
        expected_status: int = 200,
        validator: Optional[Callable[[requests.Response], bool]] = None
    ) -> HealthOutcome:
        """
        GET ``url`` once and compare the status code.

        Args:
            url: Endpoint to probe
            timeout: Deadline for the probe in seconds
            expected_status: Status code that counts as healthy
            validator: Optional extra check on the response

        Returns:
            HealthOutcome (healthy=False with an error on any failure)
        """
        return self._check_http(url, self._deadline(timeout), expected_status, validator)

    def _check_http(
        self,
        url: str,
        deadline: Deadline,
        expected_status: int = 200,
        validator: Optional[Callable[[requests.Response], bool]] = None
    ) -> HealthOutcome:
        try:
            response = self.session.get(url, timeout=deadline.remaining())
        except DeadlineExceeded as e:
            return self._unhealthy(url, deadline, str(e))
        except requests.RequestException as e:
            return self._unhealthy(url, deadline, f"Request failed: {e}")

        if response.status_code != expected_status:
            return self._unhealthy(
                url, deadline,
                f"Unexpected status code: {response.status_code} (expected {expected_status})"
            )

        if validator is not None:
            try:
                valid = validator(response)
            except ValueError as e:
                valid = False
                logger.debug(f"Validator for {url} raised: {e}")
            if not valid:
                return self._unhealthy(url, deadline, "Custom validation failed")

        return self._healthy(url, deadline)

    def check_tcp(self, host: str, port: int, timeout: Optional[float] = None) -> HealthOutcome:
        """Open and close one TCP connection."""
        deadline = self._deadline(timeout)
        target = f"{host}:{port}"
        try:
            with socket.create_connection((host, port), timeout=deadline.remaining()):
                pass
        except DeadlineExceeded as e:
            return self._unhealthy(target, deadline, str(e))
        except OSError as e:
            return self._unhealthy(target, deadline, f"TCP connect failed: {e}")
        return self._healthy(target, deadline)

    # ==========================================
    # Protocol-aware probes
    # ==========================================

    def _json_rpc(self, base_url: str, method: str, params: Any, deadline: Deadline) -> Dict[str, Any]:
        response = self.session.post(
            base_url,
            json={"jsonrpc": "2.0", "id": "health-check", "method": method, "params": params},
            timeout=deadline.remaining(),
        )
        response.raise_for_status()
        return response.json()

    def check_rpc(
        self,
        url: str,
        expected_network_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> HealthOutcome:
        """
        Probe a NEAR RPC endpoint.

        Steps:
            1. GET /status and require a sync_info block
            2. Compare chain_id with expected_network_id (if given)
            3. POST a JSON-RPC ``block`` query for the latest block
            4. POST a ``validators`` query (failure only logs a warning)

        All requests share one deadline of ``timeout`` seconds.

        Returns:
            HealthOutcome with details["chain_id"] and details["latest_block_height"]
        """
        return self._check_rpc(url, expected_network_id, self._deadline(timeout))

    def _check_rpc(
        self,
        url: str,
        expected_network_id: Optional[str],
        deadline: Deadline
    ) -> HealthOutcome:
        base_url = _rpc_base(url)

        try:
            response = self.session.get(f"{base_url}/status", timeout=deadline.remaining())
            response.raise_for_status()
            status = response.json()
        except DeadlineExceeded as e:
            return self._unhealthy(base_url, deadline, str(e))
        except (requests.RequestException, ValueError) as e:
            return self._unhealthy(base_url, deadline, f"Status request failed: {e}")

        if not isinstance(status, dict) or not status.get("sync_info"):
            return self._unhealthy(base_url, deadline, "Invalid status response structure")

        chain_id = status.get("chain_id")
        if expected_network_id and chain_id != expected_network_id:
            return self._unhealthy(
                base_url, deadline,
                f"Network ID mismatch: expected {expected_network_id}, got {chain_id}"
            )

        sync_info = status["sync_info"]
        if sync_info.get("syncing"):
            logger.warning(
                f"NEAR node is still syncing at height {sync_info.get('latest_block_height')}"
            )

        try:
            block = self._json_rpc(base_url, "block", {"finality": "final"}, deadline)
        except DeadlineExceeded as e:
            return self._unhealthy(base_url, deadline, f"Block query skipped: {e}")
        except (requests.RequestException, ValueError) as e:
            return self._unhealthy(base_url, deadline, f"Block query failed: {e}")
        if not (block.get("result") or {}).get("header"):
            return self._unhealthy(base_url, deadline, "Invalid block response structure")

        try:
            validators = self._json_rpc(base_url, "validators", [None], deadline)
            if "result" not in validators:
                logger.warning(f"Validator info unavailable at {base_url}")
        except DeadlineExceeded:
            logger.debug(f"No time left for the validator query at {base_url}")
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Validator query failed at {base_url}: {e}")

        return self._healthy(base_url, deadline, details={
            "chain_id": chain_id,
            "latest_block_height": sync_info.get("latest_block_height"),
        })

    def check_mpc_node(
        self,
        node_url: str,
        near_rpc_url: Optional[str] = None,
        expected_contract_id: Optional[str] = None,
        expected_network_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> HealthOutcome:
        """
        Composite probe of an MPC signing node.

        Healthy only if the node answers HTTP and, when a NEAR RPC URL is
        given, that RPC is healthy on the expected network and (when a
        contract id is given) the signer contract account exists there.
        A failing ``view_state`` query on the contract only warns. Every
        request draws on the same ``timeout`` budget.
        """
        deadline = self._deadline(timeout)

        node = self._check_http(node_url, deadline)
        if not node.healthy:
            return self._unhealthy(node_url, deadline, f"MPC node unreachable: {node.error}")

        if not near_rpc_url:
            return self._healthy(node_url, deadline)

        rpc = self._check_rpc(near_rpc_url, expected_network_id, deadline)
        if not rpc.healthy:
            return self._unhealthy(node_url, deadline, f"NEAR RPC check failed: {rpc.error}")

        details: Dict[str, Any] = {"chain_id": rpc.details.get("chain_id")}
        if expected_contract_id:
            base_url = _rpc_base(near_rpc_url)
            try:
                account = self._json_rpc(base_url, "query", {
                    "request_type": "view_account",
                    "finality": "final",
                    "account_id": expected_contract_id,
                }, deadline)
            except DeadlineExceeded as e:
                return self._unhealthy(node_url, deadline, f"Contract lookup skipped: {e}")
            except (requests.RequestException, ValueError) as e:
                return self._unhealthy(node_url, deadline, f"Contract lookup failed: {e}")
            if "result" not in account:
                error = (account.get("error") or {}).get("message", "account not found")
                return self._unhealthy(
                    node_url, deadline,
                    f"Signer contract {expected_contract_id} not found: {error}"
                )

            try:
                state = self._json_rpc(base_url, "query", {
                    "request_type": "view_state",
                    "finality": "final",
                    "account_id": expected_contract_id,
                    "prefix_base64": "",
                }, deadline)
                if "result" not in state:
                    logger.warning(f"Contract state of {expected_contract_id} not readable")
            except DeadlineExceeded:
                logger.debug(f"No time left for the contract state query of {expected_contract_id}")
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"Contract state query for {expected_contract_id} failed: {e}")
            details["contract_id"] = expected_contract_id

        return self._healthy(node_url, deadline, details=details)

    # ==========================================
    # Concurrency
    # ==========================================

    def check_many(self, probes: Mapping[str, Probe], max_workers: int = 8) -> HealthOutcome:
        """
        Run independent read-only probes concurrently.

        Waits for every probe before deciding. Healthy only if all are.

        Example:
            >>> checker.check_many({
            ...     "node-0": lambda: checker.check_http("http://10.0.0.1:8080"),
            ...     "node-1": lambda: checker.check_http("http://10.0.0.2:8080"),
            ... })
        """
        if not probes:
            return HealthOutcome(healthy=False, error="No probes to run")

        start = time.monotonic()
        with ThreadPoolExecutor(max_workers=min(max_workers, len(probes))) as pool:
            futures = {name: pool.submit(probe) for name, probe in probes.items()}
            results = {name: future.result() for name, future in futures.items()}

        failures = {name: r.error or "unhealthy" for name, r in results.items() if not r.healthy}
        outcome = HealthOutcome(
            healthy=not failures,
            response_time=time.monotonic() - start,
            details={"results": results},
        )
        if failures:
            outcome.error = "; ".join(f"{name}: {error}" for name, error in failures.items())
        return outcome

    # ==========================================
    # Helpers
    # ==========================================

    @staticmethod
    def _healthy(target: str, deadline: Deadline, details: Optional[Dict[str, Any]] = None) -> HealthOutcome:
        elapsed = deadline.elapsed()
        if elapsed > deadline.timeout:
            # Answered, but too late to count
            return HealthChecker._unhealthy(
                target, deadline, f"Deadline of {deadline.timeout}s exceeded ({elapsed:.2f}s)"
            )
        logger.debug(f"✓ {target} healthy ({elapsed * 1000:.0f}ms)")
        return HealthOutcome(healthy=True, response_time=elapsed, details=details or {})

    @staticmethod
    def _unhealthy(target: str, deadline: Deadline, error: str) -> HealthOutcome:
        elapsed = deadline.elapsed()
        logger.debug(f"✗ {target} unhealthy ({elapsed * 1000:.0f}ms): {error}")
        return HealthOutcome(healthy=False, response_time=elapsed, error=error)
