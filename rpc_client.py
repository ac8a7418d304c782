import asyncio
import itertools
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import httpx

from rpc_errors import (
    ApplicationError,
    DeadlineExceeded,
    ParseError,
    RetriesExhausted,
    RpcCancelled,
    RpcError,
    TransportFailure,
    TransportRetryable,
)

# Any value json.loads can produce; params are an ordered list of these.
JsonValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

DEFAULT_RETRY_STATUSES = frozenset({429, 403, 503})
DEFAULT_API_KEY_HEADER = "x-api-key"
DEFAULT_TIMEOUT = 20.0

logger = logging.getLogger("TatumRPC")


# ---- Retry policy ----


@dataclass(frozen=True)
class RetryPolicy:
    factor: float = 2.0
    min_delay: float = 0.5
    max_delay: float = 8.0
    jitter: bool = True
    max_attempts: int = 6
    retry_network_errors: bool = False

    def __post_init__(self) -> None:
        if self.factor <= 1:
            raise ValueError(f"factor must be > 1, got {self.factor}")
        if self.min_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based).

        Without jitter this is ``min(max_delay, min_delay * factor ** (attempt - 1))``.
        With jitter the value is drawn uniformly from the upper half of that bound,
        so it never exceeds ``max_delay``.
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        try:
            bound = min(self.max_delay, self.min_delay * self.factor ** (attempt - 1))
        except OverflowError:
            bound = self.max_delay
        if not self.jitter:
            return bound
        return (rng or random).uniform(bound / 2, bound)


DEFAULT_RETRY_POLICY = RetryPolicy()


# ---- Single attempt ----

OK = "ok"
RETRY = "retry"
FAIL = "fail"


@dataclass(frozen=True)
class Attempt:
    kind: str
    value: Any = None
    error: Optional[RpcError] = None


def build_request(request_id: int, method: str, params: Optional[Sequence[JsonValue]] = None) -> Dict[str, Any]:
    if not isinstance(method, str) or not method:
        raise ValueError("method must be a non-empty string")
    if params is None:
        params = []
    elif isinstance(params, (str, bytes, dict)) or not isinstance(params, Sequence):
        raise TypeError(f"params must be an ordered list, got {type(params).__name__}")
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)}


def classify_payload(method: str, payload: Any) -> Attempt:
    if not isinstance(payload, dict):
        return Attempt(FAIL, error=ParseError(f"RPC {method} returned a non-object body"))
    error = payload.get("error")
    if error is not None:
        if isinstance(error, dict):
            message = error.get("message") or "RPC error"
            code = error.get("code")
            data = error.get("data")
        else:
            message = str(error) or "RPC error"
            code = None
            data = None
        return Attempt(FAIL, error=ApplicationError(method, message, code=code, data=data))
    if "result" not in payload:
        return Attempt(FAIL, error=ParseError(f"RPC {method} response has neither result nor error"))
    return Attempt(OK, value=payload["result"])


def classify_response(method: str, response: httpx.Response, retry_statuses: Iterable[int]) -> Attempt:
    status = response.status_code
    if status in retry_statuses:
        return Attempt(RETRY, error=TransportRetryable(method, status))
    if not response.is_success:
        return Attempt(FAIL, error=TransportFailure(method, status=status))
    try:
        payload = response.json()
    except ValueError as exc:
        return Attempt(FAIL, error=ParseError(f"RPC {method} returned invalid JSON: {exc}"))
    return classify_payload(method, payload)


def classify_network_error(method: str, exc: httpx.TransportError, policy: RetryPolicy) -> Attempt:
    error = TransportFailure(method, cause=exc)
    error.__cause__ = exc
    return Attempt(RETRY if policy.retry_network_errors else FAIL, error=error)


# ---- Clients ----


class _BaseRpcClient:
    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        retry_statuses: Iterable[int] = DEFAULT_RETRY_STATUSES,
        timeout: float = DEFAULT_TIMEOUT,
        api_key_header: str = DEFAULT_API_KEY_HEADER,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not endpoint:
            raise ValueError("endpoint is required")
        self.endpoint = endpoint
        self.api_key = api_key
        self.policy = policy
        self.retry_statuses = frozenset(retry_statuses)
        self.timeout = timeout
        self.api_key_header = api_key_header
        self._rng = rng
        self._clock = clock
        self._ids = itertools.count(1)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key is not None:
            headers[self.api_key_header] = self.api_key
        return headers

    def _next_request(self, method: str, params: Optional[Sequence[JsonValue]]) -> Dict[str, Any]:
        return build_request(next(self._ids), method, params)

    def _remaining(
        self, method: str, started: float, deadline: Optional[float], last_error: Optional[RpcError] = None
    ) -> Optional[float]:
        if deadline is None:
            return None
        remaining = deadline - (self._clock() - started)
        if remaining <= 0:
            raise DeadlineExceeded(method, last_error)
        return remaining

    def _attempt_timeout(self, remaining: Optional[float]) -> float:
        if remaining is None:
            return self.timeout
        return min(self.timeout, remaining)

    def _plan_retry(
        self, method: str, attempt: int, outcome: Attempt, started: float, deadline: Optional[float]
    ) -> float:
        if outcome.kind == FAIL:
            raise outcome.error
        if attempt >= self.policy.max_attempts:
            raise RetriesExhausted(method, attempt, outcome.error)
        remaining = self._remaining(method, started, deadline, outcome.error)
        delay = self.policy.delay(attempt, self._rng)
        if remaining is not None and delay >= remaining:
            raise DeadlineExceeded(method, outcome.error)
        logger.warning(
            f"{method} attempt {attempt}/{self.policy.max_attempts} failed ({outcome.error}), "
            f"retrying in {delay:.2f}s"
        )
        return delay


class RetryingRpcClient(_BaseRpcClient):
    """Blocking JSON-RPC client; waits between attempts sleep the calling thread only."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        **kwargs: Any,
    ):
        super().__init__(endpoint, api_key=api_key, **kwargs)
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(timeout=self.timeout)
                self._owns_client = True
            return self._client

    def _attempt(self, method: str, body: Dict[str, Any], timeout: float) -> Attempt:
        client = self._get_client()
        try:
            resp = client.post(self.endpoint, json=body, headers=self._headers(), timeout=timeout)
        except httpx.TransportError as exc:
            return classify_network_error(method, exc, self.policy)
        return classify_response(method, resp, self.retry_statuses)

    def _wait(self, method: str, delay: float, cancel: Optional[threading.Event]) -> None:
        if cancel is None:
            self._sleep(delay)
        elif cancel.wait(delay):
            raise RpcCancelled(method)

    def call(
        self,
        method: str,
        params: Optional[Sequence[JsonValue]] = None,
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> JsonValue:
        body = self._next_request(method, params)
        started = self._clock()
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise RpcCancelled(method)
            remaining = self._remaining(method, started, deadline)
            attempt += 1
            outcome = self._attempt(method, body, self._attempt_timeout(remaining))
            if outcome.kind == OK:
                return outcome.value
            delay = self._plan_retry(method, attempt, outcome, started, deadline)
            self._wait(method, delay, cancel)

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()

    def __enter__(self) -> "RetryingRpcClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class AsyncRetryingRpcClient(_BaseRpcClient):
    """asyncio JSON-RPC client; waits between attempts yield to the event loop."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        **kwargs: Any,
    ):
        super().__init__(endpoint, api_key=api_key, **kwargs)
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def _attempt(self, method: str, body: Dict[str, Any], timeout: float) -> Attempt:
        client = await self.get_client()
        try:
            resp = await client.post(self.endpoint, json=body, headers=self._headers(), timeout=timeout)
        except httpx.TransportError as exc:
            return classify_network_error(method, exc, self.policy)
        return classify_response(method, resp, self.retry_statuses)

    async def call(
        self,
        method: str,
        params: Optional[Sequence[JsonValue]] = None,
        deadline: Optional[float] = None,
    ) -> JsonValue:
        body = self._next_request(method, params)
        started = self._clock()
        attempt = 0
        while True:
            remaining = self._remaining(method, started, deadline)
            attempt += 1
            outcome = await self._attempt(method, body, self._attempt_timeout(remaining))
            if outcome.kind == OK:
                return outcome.value
            delay = self._plan_retry(method, attempt, outcome, started, deadline)
            await self._sleep(delay)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AsyncRetryingRpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def rpc_call(
    endpoint: str,
    method: str,
    params: Optional[Sequence[JsonValue]] = None,
    api_key: Optional[str] = None,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    **kwargs: Any,
) -> JsonValue:
    with RetryingRpcClient(endpoint, api_key=api_key, policy=policy, **kwargs) as client:
        return client.call(method, params)
