import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from aiohttp import ClientTimeout
from web3.providers.rpc import AsyncHTTPProvider
from web3.types import RPCEndpoint, RPCResponse

from chainalert.logger import logger

# Node error codes that indicate the node itself is in trouble
UNHEALTHY_ERROR_CODES = (-32000, -32603, -32002)


class AsyncMultiNodeProvider(AsyncHTTPProvider):
    """
    An async Web3 provider that fails over across multiple RPC nodes.

    Requests go to the first healthy node; a node that errors or times out is
    marked unhealthy and the request moves on to the next one. Unhealthy nodes
    become eligible again after ``health_check_interval`` seconds.
    """

    def __init__(
        self,
        endpoint_uri: Union[str, List[str]],
        max_retries: int = 3,
        timeout: float = 10,
        health_check_interval: int = 60,  # seconds
        request_kwargs: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the AsyncMultiNodeProvider.

        Args:
            endpoint_uri: Single RPC endpoint URL (str) or list of RPC endpoint URLs (List[str])
            max_retries: Maximum number of attempts per request
            timeout: Request timeout in seconds
            health_check_interval: Seconds before an unhealthy node is tried again
            request_kwargs: Additional keyword arguments to pass to the HTTP request
        """
        # Process endpoint(s)
        if isinstance(endpoint_uri, str):
            endpoints = [endpoint_uri]
        elif isinstance(endpoint_uri, list):
            endpoints = endpoint_uri
        else:
            raise TypeError("endpoint_uri must be a string or a list of strings")

        if not endpoints:
            raise ValueError("At least one RPC endpoint must be provided")

        request_kwargs = dict(request_kwargs or {})
        request_kwargs.setdefault("timeout", ClientTimeout(total=timeout))

        super().__init__(endpoint_uri=endpoints[0], request_kwargs=request_kwargs)

        self.endpoints = endpoints
        self.max_retries = max_retries
        self.timeout = timeout
        self.health_check_interval = health_check_interval

        self.providers: List[AsyncHTTPProvider] = [
            AsyncHTTPProvider(endpoint, request_kwargs=request_kwargs) for endpoint in endpoints
        ]
        self.node_health: Dict[str, bool] = {endpoint: True for endpoint in endpoints}
        self.unhealthy_since: Dict[str, float] = {endpoint: 0.0 for endpoint in endpoints}
        self._next_index = 0

    def _mark_unhealthy(self, endpoint: str) -> None:
        self.node_health[endpoint] = False
        self.unhealthy_since[endpoint] = time.monotonic()

    def _candidate_order(self) -> List[int]:
        """Healthy nodes first, round-robin; nodes due for a retry after them"""
        now = time.monotonic()
        count = len(self.providers)
        order = [(self._next_index + i) % count for i in range(count)]
        self._next_index = (self._next_index + 1) % count

        healthy = [i for i in order if self.node_health[self.endpoints[i]]]
        recovering = [
            i
            for i in order
            if not self.node_health[self.endpoints[i]]
            and now - self.unhealthy_since[self.endpoints[i]] >= self.health_check_interval
        ]
        return healthy + recovering

    async def make_request(self, method: RPCEndpoint, params: Sequence[Any]) -> RPCResponse:
        """
        Make an RPC request to an available node with retries and failover.

        Args:
            method: The JSON-RPC method to call
            params: The parameters for the method

        Returns:
            The RPC response

        Raises:
            Exception: If all retry attempts fail
        """
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < self.max_retries:
            candidates = self._candidate_order()
            if not candidates:
                # Every node is cooling down, try them all anyway
                candidates = list(range(len(self.providers)))

            for idx in candidates:
                if attempts >= self.max_retries:
                    break
                attempts += 1
                endpoint = self.endpoints[idx]
                try:
                    response = await asyncio.wait_for(
                        self.providers[idx].make_request(method, params),
                        timeout=self.timeout,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    last_error = e
                    logger.warning(f"Request {method} to {endpoint} failed: {e!r}. Retrying...")
                    self._mark_unhealthy(endpoint)
                    continue

                if "error" in response:
                    error = response["error"]
                    logger.warning(f"Node {endpoint} returned error: {error}")
                    if isinstance(error, dict) and error.get("code") in UNHEALTHY_ERROR_CODES:
                        self._mark_unhealthy(endpoint)
                        last_error = Exception(f"RPC error: {error}")
                        continue
                    # Request-level errors are returned to web3 as-is
                    return response

                if not self.node_health[endpoint]:
                    logger.info(f"Node {endpoint} recovered")
                    self.node_health[endpoint] = True
                return response

        if last_error:
            logger.error(f"All retry attempts failed for {method}: {last_error!r}")
            raise last_error
        raise Exception(f"Failed to execute {method} after all retry attempts")

    async def is_connected(self, show_traceback: bool = False) -> bool:
        """
        Check if at least one node answers.

        Args:
            show_traceback: If True, raise the last connection error instead of returning False

        Returns:
            bool: True if connected
        """
        last_error: Optional[Exception] = None
        for provider, endpoint in zip(self.providers, self.endpoints):
            try:
                if await asyncio.wait_for(provider.is_connected(), timeout=self.timeout):
                    return True
            except Exception as e:
                last_error = e
                self._mark_unhealthy(endpoint)
        if show_traceback and last_error:
            raise last_error
        return False

    async def disconnect(self) -> None:
        for provider in self.providers:
            try:
                await provider.disconnect()
            except Exception as e:
                logger.debug(f"Error closing provider session: {e}")
