"""
Cluster Router Module

Routes cache requests to the nodes that own a key and applies the
replication policy.

Request flow:
    RESOLVING    capture one registry view, resolve the key to N nodes
    DISPATCHING  call the storage backend of each node (resolved order)
    SUCCESS / PARTIAL_SUCCESS / ALL_FAILED

Replication policy:
    - put/delete are sent to every resolved node; the call succeeds if at
      least `write_quorum` nodes (default 1) accepted it. Failed nodes are
      reported on the result so callers can repair them out of band.
    - get returns the first value found in resolved order.
    - No retries. Callers that retry should reuse result.nodes with the
      *_from / put_to methods instead of resolving again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config.settings import settings
from .errors import AllReplicasFailedError, NotFoundError, QuorumNotMetError
from .registry import NodeRegistry, PhysicalNode, RegistryView

if TYPE_CHECKING:
    from ..storage.backend import Connector, StorageBackend

logger = logging.getLogger(__name__)


class RequestState(Enum):
    """Lifecycle of a single routed request."""
    RESOLVING = "resolving"
    DISPATCHING = "dispatching"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ALL_FAILED = "all_failed"


@dataclass
class RequestResult:
    """
    Outcome of a routed request.

    Attributes:
        operation: "put", "get" or "delete"
        key: The key the request was for
        nodes: Node ids the request was routed to, in resolved order
        state: Current RequestState
        succeeded: Nodes that completed the operation
        failed: node id -> exception for nodes that errored or timed out
        missing: Nodes that answered a read without the key
        value: Value returned by a read
        served_by: Node the read value came from
    """
    operation: str
    key: str
    nodes: List[str] = field(default_factory=list)
    state: RequestState = RequestState.RESOLVING
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, BaseException] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)
    value: Optional[bytes] = None
    served_by: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state in (RequestState.SUCCESS, RequestState.PARTIAL_SUCCESS)

    @property
    def partial(self) -> bool:
        return self.state == RequestState.PARTIAL_SUCCESS

    @property
    def failed_nodes(self) -> List[str]:
        return list(self.failed)


class DistributedCacheRouter:
    """
    Routes put/get/delete to the replicas that own a key.

    Usage:
        registry = NodeRegistry(virtual_nodes=160)
        for name in ("cache-a", "cache-b", "cache-c"):
            registry.add(PhysicalNode(name))

        router = DistributedCacheRouter(registry, InMemoryConnector())
        await router.put("user:42", b"alice", replication_factor=2)
        result = await router.get("user:42", replication_factor=2)
        result.value  # b"alice"

    Attributes:
        registry: Source of node membership and the ring
        replication_factor: Default number of replicas per key
        write_quorum: Successful writes needed for put/delete to succeed
        request_timeout: Budget in seconds for one whole request
        parallel: Dispatch to replicas concurrently instead of in order
    """

    def __init__(
            self,
            registry: NodeRegistry,
            connector: "Connector",
            replication_factor: Optional[int] = None,
            write_quorum: Optional[int] = None,
            request_timeout: Optional[float] = None,
            parallel: Optional[bool] = None,
    ):
        """
        Initialize the router.

        Args:
            registry: The node registry to route against
            connector: Callable returning the StorageBackend for a node
            replication_factor: Default replicas (settings.REPLICATION_FACTOR)
            write_quorum: Minimum successful writes (settings.WRITE_QUORUM)
            request_timeout: Seconds per request (settings.REQUEST_TIMEOUT)
            parallel: Concurrent dispatch (settings.PARALLEL_DISPATCH)

        Raises:
            ValueError: If a numeric setting is out of range
        """
        self.registry = registry
        self._connector = connector
        self.replication_factor = (
            replication_factor if replication_factor is not None else settings.REPLICATION_FACTOR
        )
        self.write_quorum = write_quorum if write_quorum is not None else settings.WRITE_QUORUM
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.REQUEST_TIMEOUT
        )
        self.parallel = parallel if parallel is not None else settings.PARALLEL_DISPATCH

        if self.replication_factor < 1:
            raise ValueError("replication_factor must be >= 1")
        if self.write_quorum < 1:
            raise ValueError("write_quorum must be >= 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

        # node id -> (node the backend was created for, backend)
        self._backends: Dict[str, tuple] = {}
        self._last_view: Optional[RegistryView] = None
        # backend -> calls currently running on it
        self._in_flight: Dict[Any, int] = {}
        # backend -> node id, for backends dropped from the cache but still busy
        self._retiring: Dict[Any, str] = {}

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _replicas(self, replication_factor: Optional[int]) -> int:
        n = replication_factor if replication_factor is not None else self.replication_factor
        if n < 1:
            raise ValueError(f"replication_factor must be >= 1, got {n}")
        return n

    def resolve(self, key: str, replication_factor: Optional[int] = None) -> List[str]:
        """
        Node ids a request for key would be routed to, in resolved order.

        Raises:
            EmptyRingError: If no nodes are registered
        """
        return self.registry.view().resolve_n(key, self._replicas(replication_factor))

    def _start(
            self,
            operation: str,
            key: str,
            replication_factor: Optional[int],
    ) -> tuple:
        """Capture one registry view and resolve the key against it."""
        result = RequestResult(operation=operation, key=key)
        view = self.registry.view()
        result.nodes = view.resolve_n(key, self._replicas(replication_factor))
        logger.debug(f"Routing {operation.upper()} {key} to {result.nodes}")
        return view, result

    @staticmethod
    def _explicit(operation: str, key: str, nodes: Sequence[str]) -> RequestResult:
        """Result for a request against a caller-supplied node list."""
        if not nodes:
            raise ValueError("node list must not be empty")
        if len(set(nodes)) != len(nodes):
            raise ValueError(f"node list contains duplicates: {list(nodes)}")
        return RequestResult(operation=operation, key=key, nodes=list(nodes))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def put(
            self,
            key: str,
            value: bytes,
            replication_factor: Optional[int] = None,
    ) -> RequestResult:
        """
        Write value to every replica of key.

        Returns:
            RequestResult; state is PARTIAL_SUCCESS if some replicas failed

        Raises:
            EmptyRingError: If no nodes are registered
            AllReplicasFailedError: If no replica accepted the write
            QuorumNotMetError: If fewer than write_quorum replicas accepted it
        """
        view, result = self._start("put", key, replication_factor)
        return await self._run_write(view, result, lambda backend: backend.write(key, value))

    async def get(self, key: str, replication_factor: Optional[int] = None) -> RequestResult:
        """
        Read key from its replicas, returning the first value found.

        Returns:
            RequestResult with value and served_by set

        Raises:
            EmptyRingError: If no nodes are registered
            NotFoundError: If no queried replica has the key
            AllReplicasFailedError: If every replica was unreachable
        """
        view, result = self._start("get", key, replication_factor)
        return await self._run_read(view, result)

    async def delete(self, key: str, replication_factor: Optional[int] = None) -> RequestResult:
        """
        Delete key on every replica. A replica without the key counts as done.

        Raises:
            EmptyRingError: If no nodes are registered
            AllReplicasFailedError: If no replica could be reached
            QuorumNotMetError: If fewer than write_quorum replicas answered
        """
        view, result = self._start("delete", key, replication_factor)
        return await self._run_write(view, result, lambda backend: backend.delete(key))

    async def put_to(self, nodes: Sequence[str], key: str, value: bytes) -> RequestResult:
        """put against an explicit node list (no resolution)."""
        result = self._explicit("put", key, nodes)
        return await self._run_write(
            self.registry.view(), result, lambda backend: backend.write(key, value)
        )

    async def get_from(self, nodes: Sequence[str], key: str) -> RequestResult:
        """get against an explicit node list (no resolution)."""
        result = self._explicit("get", key, nodes)
        return await self._run_read(self.registry.view(), result)

    async def delete_from(self, nodes: Sequence[str], key: str) -> RequestResult:
        """delete against an explicit node list (no resolution)."""
        result = self._explicit("delete", key, nodes)
        return await self._run_write(
            self.registry.view(), result, lambda backend: backend.delete(key)
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def _run_write(
            self,
            view: RegistryView,
            result: RequestResult,
            call: Callable[["StorageBackend"], Awaitable[Any]],
    ) -> RequestResult:
        outcomes = await self._dispatch(view, result, call)

        for node_id, outcome in outcomes.items():
            if isinstance(outcome, BaseException):
                result.failed[node_id] = outcome
            else:
                result.succeeded.append(node_id)

        op = result.operation.upper()
        if not result.succeeded:
            result.state = RequestState.ALL_FAILED
            logger.error(f"{op} {result.key} failed on all replicas {result.nodes}")
            raise AllReplicasFailedError(
                f"{result.operation} {result.key!r} failed on all {len(result.nodes)} replicas",
                result,
            )

        result.state = RequestState.PARTIAL_SUCCESS if result.failed else RequestState.SUCCESS
        if result.failed:
            logger.warning(f"{op} {result.key} partially failed on {result.failed_nodes}")

        quorum = min(self.write_quorum, len(result.nodes))
        if len(result.succeeded) < quorum:
            raise QuorumNotMetError(
                f"{result.operation} {result.key!r} reached {len(result.succeeded)} "
                f"of {quorum} required replicas",
                result,
            )
        return result

    async def _run_read(self, view: RegistryView, result: RequestResult) -> RequestResult:
        outcomes = await self._dispatch(
            view,
            result,
            lambda backend: backend.read(result.key),
            stop_when=lambda outcome: outcome[1],
        )

        for node_id, outcome in outcomes.items():
            if isinstance(outcome, BaseException):
                result.failed[node_id] = outcome
                continue
            value, found = outcome
            if not found:
                result.missing.append(node_id)
            elif result.served_by is None:
                result.value = value
                result.served_by = node_id
                result.succeeded.append(node_id)
            else:
                result.succeeded.append(node_id)

        if result.served_by is None and not result.missing:
            result.state = RequestState.ALL_FAILED
            logger.error(f"GET {result.key} failed on all replicas {result.nodes}")
            raise AllReplicasFailedError(
                f"get {result.key!r} failed on all {len(result.nodes)} replicas", result
            )

        result.state = RequestState.PARTIAL_SUCCESS if result.failed else RequestState.SUCCESS
        if result.failed:
            logger.warning(f"GET {result.key} partially failed on {result.failed_nodes}")

        if result.served_by is None:
            raise NotFoundError(f"key not found: {result.key!r}", result)
        return result

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
            self,
            view: RegistryView,
            result: RequestResult,
            call: Callable[["StorageBackend"], Awaitable[Any]],
            stop_when: Optional[Callable[[Any], bool]] = None,
    ) -> Dict[str, Any]:
        """
        Run call against the backend of every node in result.nodes.

        Returns:
            node id -> return value or raised exception, in resolved order.
            Sequential dispatch stops early once stop_when(outcome) is true.
        """
        result.state = RequestState.DISPATCHING
        await self._prune(view)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.request_timeout

        if self.parallel:
            outcomes = await self._dispatch_parallel(view, result, call, deadline)
        else:
            outcomes = await self._dispatch_sequential(view, result, call, deadline, stop_when)

        for node_id, outcome in outcomes.items():
            if isinstance(outcome, BaseException):
                logger.error(
                    f"{result.operation.upper()} {result.key} on node {node_id} failed: "
                    f"{type(outcome).__name__}: {outcome}"
                )
        return outcomes

    async def _dispatch_sequential(self, view, result, call, deadline, stop_when):
        loop = asyncio.get_running_loop()
        outcomes: Dict[str, Any] = {}
        expired = False

        for node_id in result.nodes:
            remaining = deadline - loop.time()
            if expired or remaining <= 0:
                expired = True
                outcomes[node_id] = asyncio.TimeoutError(
                    f"request deadline passed before contacting {node_id}"
                )
                continue
            try:
                # _attempt returns backend errors, so a TimeoutError here
                # can only be the request deadline
                outcome = await asyncio.wait_for(self._attempt(view, node_id, call), remaining)
            except asyncio.TimeoutError:
                expired = True
                outcome = asyncio.TimeoutError(f"node {node_id} did not answer in time")
            outcomes[node_id] = outcome

            if stop_when is not None and not isinstance(outcome, BaseException) and stop_when(outcome):
                break

        return outcomes

    async def _dispatch_parallel(self, view, result, call, deadline):
        loop = asyncio.get_running_loop()
        tasks = {
            node_id: asyncio.ensure_future(self._attempt(view, node_id, call))
            for node_id in result.nodes
        }
        try:
            await asyncio.wait(tasks.values(), timeout=max(0.0, deadline - loop.time()))
        finally:
            pending = [task for task in tasks.values() if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        outcomes: Dict[str, Any] = {}
        for node_id, task in tasks.items():
            if task.cancelled():
                outcomes[node_id] = asyncio.TimeoutError(f"node {node_id} did not answer in time")
            elif task.exception() is not None:
                outcomes[node_id] = task.exception()
            else:
                outcomes[node_id] = task.result()
        return outcomes

    async def _attempt(self, view: RegistryView, node_id: str, call) -> Any:
        """Run call on one node, returning the exception it raised, if any."""
        try:
            return await self._call_node(view, node_id, call)
        except Exception as exc:
            return exc

    async def _call_node(self, view: RegistryView, node_id: str, call) -> Any:
        backend = self._backend(view.get(node_id))
        self._in_flight[backend] = self._in_flight.get(backend, 0) + 1
        try:
            return await call(backend)
        finally:
            count = self._in_flight.pop(backend) - 1
            if count:
                self._in_flight[backend] = count
            elif backend in self._retiring:
                await self._close_backend(self._retiring.pop(backend), backend)

    # ------------------------------------------------------------------
    # Backend connections
    # ------------------------------------------------------------------

    def _backend(self, node: PhysicalNode) -> "StorageBackend":
        cached = self._backends.get(node.node_id)
        if cached is not None and cached[0] == node:
            return cached[1]
        if cached is not None:
            self._retiring[cached[1]] = node.node_id
        backend = self._connector(node)
        # Connectors may hand back the backend just retired
        self._retiring.pop(backend, None)
        self._backends[node.node_id] = (node, backend)
        return backend

    async def _prune(self, view: RegistryView) -> None:
        """
        Drop backends of nodes that are no longer registered.

        A backend still serving a request started from an older view is
        closed when its last call finishes instead.
        """
        if view is not self._last_view:
            self._last_view = view
            stale = [node_id for node_id in self._backends if node_id not in view.nodes]
            for node_id in stale:
                _, backend = self._backends.pop(node_id)
                self._retiring[backend] = node_id

        idle = [backend for backend in self._retiring if backend not in self._in_flight]
        for backend in idle:
            await self._close_backend(self._retiring.pop(backend), backend)

    async def _close_backend(self, node_id: str, backend: "StorageBackend") -> None:
        try:
            await backend.close()
        except Exception as exc:
            logger.error(f"Error closing backend for node {node_id}: {exc}")

    async def close(self) -> None:
        """Close every backend the router opened."""
        backends, self._backends = self._backends, {}
        retiring, self._retiring = self._retiring, {}
        for node_id, (_, backend) in backends.items():
            await self._close_backend(node_id, backend)
        for backend, node_id in retiring.items():
            await self._close_backend(node_id, backend)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __repr__(self) -> str:
        return (f"DistributedCacheRouter(nodes={len(self.registry)}, "
                f"replication_factor={self.replication_factor}, "
                f"write_quorum={self.write_quorum}, parallel={self.parallel})")
