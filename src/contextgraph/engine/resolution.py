# src/contextgraph/engine/resolution.py
"""Variable binding: static values and dynamic resolution.

Dynamic variables name an external system through a resolver URI
(``sql://<dataSourceId>``, ``chat://<sessionId>``, ``milvus://...``,
``neo4j://...``). The scheme selects a ResolverCapability from a
ResolverRegistry; by default every supported scheme is served by the
RemoteResolutionService, an httpx client for the external resolution
service.

Failure isolation:
- A failure resolving one variable becomes a ``variable_resolve_failed``
  message with a fixed error code; that variable is missing for the render
  and no other variable is affected.
- An unreachable resolution service (TransportError) downgrades the whole
  request once: dynamic variables render as ``[name]`` and the trace
  carries a ``resolver_offline`` warning. With OfflinePolicy.FAIL the
  render is rejected instead.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from contextgraph.contracts import (
    Message,
    OfflinePolicy,
    RenderCancelledError,
    ResolutionUnavailableError,
    ResolverError,
    ResolverErrorCode,
    ResolverURI,
    TransportError,
    Variable,
)
from contextgraph.core.logging import get_logger
from contextgraph.engine.cancellation import CancellationToken

if TYPE_CHECKING:
    from contextgraph.core.config import ResolutionSettings

logger = get_logger(__name__)

# Extra seconds a worker may overrun its own timeout before it is abandoned
_TIMEOUT_GRACE_SECONDS = 0.5

# Longest single wait while collecting, so cancellation and newly started calls are noticed
_POLL_SECONDS = 0.05

SUGGESTIONS: dict[ResolverErrorCode, str] = {
    ResolverErrorCode.RESOLVER_MISSING: "Set a resolver URI such as sql://<dataSourceId> on the dynamic variable.",
    ResolverErrorCode.READONLY_REQUIRED: "Only read-only queries (SELECT or WITH) may be used to resolve variables.",
    ResolverErrorCode.DECRYPT_FAILED: "The stored data source credentials could not be decrypted; check the server data key.",
    ResolverErrorCode.UNSUPPORTED_SCHEME: "Use one of the supported resolver schemes: sql, chat, milvus, neo4j.",
    ResolverErrorCode.FEATURE_NOT_ENABLED: "The resolution service was built without support for this backend.",
    ResolverErrorCode.INVALID_URL: "Check the data source connection URL.",
    ResolverErrorCode.CONNECT_FAILED: "The backend did not answer; check that it is running and reachable.",
    ResolverErrorCode.SQLITE_OPEN_FAILED: "The SQLite file could not be opened; check the path and permissions.",
}


@dataclass(frozen=True)
class ResolvedValue:
    """Result returned by a resolver capability."""

    value: str
    debug: dict[str, Any] | None = None


class ResolverCapability(Protocol):
    """An external capability able to resolve dynamic variables.

    Implementations raise ResolverError for failures local to one variable
    and TransportError when the capability itself is unreachable.
    """

    def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue: ...


class ResolverRegistry:
    """Maps resolver URI schemes to capabilities.

    New schemes are added by registering a capability; nothing dispatches
    on scheme strings outside this registry.
    """

    def __init__(self) -> None:
        self._by_scheme: dict[str, ResolverCapability] = {}

    def register(self, scheme: str, capability: ResolverCapability) -> None:
        self._by_scheme[scheme.strip().lower()] = capability

    def unregister(self, scheme: str) -> None:
        self._by_scheme.pop(scheme.strip().lower(), None)

    @property
    def schemes(self) -> list[str]:
        return sorted(self._by_scheme)

    def get(self, scheme: str) -> ResolverCapability:
        """Look up the capability for ``scheme``.

        Raises:
            ResolverError: UNSUPPORTED_SCHEME if nothing is registered
        """
        capability = self._by_scheme.get(scheme)
        if capability is None:
            raise ResolverError(ResolverErrorCode.UNSUPPORTED_SCHEME, f"unsupported resolver scheme: {scheme!r}")
        return capability

    def close(self) -> None:
        """Close each registered capability that holds resources, once."""
        seen: set[int] = set()
        for capability in self._by_scheme.values():
            if id(capability) in seen:
                continue
            seen.add(id(capability))
            close = getattr(capability, "close", None)
            if callable(close):
                close()


def classify_error(text: str) -> ResolverErrorCode:
    """Map a free-form failure description onto a fixed error code."""
    e = text.strip()
    try:
        return ResolverErrorCode(e)
    except ValueError:
        pass
    lowered = e.lower()
    if "decrypt failed" in lowered or "missing data_key" in lowered:
        return ResolverErrorCode.DECRYPT_FAILED
    if "unsupported resolver scheme" in lowered:
        return ResolverErrorCode.UNSUPPORTED_SCHEME
    if "relative url without a base" in lowered or "error with configuration" in lowered or "invalid url" in lowered:
        return ResolverErrorCode.INVALID_URL
    if "unable to open database file" in lowered:
        return ResolverErrorCode.SQLITE_OPEN_FAILED
    if "connection refused" in lowered:
        return ResolverErrorCode.CONNECT_FAILED
    return ResolverErrorCode.UNKNOWN


def clamp_utf8(value: str, max_bytes: int) -> tuple[str, bool]:
    """Clamp ``value`` to at most ``max_bytes`` UTF-8 bytes on a character boundary.

    Returns:
        (clamped value, whether anything was cut)
    """
    encoded = value.encode("utf-8")
    if len(encoded) <= max_bytes:
        return value, False
    return encoded[:max_bytes].decode("utf-8", errors="ignore"), True


class RemoteResolutionService:
    """ResolverCapability backed by the external resolution service.

    Wire format: ``POST {base_url}/resolve`` with JSON
    ``{scheme, target, resolver, query, variableId, variableName}``.
    Success is ``200 {"value": str, "debug"?: {...}}``; failure is any
    non-2xx status with ``{"error": <code>, "message"?: str}``.

    Connection-level failures raise TransportError. A read timeout is a
    per-variable CONNECT_FAILED: the service is up but the backend is slow.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        # httpx.Client is thread-safe; the internal pool handles concurrency.
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
        token.raise_if_cancelled()
        payload = {
            "scheme": uri.scheme,
            "target": uri.target,
            "resolver": uri.raw,
            "query": variable.value,
            "variableId": variable.id,
            "variableName": variable.name,
        }
        try:
            response = self._client.post(f"{self._base_url}/resolve", json=payload, timeout=self._timeout)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise TransportError(f"resolution service unreachable: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise ResolverError(
                ResolverErrorCode.CONNECT_FAILED,
                f"resolution timed out after {self._timeout}s",
                details={"timedOut": True},
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"resolution service transport failure: {exc}") from exc
        token.raise_if_cancelled()
        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> ResolvedValue:
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_success:
            if not isinstance(body, dict) or not isinstance(body.get("value"), str):
                raise ResolverError(ResolverErrorCode.UNKNOWN, "resolution service returned no string value")
            debug = body.get("debug")
            return ResolvedValue(value=body["value"], debug=debug if isinstance(debug, dict) else None)

        if isinstance(body, dict):
            code_text = str(body.get("error") or "")
            message = str(body.get("message") or code_text or f"HTTP {response.status_code}")
        else:
            code_text = ""
            message = f"HTTP {response.status_code}"
        code = classify_error(code_text) if code_text else classify_error(message)
        raise ResolverError(code, message, details={"httpStatus": response.status_code})

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class UnavailableResolutionService:
    """Capability registered when no resolution service is configured.

    Every call behaves like an unreachable service, so requests with
    dynamic variables take the offline path.
    """

    def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
        raise TransportError("no resolution service configured")


@dataclass(frozen=True)
class Resolution:
    """Outcome of binding one variable."""

    variable: Variable
    value: str | None
    message: Message
    error_code: ResolverErrorCode | None = None
    transport_failure: bool = False

    @property
    def ok(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class BindingResult:
    """All values bound for one render.

    Attributes:
        values: Variable name -> resolved string, for every bound variable
        resolutions: Per-variable outcomes in variable order
        messages: Trace-level messages (per-variable messages, then any
            offline notice)
        offline: True if the request was downgraded to local-only rendering
    """

    values: dict[str, str]
    resolutions: tuple[Resolution, ...] = ()
    messages: tuple[Message, ...] = ()
    offline: bool = False
    failed: tuple[str, ...] = field(default_factory=tuple)


@dataclass
class _Attempt:
    """One dynamic variable in flight.

    ``started_at`` is set by the worker thread when the call begins; the
    timeout is measured from there, never from submission.
    """

    index: int
    variable: Variable
    future: Future[Resolution] | None = None
    started_at: float | None = None


def offline_placeholder(name: str) -> str:
    return f"[{name}]"


class VariableBindingResolver:
    """Resolves the variable set of one render request.

    Static variables are authoritative immediately. Dynamic variables are
    resolved concurrently on the caller's executor (or a private one), each
    with its own timeout.

    Example:
        resolver = VariableBindingResolver.from_settings(settings.resolution)
        binding = resolver.resolve_all(variables, token=CancellationToken())
        binding.values["name"]
    """

    def __init__(
        self,
        registry: ResolverRegistry,
        *,
        timeout_seconds: float = 10.0,
        max_workers: int = 4,
        max_value_bytes: int = 20_000,
        offline_policy: OfflinePolicy = OfflinePolicy.DEGRADE,
    ) -> None:
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self.max_value_bytes = max_value_bytes
        self.offline_policy = offline_policy

    @classmethod
    def from_settings(
        cls,
        settings: ResolutionSettings,
        *,
        client: httpx.Client | None = None,
    ) -> VariableBindingResolver:
        """Build a resolver whose registry serves settings.schemes.

        Without a configured service_url every scheme maps to
        UnavailableResolutionService.
        """
        registry = ResolverRegistry()
        capability: ResolverCapability
        if settings.service_url is not None:
            capability = RemoteResolutionService(
                settings.service_url,
                timeout_seconds=settings.timeout_seconds,
                client=client,
            )
        else:
            capability = UnavailableResolutionService()
        for scheme in settings.schemes:
            registry.register(scheme, capability)
        return cls(
            registry,
            timeout_seconds=settings.timeout_seconds,
            max_workers=settings.max_workers,
            max_value_bytes=settings.max_value_bytes,
            offline_policy=settings.offline_policy,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_all(
        self,
        variables: Sequence[Variable],
        *,
        token: CancellationToken | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> BindingResult:
        """Bind every variable, resolving dynamic ones concurrently.

        Raises:
            ResolutionUnavailableError: Service unreachable under OfflinePolicy.FAIL
            RenderCancelledError: The token was cancelled
        """
        token = token or CancellationToken()
        token.raise_if_cancelled()

        slots: list[Resolution | None] = [None] * len(variables)
        attempts: list[_Attempt] = []

        own_executor = None
        if executor is None and any(v.is_dynamic for v in variables):
            own_executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="resolve")
            executor = own_executor
        try:
            for i, variable in enumerate(variables):
                if variable.is_dynamic:
                    assert executor is not None
                    attempts.append(self._submit(executor, _Attempt(index=i, variable=variable), token))
                else:
                    slots[i] = self._resolve_static(variable)

            for index, resolution in self._collect(attempts, token).items():
                slots[index] = resolution
        finally:
            if own_executor is not None:
                own_executor.shutdown(wait=False, cancel_futures=True)

        resolutions = tuple(r for r in slots if r is not None)
        if any(r.transport_failure for r in resolutions):
            return self._offline_binding(resolutions)

        values = {r.variable.name: r.value for r in resolutions if r.value is not None}
        return BindingResult(
            values=values,
            resolutions=resolutions,
            messages=tuple(r.message for r in resolutions),
            failed=tuple(r.variable.name for r in resolutions if not r.ok),
        )

    def close(self) -> None:
        self.registry.close()

    def bind_local(self, variables: Sequence[Variable]) -> BindingResult:
        """Bind without contacting any resolver.

        Static variables substitute; dynamic variables become ``[name]``.
        """
        values: dict[str, str] = {}
        for variable in variables:
            if variable.is_dynamic:
                values[variable.name] = offline_placeholder(variable.name)
            else:
                values[variable.name], _ = clamp_utf8(variable.value, self.max_value_bytes)
        return BindingResult(values=values, offline=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit(self, executor: ThreadPoolExecutor, attempt: _Attempt, token: CancellationToken) -> _Attempt:
        attempt.started_at = None
        attempt.future = executor.submit(self._run_attempt, attempt, token)
        return attempt

    def _run_attempt(self, attempt: _Attempt, token: CancellationToken) -> Resolution:
        attempt.started_at = time.monotonic()
        return self._resolve_dynamic(attempt.variable, token)

    def _collect(self, attempts: list[_Attempt], token: CancellationToken) -> dict[int, Resolution]:
        """Wait for every attempt, each against its own deadline.

        A call still running ``timeout_seconds`` (plus a short grace) after it
        started is abandoned and reported as a timed-out CONNECT_FAILED. An
        abandoned call keeps its worker until it returns, so attempts still
        queued once every running call has been abandoned are moved to an
        overflow pool rather than left waiting behind them.

        Raises:
            RenderCancelledError: The token was cancelled while waiting
        """
        budget = self.timeout_seconds + _TIMEOUT_GRACE_SECONDS
        results: dict[int, Resolution] = {}
        waiting = list(attempts)
        abandoned = 0
        overflow_pools: list[ThreadPoolExecutor] = []
        try:
            while waiting:
                token.raise_if_cancelled()
                now = time.monotonic()
                for attempt in list(waiting):
                    assert attempt.future is not None
                    if attempt.future.done():
                        results[attempt.index] = attempt.future.result()
                        waiting.remove(attempt)
                    elif attempt.started_at is not None and now >= attempt.started_at + budget:
                        results[attempt.index] = self._timed_out(attempt, now)
                        waiting.remove(attempt)
                        abandoned += 1
                if not waiting:
                    break

                running = [a for a in waiting if a.started_at is not None]
                if abandoned and not running:
                    # cancel() only succeeds for calls that never started
                    stalled = [a for a in waiting if a.future is not None and a.future.cancel()]
                    if stalled:
                        logger.warning(
                            "resolve.pool_saturated",
                            abandoned=abandoned,
                            requeued=[a.variable.name for a in stalled],
                        )
                        pool = ThreadPoolExecutor(max_workers=len(stalled), thread_name_prefix="resolve-overflow")
                        overflow_pools.append(pool)
                        for attempt in stalled:
                            self._submit(pool, attempt, token)

                timeout = _POLL_SECONDS
                if running:
                    timeout = min(timeout, min(a.started_at + budget for a in running if a.started_at is not None) - now)
                wait([a.future for a in waiting if a.future is not None], timeout=max(timeout, 0.0), return_when=FIRST_COMPLETED)
        finally:
            for pool in overflow_pools:
                pool.shutdown(wait=False, cancel_futures=True)
        return results

    def _timed_out(self, attempt: _Attempt, now: float) -> Resolution:
        assert attempt.started_at is not None
        variable = attempt.variable
        logger.warning("resolve.timeout", variable=variable.name, timeout_seconds=self.timeout_seconds)
        uri = ResolverURI.parse(variable.resolver or "")
        return self._failure(
            variable,
            ResolverError(
                ResolverErrorCode.CONNECT_FAILED,
                f"resolution timed out after {self.timeout_seconds}s",
                details={"timedOut": True},
            ),
            scheme=uri.scheme,
            duration_ms=int((now - attempt.started_at) * 1000),
            resolver=uri.raw,
        )


    def _resolve_static(self, variable: Variable) -> Resolution:
        value, truncated = clamp_utf8(variable.value, self.max_value_bytes)
        return Resolution(
            variable=variable,
            value=value,
            message=Message.info(
                "variable_static",
                f"variable {variable.name} uses its static value",
                variableId=variable.id,
                variableName=variable.name,
                type=variable.type.value,
                durationMs=0,
                outputBytesLimit=self.max_value_bytes,
                truncated=truncated,
            ),
        )

    def _resolve_dynamic(self, variable: Variable, token: CancellationToken) -> Resolution:
        started = time.monotonic()
        raw = (variable.resolver or "").strip()
        if not raw:
            return self._failure(
                variable,
                ResolverError(ResolverErrorCode.RESOLVER_MISSING, "resolver is empty"),
                scheme="",
                duration_ms=0,
            )

        uri = ResolverURI.parse(raw)
        try:
            token.raise_if_cancelled()
            capability = self.registry.get(uri.scheme)
            resolved = capability.resolve(uri, variable, token)
        except RenderCancelledError:
            raise
        except TransportError as exc:
            return Resolution(
                variable=variable,
                value=None,
                message=Message.warn("resolver_unreachable", str(exc), variableName=variable.name),
                transport_failure=True,
            )
        except ResolverError as exc:
            return self._failure(variable, exc, scheme=uri.scheme, duration_ms=_elapsed_ms(started), resolver=uri.raw)
        except Exception as exc:
            # Capability bugs are isolated to this variable, never the render
            logger.warning("resolve.capability_error", variable=variable.name, scheme=uri.scheme, exc_info=True)
            error = ResolverError(classify_error(str(exc)), f"{type(exc).__name__}: {exc}")
            return self._failure(variable, error, scheme=uri.scheme, duration_ms=_elapsed_ms(started), resolver=uri.raw)

        value, truncated = clamp_utf8(resolved.value, self.max_value_bytes)
        return Resolution(
            variable=variable,
            value=value,
            message=Message.info(
                "variable_resolved",
                f"variable {variable.name} resolved",
                variableId=variable.id,
                variableName=variable.name,
                type=variable.type.value,
                scheme=uri.scheme,
                resolver=uri.raw,
                durationMs=_elapsed_ms(started),
                valueBytes=len(value.encode("utf-8")),
                outputBytesLimit=self.max_value_bytes,
                truncated=truncated,
                debug=resolved.debug,
            ),
        )

    def _failure(
        self,
        variable: Variable,
        error: ResolverError,
        *,
        scheme: str,
        duration_ms: int,
        resolver: str = "",
    ) -> Resolution:
        details: dict[str, Any] = {
            "variableId": variable.id,
            "variableName": variable.name,
            "type": variable.type.value,
            "scheme": scheme,
            "resolver": resolver,
            "durationMs": duration_ms,
            "errorCode": error.code.value,
            "errorMessage": str(error),
        }
        if error.code in SUGGESTIONS:
            details["suggestion"] = SUGGESTIONS[error.code]
        if error.details:
            details.update(error.details)
        logger.info("resolve.failed", variable=variable.name, scheme=scheme, error_code=error.code.value)
        return Resolution(
            variable=variable,
            value=None,
            message=Message.warn(
                "variable_resolve_failed",
                f"variable {variable.name} could not be resolved: {error}",
                **details,
            ),
            error_code=error.code,
        )

    def _offline_binding(self, resolutions: tuple[Resolution, ...]) -> BindingResult:
        """Downgrade a request whose resolution service is unreachable."""
        reasons = sorted({r.message.message for r in resolutions if r.transport_failure})
        if self.offline_policy == OfflinePolicy.FAIL:
            raise ResolutionUnavailableError("; ".join(reasons))

        dynamic_names = [r.variable.name for r in resolutions if r.variable.is_dynamic]
        logger.warning("resolve.offline", variables=dynamic_names, reasons=reasons)

        values: dict[str, str] = {}
        messages: list[Message] = []
        for r in resolutions:
            if r.variable.is_dynamic:
                values[r.variable.name] = offline_placeholder(r.variable.name)
            else:
                assert r.value is not None
                values[r.variable.name] = r.value
                messages.append(r.message)
        messages.append(
            Message.warn(
                "resolver_offline",
                "resolution service unreachable; dynamic variables rendered as placeholders",
                variables=dynamic_names,
                reasons=reasons,
            )
        )
        return BindingResult(values=values, resolutions=resolutions, messages=tuple(messages), offline=True)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
