# tests/engine/test_resolution.py
"""Tests for variable binding and the remote resolution service client."""

import json
import threading
from collections.abc import Callable

import httpx
import pytest

from contextgraph.contracts import (
    OfflinePolicy,
    RenderCancelledError,
    ResolutionUnavailableError,
    ResolverError,
    ResolverErrorCode,
    ResolverURI,
    TransportError,
    Variable,
    VariableType,
)
from contextgraph.engine.cancellation import CancellationToken
from contextgraph.engine.resolution import (
    RemoteResolutionService,
    ResolvedValue,
    ResolverRegistry,
    VariableBindingResolver,
)

SERVICE_URL = "http://resolver.test"


def _static(name: str, value: str) -> Variable:
    return Variable(id=f"id-{name}", name=name, type=VariableType.STATIC, value=value)


def _dynamic(name: str, resolver: str | None = "sql://shop", query: str = "select 1") -> Variable:
    return Variable(id=f"id-{name}", name=name, type=VariableType.DYNAMIC, value=query, resolver=resolver)


def _remote(handler: Callable[[httpx.Request], httpx.Response]) -> RemoteResolutionService:
    return RemoteResolutionService(SERVICE_URL, timeout_seconds=2.0, client=httpx.Client(transport=httpx.MockTransport(handler)))


def _resolver(capability: object, **kwargs: object) -> VariableBindingResolver:
    registry = ResolverRegistry()
    for scheme in ("sql", "chat"):
        registry.register(scheme, capability)  # type: ignore[arg-type]
    return VariableBindingResolver(registry, **kwargs)  # type: ignore[arg-type]


class _Fixed:
    def __init__(self, value: str) -> None:
        self.value = value
        self.calls: list[str] = []

    def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
        self.calls.append(variable.name)
        return ResolvedValue(value=self.value)


class TestResolverRegistry:
    def test_close_reaches_each_capability_once(self) -> None:
        class _Closable(_Fixed):
            def __init__(self) -> None:
                super().__init__("x")
                self.closed = 0

            def close(self) -> None:
                self.closed += 1

        shared = _Closable()
        registry = ResolverRegistry()
        registry.register("sql", shared)
        registry.register("sqlite", shared)
        registry.register("chat", _Fixed("y"))

        VariableBindingResolver(registry).close()

        assert shared.closed == 1

    def test_client_passed_in_left_open(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"value": "v"})))
        service = RemoteResolutionService(SERVICE_URL, client=client)

        service.close()

        assert not client.is_closed
        client.close()


class TestClassifyError:
    @pytest.mark.parametrize(
        ("text", "code"),
        [
            ("readonly_required", ResolverErrorCode.READONLY_REQUIRED),
            ("decrypt failed: bad key", ResolverErrorCode.DECRYPT_FAILED),
            ("missing DATA_KEY", ResolverErrorCode.DECRYPT_FAILED),
            ("unsupported resolver scheme: ftp", ResolverErrorCode.UNSUPPORTED_SCHEME),
            ("relative URL without a base", ResolverErrorCode.INVALID_URL),
            ("unable to open database file", ResolverErrorCode.SQLITE_OPEN_FAILED),
            ("Connection refused (os error 111)", ResolverErrorCode.CONNECT_FAILED),
            ("something odd", ResolverErrorCode.UNKNOWN),
        ],
    )
    def test_codes(self, text: str, code: ResolverErrorCode) -> None:
        from contextgraph.engine.resolution import classify_error

        assert classify_error(text) == code


class TestClampUtf8:
    def test_short_value_untouched(self) -> None:
        from contextgraph.engine.resolution import clamp_utf8

        assert clamp_utf8("abc", 10) == ("abc", False)

    def test_cut_on_character_boundary(self) -> None:
        from contextgraph.engine.resolution import clamp_utf8

        # "é" is two bytes; a 3-byte limit cannot hold half of the second one
        assert clamp_utf8("éé", 3) == ("é", True)


class TestRemoteResolutionService:
    def test_wire_format(self) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"value": "42", "debug": {"rows": 1}})

        resolved = _remote(handler).resolve(ResolverURI.parse("sql://shop"), _dynamic("total"), CancellationToken())

        assert resolved == ResolvedValue(value="42", debug={"rows": 1})
        assert seen["url"] == f"{SERVICE_URL}/resolve"
        assert seen["body"] == {
            "scheme": "sql",
            "target": "shop",
            "resolver": "sql://shop",
            "query": "select 1",
            "variableId": "id-total",
            "variableName": "total",
        }

    def test_error_body_mapped_to_code(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "readonly_required", "message": "only SELECT"})

        with pytest.raises(ResolverError) as exc_info:
            _remote(handler).resolve(ResolverURI.parse("sql://shop"), _dynamic("total"), CancellationToken())

        assert exc_info.value.code == ResolverErrorCode.READONLY_REQUIRED
        assert str(exc_info.value) == "only SELECT"

    def test_missing_value_is_unknown_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"rows": []})

        with pytest.raises(ResolverError) as exc_info:
            _remote(handler).resolve(ResolverURI.parse("sql://shop"), _dynamic("total"), CancellationToken())

        assert exc_info.value.code == ResolverErrorCode.UNKNOWN

    def test_connect_error_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError):
            _remote(handler).resolve(ResolverURI.parse("sql://shop"), _dynamic("total"), CancellationToken())

    def test_read_timeout_is_connect_failed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow backend", request=request)

        with pytest.raises(ResolverError) as exc_info:
            _remote(handler).resolve(ResolverURI.parse("sql://shop"), _dynamic("total"), CancellationToken())

        assert exc_info.value.code == ResolverErrorCode.CONNECT_FAILED
        assert exc_info.value.details == {"timedOut": True}


class TestResolveAll:
    def test_static_values_bound_directly(self) -> None:
        binding = _resolver(_Fixed("x")).resolve_all([_static("name", "World")])

        assert binding.values == {"name": "World"}
        assert binding.messages[0].code == "variable_static"
        assert not binding.offline

    def test_dynamic_values_resolved(self) -> None:
        capability = _Fixed("42")
        binding = _resolver(capability).resolve_all([_dynamic("total"), _static("name", "World")])

        assert binding.values == {"total": "42", "name": "World"}
        assert [m.code for m in binding.messages] == ["variable_resolved", "variable_static"]
        assert capability.calls == ["total"]

    def test_empty_resolver_is_resolver_missing(self) -> None:
        binding = _resolver(_Fixed("x")).resolve_all([_dynamic("total", resolver="  ")])

        assert "total" not in binding.values
        assert binding.failed == ("total",)
        details = binding.messages[0].details or {}
        assert binding.messages[0].code == "variable_resolve_failed"
        assert details["errorCode"] == "resolver_missing"
        assert "suggestion" in details

    def test_unregistered_scheme_is_unsupported(self) -> None:
        binding = _resolver(_Fixed("x")).resolve_all([_dynamic("total", resolver="ftp://files")])

        details = binding.messages[0].details or {}
        assert details["errorCode"] == "unsupported_scheme"
        assert details["scheme"] == "ftp"

    def test_one_failure_does_not_affect_others(self) -> None:
        class _Selective:
            def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
                if variable.name == "bad":
                    raise ResolverError(ResolverErrorCode.READONLY_REQUIRED, "writes are not allowed")
                return ResolvedValue(value="ok")

        binding = _resolver(_Selective()).resolve_all([_dynamic("bad"), _dynamic("good")])

        assert binding.values == {"good": "ok"}
        assert binding.failed == ("bad",)

    def test_capability_bug_isolated(self) -> None:
        class _Broken:
            def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
                raise RuntimeError("boom")

        binding = _resolver(_Broken()).resolve_all([_dynamic("x"), _static("y", "1")])

        assert binding.values == {"y": "1"}
        assert (binding.messages[0].details or {})["errorCode"] == "unknown"

    def test_values_clamped(self) -> None:
        binding = _resolver(_Fixed("a" * 50), max_value_bytes=10).resolve_all([_dynamic("big")])

        assert binding.values == {"big": "a" * 10}
        assert (binding.messages[0].details or {})["truncated"] is True

    def test_stuck_resolver_times_out(self) -> None:
        release = threading.Event()

        class _Stuck:
            def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
                release.wait(5)
                return ResolvedValue(value="late")

        try:
            binding = _resolver(_Stuck(), timeout_seconds=0.05).resolve_all([_dynamic("slow"), _static("fast", "1")])
        finally:
            release.set()

        assert binding.values == {"fast": "1"}
        details = binding.messages[0].details or {}
        assert details["errorCode"] == "connect_failed"
        assert details["timedOut"] is True

    def test_stuck_resolvers_do_not_starve_queued_variables(self) -> None:
        import time

        release = threading.Event()

        class _StuckUnlessHealthy:
            def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
                if variable.name != "healthy":
                    release.wait(5)
                return ResolvedValue(value=variable.name)

        resolver = _resolver(_StuckUnlessHealthy(), timeout_seconds=0.2, max_workers=2)
        started = time.monotonic()
        try:
            binding = resolver.resolve_all([_dynamic("stuck1"), _dynamic("stuck2"), _dynamic("healthy")])
        finally:
            release.set()
        elapsed = time.monotonic() - started

        assert binding.values == {"healthy": "healthy"}
        assert set(binding.failed) == {"stuck1", "stuck2"}
        for message in binding.messages[:2]:
            assert (message.details or {})["timedOut"] is True
        # Both stuck calls share one deadline window instead of waiting in turn
        assert elapsed < 1.3

    def test_cancelled_token_raises(self) -> None:
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RenderCancelledError):
            _resolver(_Fixed("x")).resolve_all([_dynamic("a")], token=token)


class TestOfflineDowngrade:
    class _Unreachable:
        def resolve(self, uri: ResolverURI, variable: Variable, token: CancellationToken) -> ResolvedValue:
            raise TransportError("connection refused")

    def test_degrade_renders_placeholders(self) -> None:
        binding = _resolver(self._Unreachable()).resolve_all([_dynamic("orders"), _static("name", "Ann")])

        assert binding.offline
        assert binding.values == {"orders": "[orders]", "name": "Ann"}
        assert binding.messages[-1].code == "resolver_offline"
        assert (binding.messages[-1].details or {})["variables"] == ["orders"]

    def test_fail_policy_rejects(self) -> None:
        resolver = _resolver(self._Unreachable(), offline_policy=OfflinePolicy.FAIL)

        with pytest.raises(ResolutionUnavailableError, match="connection refused"):
            resolver.resolve_all([_dynamic("orders")])

    def test_unconfigured_service_goes_offline(self) -> None:
        from contextgraph.core.config import ResolutionSettings

        resolver = VariableBindingResolver.from_settings(ResolutionSettings())
        binding = resolver.resolve_all([_dynamic("orders")])

        assert binding.offline
        assert binding.values == {"orders": "[orders]"}

    def test_bind_local_never_contacts_resolver(self) -> None:
        capability = _Fixed("x")
        binding = _resolver(capability).bind_local([_dynamic("orders"), _static("name", "Ann")])

        assert binding.values == {"orders": "[orders]", "name": "Ann"}
        assert capability.calls == []
