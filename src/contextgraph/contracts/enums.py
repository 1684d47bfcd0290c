"""All status codes, modes, and kinds used across subsystem boundaries.

Every value that crosses the request/response boundary or is stored in the
run history is a closed StrEnum. String tags from callers are converted
exactly once, at the boundary, and never inspected again.
"""

from enum import StrEnum


class NodeKind(StrEnum):
    """Kind of a context node.

    Carried through to each rendered segment.
    """

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    MEMORY = "memory"
    RETRIEVAL = "retrieval"
    TEXT = "text"


class VariableType(StrEnum):
    """How a variable obtains its value.

    STATIC: ``value`` is the literal value.
    DYNAMIC: ``value`` is a query handed to the resolver named by the
        variable's resolver URI.
    """

    STATIC = "static"
    DYNAMIC = "dynamic"


class OutputStyle(StrEnum):
    """How each segment is framed in the final text.

    LABELED: ``--- <label> ---`` header line followed by the body.
    PLAIN: body only.
    """

    LABELED = "labeled"
    PLAIN = "plain"


class Severity(StrEnum):
    """Severity of a trace diagnostic. Diagnostics are never fatal."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class RunStatus(StrEnum):
    """Status of a replay run.

    Stored in the database (runs.status).
    """

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DriftStatus(StrEnum):
    """Outcome of comparing two run digests."""

    STABLE = "stable"
    DRIFT = "drift"


class DiffKind(StrEnum):
    """Classification of one line pair in a line diff."""

    SAME = "same"
    CHANGED = "changed"
    MISSING_LEFT = "missing-left"
    MISSING_RIGHT = "missing-right"


class ResolverErrorCode(StrEnum):
    """Fixed error codes for dynamic variable resolution failures.

    UNKNOWN is reserved for failures that match none of the known shapes.
    """

    RESOLVER_MISSING = "resolver_missing"
    CONNECT_FAILED = "connect_failed"
    INVALID_URL = "invalid_url"
    DECRYPT_FAILED = "decrypt_failed"
    SQLITE_OPEN_FAILED = "sqlite_open_failed"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    FEATURE_NOT_ENABLED = "feature_not_enabled"
    READONLY_REQUIRED = "readonly_required"
    UNKNOWN = "unknown"


class RenderState(StrEnum):
    """Lifecycle of a single render request.

    PENDING -> ORDERING -> RENDERING -> TRACED. A cycle found while ordering
    still proceeds to RENDERING with the original node order.
    """

    PENDING = "pending"
    ORDERING = "ordering"
    RENDERING = "rendering"
    TRACED = "traced"


class OfflinePolicy(StrEnum):
    """What to do when the resolution service cannot be reached.

    DEGRADE: render with static values only, dynamic variables become
        ``[name]`` and the trace carries a ``resolver_offline`` warning.
    FAIL: reject the render before any node is rendered.
    """

    DEGRADE = "degrade"
    FAIL = "fail"


class DuplicateNamePolicy(StrEnum):
    """What to do when two variables in one request share a name.

    REJECT: the request is invalid.
    FIRST_MATCH: the first variable in list order wins, with a warning.
    """

    REJECT = "reject"
    FIRST_MATCH = "first_match"
