from __future__ import annotations

from dataclasses import dataclass

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.utils import (
    as_method_call,
    as_path_call,
    is_async_function,
    normalize_path,
    path_ends_with,
    receiver_chain,
)
from perfsentinel.rules.visitor import RuleVisitor

# ---------------------------------------------------------------------------
# async-block-in-async
# ---------------------------------------------------------------------------

# (path suffix, async alternative). Matched on `::` boundaries; the longest
# matching suffix wins.
BLOCKING_CALLS: tuple[tuple[str, str], ...] = (
    ("fs::read_to_string", "tokio::fs::read_to_string"),
    ("fs::read_dir", "tokio::fs::read_dir"),
    ("fs::read_link", "tokio::fs::read_link"),
    ("fs::read", "tokio::fs::read"),
    ("fs::write", "tokio::fs::write"),
    ("fs::metadata", "tokio::fs::metadata"),
    ("fs::remove_file", "tokio::fs::remove_file"),
    ("fs::remove_dir", "tokio::fs::remove_dir"),
    ("fs::remove_dir_all", "tokio::fs::remove_dir_all"),
    ("fs::create_dir", "tokio::fs::create_dir"),
    ("fs::create_dir_all", "tokio::fs::create_dir_all"),
    ("fs::copy", "tokio::fs::copy"),
    ("fs::rename", "tokio::fs::rename"),
    ("File::open", "tokio::fs::File::open"),
    ("File::create", "tokio::fs::File::create"),
    ("thread::sleep", "tokio::time::sleep"),
    ("TcpStream::connect", "tokio::net::TcpStream::connect"),
    ("TcpListener::bind", "tokio::net::TcpListener::bind"),
    ("UdpSocket::bind", "tokio::net::UdpSocket::bind"),
)

# Blocking methods on `std::process::Command` builders.
_COMMAND_METHODS: dict[str, str] = {
    "output": "tokio::process::Command::output",
    "status": "tokio::process::Command::status",
    "spawn": "tokio::process::Command::spawn",
}

_ASYNC_RUNTIME_PREFIXES = ("tokio", "async_std", "smol", "futures")


def _is_async_runtime_path(path: str) -> bool:
    head = path.split("::", 1)[0]
    return head in _ASYNC_RUNTIME_PREFIXES


def match_blocking_call(path: str) -> tuple[str, str] | None:
    """Return `(matched suffix, alternative)` for a blocking std path, if any."""

    if _is_async_runtime_path(path):
        return None
    best: tuple[str, str] | None = None
    for suffix, alternative in BLOCKING_CALLS:
        if path_ends_with(path, suffix) and (best is None or len(suffix) > len(best[0])):
            best = (suffix, alternative)
    return best


class AsyncBlockInAsyncRule(BaseRule):
    meta = RuleMeta(
        rule_id="async-block-in-async",
        name="Blocking Call in Async Function",
        description="Detects blocking std calls inside async functions that should use async alternatives",
        default_severity=Severity.ERROR,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _AsyncBlockingVisitor(ctx, self).run()


@dataclass
class _AsyncBlockingVisitor(RuleVisitor):
    in_async: bool = False

    def _walk_children_with(self, node: Node, in_async: bool) -> bool:
        was_async = self.in_async
        self.in_async = in_async
        try:
            for child in node.named_children:
                self.walk(child)
        finally:
            self.in_async = was_async
        return False

    def visit_function_item(self, node: Node) -> bool:
        return self._walk_children_with(node, is_async_function(node))

    def visit_async_block(self, node: Node) -> bool:
        return self._walk_children_with(node, True)

    def visit_call_expression(self, node: Node) -> None:
        if not self.in_async:
            return
        path_call = as_path_call(self.ctx, node)
        if path_call is not None:
            matched = match_blocking_call(path_call.path)
            if matched is not None:
                self._report(path_call.function, matched[0].rsplit("::", 1)[-1], matched[1])
            return

        method = as_method_call(self.ctx, node)
        if method is None:
            return
        if method.name in _COMMAND_METHODS and self._is_std_command(method.receiver):
            self._report(method.name_node, method.name, _COMMAND_METHODS[method.name])
        elif method.name == "read_line" and self._is_std_stdin(method.receiver) and not self._is_awaited(node):
            self._report(method.name_node, method.name, "tokio::io::AsyncBufReadExt::read_line")

    def _is_std_command(self, receiver: Node) -> bool:
        for link in receiver_chain(receiver):
            call = as_path_call(self.ctx, link)
            if call is not None and path_ends_with(call.path, "Command::new"):
                return not _is_async_runtime_path(call.path)
        return False

    def _is_std_stdin(self, receiver: Node) -> bool:
        for link in receiver_chain(receiver):
            call = as_path_call(self.ctx, link)
            if call is not None and path_ends_with(call.path, "stdin"):
                return not _is_async_runtime_path(call.path)
        return False

    @staticmethod
    def _is_awaited(node: Node) -> bool:
        parent = node.parent
        return parent is not None and parent.type == "await_expression"

    def _report(self, node: Node, name: str, alternative: str) -> None:
        self.report(
            node,
            f"Blocking call `{name}` inside async function. Use `{alternative}` instead.",
            suggestion=f"Replace with `{alternative}`",
        )


# ---------------------------------------------------------------------------
# unbounded-channel
# ---------------------------------------------------------------------------

UNBOUNDED_CHANNELS: tuple[tuple[str, str], ...] = (
    ("unbounded_channel", "tokio::sync::mpsc::channel(N)"),
    ("crossbeam_channel::unbounded", "crossbeam_channel::bounded(N)"),
    ("crossbeam::channel::unbounded", "crossbeam::channel::bounded(N)"),
    ("flume::unbounded", "flume::bounded(N)"),
    ("async_channel::unbounded", "async_channel::bounded(N)"),
)

# std's mpsc::channel is unbounded; tokio's is bounded and must not match.
_STD_MPSC_PATTERNS = ("std::sync::mpsc::channel", "sync::mpsc::channel", "mpsc::channel")


def match_unbounded_channel(path: str) -> tuple[str, str] | None:
    for pattern in _STD_MPSC_PATTERNS:
        if path_ends_with(path, pattern) and "tokio" not in path:
            return pattern, "std::sync::mpsc::sync_channel(N)"
    for pattern, alternative in UNBOUNDED_CHANNELS:
        if path_ends_with(path, pattern):
            return pattern, alternative
    return None


class UnboundedChannelRule(BaseRule):
    meta = RuleMeta(
        rule_id="unbounded-channel",
        name="Unbounded Channel",
        description="Detects unbounded channels that can cause memory exhaustion under load",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _UnboundedChannelVisitor(ctx, self).run()


class _UnboundedChannelVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        call = as_path_call(self.ctx, node)
        if call is None:
            return
        matched = match_unbounded_channel(call.path)
        if matched is None:
            return
        pattern, alternative = matched
        self.report(
            call.name_node,
            f"Unbounded channel `{pattern}` can cause memory exhaustion. Use `{alternative}` instead.",
            suggestion=f"Use a bounded channel with explicit capacity: `{alternative}`",
        )


# ---------------------------------------------------------------------------
# unbounded-spawn
# ---------------------------------------------------------------------------

SPAWN_FUNCTIONS = ("spawn", "spawn_local", "spawn_blocking")
_SPAWN_PREFIXES = ("tokio", "async_std", "smol")
_KNOWN_SPAWN_TYPES = (
    "JoinSet",
    "LocalSet",
    "TaskPool",
    "ComputeTaskPool",
    "AsyncComputeTaskPool",
    "IoTaskPool",
)
_LIKELY_SPAWN_FIELDS = (
    "join_set",
    "joinset",
    "task_pool",
    "taskpool",
    "local_set",
    "localset",
    "executor",
    "runtime",
)
_SPAWN_SUGGESTION = "Use a Semaphore, buffer_unordered(), or JoinSet with limits"


def is_runtime_spawn(path: str) -> str | None:
    for spawn_fn in SPAWN_FUNCTIONS:
        if not path_ends_with(path, spawn_fn):
            continue
        segments = path.split("::")
        if path == spawn_fn or any(prefix in segments for prefix in _SPAWN_PREFIXES):
            return spawn_fn
    return None


class UnboundedSpawnRule(BaseRule):
    meta = RuleMeta(
        rule_id="unbounded-spawn",
        name="Unbounded Task Spawning",
        description="Detects task spawning in loops without concurrency limits",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _UnboundedSpawnVisitor(ctx, self).run()


class _UnboundedSpawnVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        if not self.state.in_loop():
            return
        call = as_path_call(self.ctx, node)
        if call is not None:
            spawn_fn = is_runtime_spawn(call.path)
            if spawn_fn is not None:
                self.report(
                    call.name_node,
                    f"Task `{spawn_fn}` in loop without concurrency limit can exhaust resources",
                    suggestion=_SPAWN_SUGGESTION,
                )
            return

        method = as_method_call(self.ctx, node)
        if method is None or method.name not in {"spawn", "spawn_local"}:
            return
        if self._is_spawn_receiver(method.receiver):
            self.report(
                method.name_node,
                f"Task `.{method.name}()` in loop without concurrency limit can exhaust resources",
                suggestion=_SPAWN_SUGGESTION,
            )

    def _is_spawn_receiver(self, receiver: Node) -> bool:
        while receiver.type == "reference_expression":
            value = receiver.child_by_field_name("value")
            if value is None:
                return False
            receiver = value
        kind = receiver.type
        if kind in {"identifier", "scoped_identifier", "self"}:
            text = normalize_path(self.ctx.node_text(receiver))
            return any(t in text for t in _KNOWN_SPAWN_TYPES) or _looks_like_spawn_field(text)
        if kind == "field_expression":
            field_node = receiver.child_by_field_name("field")
            return field_node is not None and _looks_like_spawn_field(self.ctx.node_text(field_node))
        return False


def _looks_like_spawn_field(name: str) -> bool:
    lower = name.lower()
    return any(candidate in lower for candidate in _LIKELY_SPAWN_FIELDS)
