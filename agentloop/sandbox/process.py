import asyncio
import json
import logging
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Iterable

from agentloop.exceptions import (
    CapabilityError,
    CapabilityNotFound,
    ExecutionError,
    PermissionDenied,
    ResourceLimitExceeded,
    SandboxExecutionError,
    ValidationError,
)
from agentloop.sandbox.base import (
    CapabilityHandle,
    ExecutionOutput,
    ResourceLimits,
    SandboxCapability,
    SandboxKind,
    SandboxSession,
)
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS

logger = logging.getLogger(__name__)

WORKER_SOURCE = Path(__file__).with_name("worker.py").read_text(encoding="utf-8")

# Protocol lines may carry large observations.
STREAM_LIMIT = 16 * 1024 * 1024


class ReprValue(str):
    """A return value that could not cross the bridge as JSON; shown by its repr."""
    def __repr__(self) -> str:
        return str(self)


def error_to_wire(error: ExecutionError) -> dict[str, Any]:
    detail: dict[str, Any] = {}
    if isinstance(error, CapabilityNotFound):
        detail = {"name": error.name, "available": error.available}
    elif isinstance(error, CapabilityError):
        detail = {"name": error.name, "reason": error.reason}
    elif isinstance(error, ResourceLimitExceeded):
        detail = {"limit": error.limit}
    return {"kind": error.kind, "message": error.msg, "detail": detail}


def error_from_wire(payload: dict[str, Any]) -> ExecutionError:
    """Rebuild an execution error reported by a worker or a remote service."""
    kind = payload.get("kind", "sandbox_error")
    message = payload.get("message", "")
    detail = payload.get("detail") or {}
    match kind:
        case "capability_not_found" if "name" in detail:
            return CapabilityNotFound(detail["name"], detail.get("available", []))
        case "capability_error" if "name" in detail:
            return CapabilityError(detail["name"], detail.get("reason", message))
        case "resource_limit_exceeded":
            return ResourceLimitExceeded(message, limit=detail.get("limit", "memory"))
        case "permission_denied":
            return PermissionDenied(message)
        case "validation_error" | "action_parse_error":
            return ValidationError(message)
        case _:
            return SandboxExecutionError(message)


def _limit_resources(limits: ResourceLimits):
    def apply():
        import resource
        if limits.max_memory_mb is not None:
            size = limits.max_memory_mb * 1024 * 1024
            resource.setrlimit(resource.RLIMIT_AS, (size, size))
        if limits.cpu_seconds is not None:
            resource.setrlimit(resource.RLIMIT_CPU, (limits.cpu_seconds, limits.cpu_seconds))
    return apply


class ProcessSandbox(SandboxSession):
    """Runs fragments in a dedicated child interpreter.

    The child is started on first use inside a private temporary directory and
    keeps its globals across fragments. Capabilities stay in the host: the child
    sends a ``call`` line and blocks until the host replies.
    """

    kind = SandboxKind.PROCESS
    capabilities = (
        SandboxCapability.ISOLATE
        | SandboxCapability.LIMIT_CPU
        | SandboxCapability.LIMIT_MEMORY
        | SandboxCapability.PERSIST_ACROSS_CALLS
    )

    def __init__(
            self,
            limits: ResourceLimits | None = None,
            authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS,
            python: str | None = None,
    ):
        super().__init__(limits)
        self.authorized_imports = list(authorized_imports)
        self.python = python or sys.executable
        self._process: asyncio.subprocess.Process | None = None
        self._workdir: str | None = None
        self._variables_dirty = False

    def _command(self) -> list[str]:
        return [self.python, "-I", "-u", "-c", WORKER_SOURCE, json.dumps(self.authorized_imports)]

    async def _spawn(self) -> asyncio.subprocess.Process:
        if self._workdir is None:
            self._workdir = tempfile.mkdtemp(prefix="agentloop-")
        preexec = _limit_resources(self.limits) if sys.platform != "win32" else None
        logger.debug("Starting sandbox worker in %s", self._workdir)
        return await asyncio.create_subprocess_exec(
            *self._command(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._workdir,
            preexec_fn=preexec,
            limit=STREAM_LIMIT,
        )

    async def _ensure_process(self) -> asyncio.subprocess.Process:
        if self._process is None or self._process.returncode is not None:
            self._process = await self._spawn()
            self._variables_dirty = bool(self._variables)
        return self._process

    async def _send(self, process: asyncio.subprocess.Process, message: dict[str, Any]):
        process.stdin.write((json.dumps(message) + "\n").encode("utf-8"))
        await process.stdin.drain()

    async def set_variables(self, variables):
        await super().set_variables(variables)
        self._variables_dirty = True

    @staticmethod
    def _plain(variables: dict[str, Any]) -> dict[str, Any]:
        plain = {}
        for name, value in variables.items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                logger.warning("Variable '%s' is not JSON serializable and is not sent to the sandbox", name)
                continue
            plain[name] = value
        return plain

    async def _execute(
            self,
            fragment: str,
            capabilities: dict[str, CapabilityHandle],
            limits: ResourceLimits,
    ) -> ExecutionOutput:
        process = await self._ensure_process()
        await self._send(process, {
            "op": "execute",
            "code": fragment,
            "capabilities": sorted(capabilities),
            "variables": self._plain(self._variables) if self._variables_dirty else {},
        })
        self._variables_dirty = False
        while True:
            line = await process.stdout.readline()
            if not line:
                return await self._crashed(process)
            message = json.loads(line)
            match message.get("op"):
                case "call":
                    await self._send(process, await self._invoke(capabilities, message))
                case "done":
                    return self._output(message)
                case other:
                    logger.warning("Unexpected message from sandbox worker: %s", other)

    async def _invoke(self, capabilities: dict[str, CapabilityHandle], message: dict[str, Any]) -> dict[str, Any]:
        name = message.get("name", "")
        handle = capabilities.get(name)
        if handle is None:
            return {"op": "error", "id": message.get("id"), **error_to_wire(CapabilityNotFound(name, sorted(capabilities)))}
        try:
            value = await handle(*message.get("args", []), **message.get("kwargs", {}))
        except ExecutionError as e:
            return {"op": "error", "id": message.get("id"), **error_to_wire(e)}
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        return {"op": "result", "id": message.get("id"), "value": value}

    async def _crashed(self, process: asyncio.subprocess.Process) -> ExecutionOutput:
        returncode = await process.wait()
        stderr = (await process.stderr.read()).decode("utf-8", errors="replace").strip()
        self._process = None
        logger.warning("Sandbox worker exited with code %s", returncode)
        # SIGXCPU / SIGKILL are how the kernel enforces CPU and memory rlimits.
        if returncode in (-9, -24, 137, 152):
            return ExecutionOutput(error=ResourceLimitExceeded(
                f"Sandbox process was killed after exceeding its resource limits (exit code {returncode})",
                limit="cpu" if returncode in (-24, 152) else "memory",
            ))
        return ExecutionOutput(error=SandboxExecutionError(
            f"Sandbox process exited unexpectedly with code {returncode}: {stderr[-2000:]}"
        ))

    @staticmethod
    def _output(message: dict[str, Any]) -> ExecutionOutput:
        value = message.get("value")
        if value is None and message.get("value_repr") is not None:
            value = ReprValue(message["value_repr"])
        error = message.get("error")
        return ExecutionOutput(
            output=message.get("output", ""),
            return_value=value,
            is_final_answer=bool(message.get("is_final_answer")),
            error=error_from_wire(error) if error else None,
        )

    async def _kill(self):
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        process.kill()
        await process.wait()

    async def _abort(self):
        # The worker is mid-fragment and can not be trusted any more; state is lost.
        logger.info("Killing sandbox worker; session state is discarded")
        await self._kill()

    async def _release(self):
        await self._kill()
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
