import asyncio
import json
import logging
import shutil
import uuid
from typing import Iterable

from agentloop.exceptions import ConfigurationError
from agentloop.sandbox.base import ResourceLimits, SandboxCapability, SandboxKind
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS
from agentloop.sandbox.process import STREAM_LIMIT, WORKER_SOURCE, ProcessSandbox

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "python:3.11-slim"


class ContainerSandbox(ProcessSandbox):
    """The process sandbox's worker, launched inside a throwaway docker container.

    Memory, CPU, process count and network are limited by the container runtime
    instead of rlimits. The container is removed on teardown.
    """

    kind = SandboxKind.CONTAINER
    capabilities = (
        SandboxCapability.ISOLATE
        | SandboxCapability.LIMIT_CPU
        | SandboxCapability.LIMIT_MEMORY
        | SandboxCapability.LIMIT_NETWORK
        | SandboxCapability.PERSIST_ACROSS_CALLS
    )

    def __init__(
            self,
            limits: ResourceLimits | None = None,
            authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS,
            image: str = DEFAULT_IMAGE,
            docker: str = "docker",
            cpus: float = 1.0,
            pids_limit: int = 64,
    ):
        super().__init__(limits, authorized_imports)
        self.image = image
        self.docker = shutil.which(docker)
        if self.docker is None:
            raise ConfigurationError(f"Container sandbox requires '{docker}' on PATH")
        self.cpus = cpus
        self.pids_limit = pids_limit
        self.container_name: str | None = None

    def _command(self) -> list[str]:
        command = [
            self.docker, "run", "-i", "--rm",
            "--name", self.container_name,
            "--cpus", str(self.cpus),
            "--pids-limit", str(self.pids_limit),
            "--workdir", "/tmp",
        ]
        if not self.limits.allow_network:
            command += ["--network", "none"]
        if self.limits.max_memory_mb is not None:
            command += ["--memory", f"{self.limits.max_memory_mb}m"]
        if self.limits.cpu_seconds is not None:
            command += ["--ulimit", f"cpu={self.limits.cpu_seconds}"]
        command += [self.image, "python", "-I", "-u", "-c", WORKER_SOURCE, json.dumps(self.authorized_imports)]
        return command

    async def _spawn(self) -> asyncio.subprocess.Process:
        self.container_name = f"agentloop-{uuid.uuid4().hex[:12]}"
        logger.debug("Starting sandbox container %s from %s", self.container_name, self.image)
        return await asyncio.create_subprocess_exec(
            *self._command(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )

    async def _remove_container(self):
        if self.container_name is None:
            return
        name, self.container_name = self.container_name, None
        process = await asyncio.create_subprocess_exec(
            self.docker, "rm", "-f", name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await process.wait()
        logger.debug("Sandbox container %s removed", name)

    async def _abort(self):
        await super()._abort()
        await self._remove_container()

    async def _release(self):
        await self._kill()
        await self._remove_container()
