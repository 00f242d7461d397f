import logging
from typing import Iterable

import httpx

from agentloop.exceptions import ConfigurationError
from agentloop.sandbox.base import ResourceLimits, SandboxKind, SandboxSession
from agentloop.sandbox.interpreter import DEFAULT_AUTHORIZED_IMPORTS

logger = logging.getLogger(__name__)


class SandboxProvider:
    """Creates sandbox sessions of any kind from one set of settings."""

    def __init__(
            self,
            authorized_imports: Iterable[str] = DEFAULT_AUTHORIZED_IMPORTS,
            limits: ResourceLimits | None = None,
            image: str = "python:3.11-slim",
            cpus: float = 1.0,
            endpoint: str | None = None,
            api_key: str | None = None,
            transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.authorized_imports = list(authorized_imports)
        self.limits = limits or ResourceLimits()
        self.image = image
        self.cpus = cpus
        self.endpoint = endpoint
        self.api_key = api_key
        self.transport = transport

    @classmethod
    def from_config(cls, config) -> 'SandboxProvider':
        """Build from a :class:`agentloop.config.SandboxConfig`."""
        return cls(
            authorized_imports=config.authorized_imports,
            limits=config.limits,
            image=config.image,
            cpus=config.cpus,
            endpoint=config.endpoint,
            api_key=config.api_key,
        )

    def create_session(self, kind: SandboxKind | str, limits: ResourceLimits | None = None) -> SandboxSession:
        kind = SandboxKind(kind)
        limits = limits or self.limits
        logger.debug("Creating %s sandbox session", kind.value)
        match kind:
            case SandboxKind.LOCAL:
                from .local import LocalSandbox
                return LocalSandbox(limits, self.authorized_imports)
            case SandboxKind.PROCESS:
                from .process import ProcessSandbox
                return ProcessSandbox(limits, self.authorized_imports)
            case SandboxKind.CONTAINER:
                from .container import ContainerSandbox
                return ContainerSandbox(limits, self.authorized_imports, image=self.image, cpus=self.cpus)
            case SandboxKind.REMOTE:
                if not self.endpoint:
                    raise ConfigurationError("Remote sandbox requires an endpoint")
                from .remote import RemoteSandbox
                return RemoteSandbox(self.endpoint, limits, api_key=self.api_key, transport=self.transport)
            case SandboxKind.EXPRESSION:
                from .expression import ExpressionSandbox
                return ExpressionSandbox(limits)
        raise ConfigurationError(f"Unknown sandbox kind: {kind}")
