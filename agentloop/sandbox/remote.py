"""Client for a remote micro-VM execution service.

The service keeps one interpreter per session:

* ``POST /sessions`` creates a session and returns ``{"id": ...}``
* ``POST /sessions/{id}/execute`` runs a fragment and returns the same
  ``done`` payload the process worker produces
* ``POST /sessions/{id}/cancel`` stops the running fragment
* ``DELETE /sessions/{id}`` destroys the session
"""

import ast
import json
import logging
from typing import Any

import httpx

from agentloop.action import FINAL_ANSWER_NAME
from agentloop.exceptions import PermissionDenied, SandboxExecutionError
from agentloop.sandbox.base import (
    CapabilityHandle,
    ExecutionOutput,
    ResourceLimits,
    SandboxCapability,
    SandboxKind,
    SandboxSession,
)
from agentloop.sandbox.process import ReprValue, error_from_wire

logger = logging.getLogger(__name__)


def referenced_names(fragment: str) -> set[str]:
    try:
        tree = ast.parse(fragment)
    except SyntaxError:
        return set()
    return {node.id for node in ast.walk(tree) if isinstance(node, ast.Name)}


class RemoteSandbox(SandboxSession):
    """Executes fragments on a remote service over HTTP.

    Host capabilities can not cross the network; a fragment that references one
    is refused before it is sent.
    """

    kind = SandboxKind.REMOTE
    capabilities = (
        SandboxCapability.ISOLATE
        | SandboxCapability.LIMIT_CPU
        | SandboxCapability.LIMIT_MEMORY
        | SandboxCapability.LIMIT_NETWORK
        | SandboxCapability.PERSIST_ACROSS_CALLS
    )

    def __init__(
            self,
            endpoint: str,
            limits: ResourceLimits | None = None,
            api_key: str | None = None,
            transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(limits)
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=endpoint,
            headers=headers,
            # The service enforces the fragment's own limit; leave headroom for the round trip.
            timeout=self.limits.timeout_seconds + 10,
            transport=transport,
        )
        self.session_id: str | None = None

    async def _ensure_session(self) -> str:
        if self.session_id is None:
            response = await self._request("POST", "/sessions", json={"limits": self.limits.model_dump()})
            self.session_id = response["id"]
            logger.debug("Remote sandbox session %s created", self.session_id)
        return self.session_id

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SandboxExecutionError(
                f"Remote sandbox returned {e.response.status_code}: {e.response.text[:500]}"
            ) from e
        except httpx.HTTPError as e:
            raise SandboxExecutionError(f"Remote sandbox request failed: {type(e).__name__}: {e}") from e
        return response.json() if response.content else {}

    async def _execute(
            self,
            fragment: str,
            capabilities: dict[str, CapabilityHandle],
            limits: ResourceLimits,
    ) -> ExecutionOutput:
        local_only = sorted((set(capabilities) - {FINAL_ANSWER_NAME}) & referenced_names(fragment))
        if local_only:
            raise PermissionDenied(
                f"Capabilities {local_only} are not reachable from the remote sandbox"
            )
        session_id = await self._ensure_session()
        variables = {}
        for name, value in self._variables.items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                continue
            variables[name] = value
        payload = await self._request("POST", f"/sessions/{session_id}/execute", json={
            "code": fragment,
            "variables": variables,
            "limits": limits.model_dump(),
        })
        value = payload.get("value")
        if value is None and payload.get("value_repr") is not None:
            value = ReprValue(payload["value_repr"])
        error = payload.get("error")
        return ExecutionOutput(
            output=payload.get("output", ""),
            return_value=value,
            is_final_answer=bool(payload.get("is_final_answer")),
            error=error_from_wire(error) if error else None,
        )

    async def _abort(self):
        if self.session_id is None:
            return
        try:
            await self._client.post(f"/sessions/{self.session_id}/cancel")
        except httpx.HTTPError as e:
            logger.warning("Failed to cancel remote fragment: %s", e)

    async def _release(self):
        try:
            if self.session_id is not None:
                await self._client.delete(f"/sessions/{self.session_id}")
                logger.debug("Remote sandbox session %s deleted", self.session_id)
        except httpx.HTTPError as e:
            logger.warning("Failed to delete remote sandbox session %s: %s", self.session_id, e)
        finally:
            self.session_id = None
            await self._client.aclose()
