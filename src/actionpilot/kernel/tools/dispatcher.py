"""Tool dispatchers for ActionPilot.

A dispatcher executes exactly one validated tool call and reports the outcome.
It never raises for tool-level failures; they come back as failed outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx

from actionpilot.domain.run import ToolResult, ToolResultStatus
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.tools.tool_registry import ToolRegistry


@dataclass
class DispatchRequest:
    """What the engine hands to a dispatcher."""

    tool_id: str
    tool_name: str
    arguments: Dict[str, Any]


@dataclass
class DispatchOutcome:
    """Dispatcher answer for a single call."""

    status: str  # completed | failed
    tool_name: str
    result: Any = None
    error: Optional[str] = None
    error_details: Optional[Any] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    def to_tool_result(self) -> ToolResult:
        return ToolResult(
            status=ToolResultStatus.SUCCESS if self.completed else ToolResultStatus.FAILED,
            tool_name=self.tool_name,
            payload=self.result,
            error=self.error,
            error_details=self.error_details,
        )


class ToolDispatcher(Protocol):
    async def execute(
        self,
        session_id: str,
        user_id: str,
        request: DispatchRequest,
        *,
        plan_id: str,
        step_id: str,
    ) -> DispatchOutcome:
        ...


def interpret_gateway_response(tool_name: str, body: Any) -> DispatchOutcome:
    """Map a gateway response body to an outcome.

    Success is an explicit ``success: true`` or, when ``success`` is absent,
    the presence of ``data``.
    """
    if not isinstance(body, dict):
        return DispatchOutcome(status="completed", tool_name=tool_name, result=body)

    success = body.get("success")
    if success is True or (success is None and "data" in body):
        result = body["data"] if "data" in body else body
        return DispatchOutcome(status="completed", tool_name=tool_name, result=result)

    return DispatchOutcome(
        status="failed",
        tool_name=tool_name,
        error=str(body.get("message") or body.get("error") or f"Tool '{tool_name}' failed."),
        error_details=body.get("errors") or body.get("details"),
    )


class GatewayToolDispatcher:
    """Dispatch tool calls to an HTTP tool gateway."""

    def __init__(
        self,
        base_url: str,
        *,
        registry: Optional[ToolRegistry] = None,
        timeout_seconds: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        logger: Any = None,
    ):
        """Initialize gateway dispatcher.

        Args:
            base_url: Gateway root URL; calls go to ``{base_url}/actions/{tool}``
            registry: Optional registry used to reject unknown tools early
            timeout_seconds: Per-call HTTP timeout
            client: Optional pre-built client (tests pass a mock transport)
        """
        self.base_url = str(base_url or "").rstrip("/")
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._logger = logger or get_logger("gateway_dispatcher")

    def _url_for(self, tool_name: str) -> str:
        return f"{self.base_url}/actions/{tool_name}"

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, timeout=self.timeout_seconds)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(url, json=payload)

    async def execute(
        self,
        session_id: str,
        user_id: str,
        request: DispatchRequest,
        *,
        plan_id: str,
        step_id: str,
    ) -> DispatchOutcome:
        tool_name = request.tool_name
        if self.registry is not None:
            if not self.registry.tool_exists(tool_name):
                return DispatchOutcome(
                    status="failed",
                    tool_name=tool_name,
                    error=f"Unknown or unhandled tool: {tool_name}",
                )
            tool_name = self.registry.canonicalize(tool_name)
        if not session_id or not user_id:
            return DispatchOutcome(
                status="failed",
                tool_name=tool_name,
                error=f"Session or User ID is missing for tool '{tool_name}'.",
            )

        payload = {
            "action_id": request.tool_id,
            "tool_name": tool_name,
            "arguments": request.arguments,
            "session_id": session_id,
            "user_id": user_id,
            "plan_id": plan_id,
            "step_id": step_id,
        }
        self._logger.info("gateway_dispatch", tool=tool_name, step_id=step_id, plan_id=plan_id)

        try:
            response = await self._post(self._url_for(tool_name), payload)
        except httpx.HTTPError as exc:
            self._logger.error("gateway_transport_failed", tool=tool_name, error=str(exc))
            return DispatchOutcome(
                status="failed",
                tool_name=tool_name,
                error=f"Gateway request failed: {exc}",
                error_details={"exception": type(exc).__name__},
            )

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            self._logger.warning(
                "gateway_http_error", tool=tool_name, status_code=response.status_code
            )
            return DispatchOutcome(
                status="failed",
                tool_name=tool_name,
                error=str(message or f"Gateway returned HTTP {response.status_code}"),
                error_details={"status_code": response.status_code, "body": body},
            )

        outcome = interpret_gateway_response(tool_name, body)
        if outcome.completed:
            self._logger.info("gateway_dispatch_succeeded", tool=tool_name, step_id=step_id)
        else:
            self._logger.warning("gateway_dispatch_failed", tool=tool_name, error=outcome.error)
        return outcome


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class CallableToolDispatcher:
    """Dispatch tool calls to in-process async handlers keyed by tool name.

    A handler returns the payload on success and raises to signal failure.
    """

    def __init__(
        self,
        handlers: Optional[Dict[str, ToolHandler]] = None,
        *,
        registry: Optional[ToolRegistry] = None,
        logger: Any = None,
    ):
        self.registry = registry
        self._handlers: Dict[str, ToolHandler] = {}
        self._logger = logger or get_logger("callable_dispatcher")
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def _key(self, tool_name: str) -> str:
        return self.registry.canonicalize(tool_name) if self.registry else tool_name

    def register(self, tool_name: str, handler: ToolHandler) -> None:
        self._handlers[self._key(tool_name)] = handler

    async def execute(
        self,
        session_id: str,
        user_id: str,
        request: DispatchRequest,
        *,
        plan_id: str,
        step_id: str,
    ) -> DispatchOutcome:
        del session_id, user_id, plan_id
        tool_name = self._key(request.tool_name)
        handler = self._handlers.get(tool_name)
        if handler is None:
            return DispatchOutcome(
                status="failed",
                tool_name=tool_name,
                error=f"Unknown or unhandled tool: {tool_name}",
            )
        try:
            result = await handler(dict(request.arguments))
        except Exception as exc:
            self._logger.warning("tool_handler_failed", tool=tool_name, step_id=step_id, error=str(exc))
            return DispatchOutcome(
                status="failed",
                tool_name=tool_name,
                error=str(exc) or type(exc).__name__,
                error_details={"exception": type(exc).__name__},
            )
        return DispatchOutcome(status="completed", tool_name=tool_name, result=result)
