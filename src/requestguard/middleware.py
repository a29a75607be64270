#!/usr/bin/env python3
"""
ASGI middleware mounting the security pipeline in front of an application.

Works with any ASGI framework (Starlette, FastAPI):

    app.add_middleware(GuardMiddleware, orchestrator=orchestrator)

Security Considerations:
- The body is buffered (bounded by max_body_size) so detectors can inspect
  it, then replayed unchanged to the application
- The pipeline runs in a worker thread; its locks never block the event loop
- Rejections carry only a short plain-text reason, never detector details
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers, QueryParams
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .request import GuardRequest
from .security_manager import SecurityOrchestrator


MAX_BODY_SIZE = 1024 * 1024  # 1MB


class GuardMiddleware:
    """Pure ASGI middleware that runs every HTTP request through the orchestrator."""

    def __init__(
        self,
        app: ASGIApp,
        orchestrator: SecurityOrchestrator,
        max_body_size: int = MAX_BODY_SIZE,
    ):
        if orchestrator is None:
            raise ValueError("Orchestrator is required")
        self.app = app
        self.orchestrator = orchestrator
        self.max_body_size = max_body_size
        self.logger = logging.getLogger(__name__)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        body = await self._read_body(receive)
        if body is None:
            response = PlainTextResponse("Request entity too large", status_code=413)
            await response(scope, receive, send)
            return

        request = self._build_request(scope, body)
        decision = await run_in_threadpool(self.orchestrator.handle, request)

        if not decision.allowed:
            response = PlainTextResponse(decision.reason, status_code=decision.status_code)
            await response(scope, receive, send)
            return

        await self.app(scope, self._replay(body, receive), send)

    async def _read_body(self, receive: Receive) -> Optional[bytes]:
        """Buffer the request body. Returns None if it exceeds max_body_size."""
        chunks = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                break
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_body_size:
                self.logger.warning(f"Request body exceeds {self.max_body_size} bytes")
                return None
            chunks.append(chunk)
            more_body = message.get("more_body", False)
        return b"".join(chunks)

    @staticmethod
    def _replay(body: bytes, receive: Receive) -> Receive:
        sent = False

        async def replay() -> Message:
            nonlocal sent
            if not sent:
                sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay

    def _build_request(self, scope: Scope, body: bytes) -> GuardRequest:
        headers = Headers(scope=scope)
        query_string = scope.get("query_string", b"").decode("latin-1")

        # Raw path keeps percent-encoding so encoded traversal stays visible
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else scope.get("path", "/")
        url = f"{path}?{query_string}" if query_string else path

        client = scope.get("client")
        return GuardRequest(
            method=scope.get("method", "GET"),
            url=url,
            headers=dict(headers.items()),
            body=self._parse_body(body, headers.get("content-type", "")),
            query=dict(QueryParams(query_string)),
            params=dict(scope.get("path_params", {}) or {}),
            client_host=client[0] if client else None,
        )

    def _parse_body(self, body: bytes, content_type: str) -> Any:
        if not body:
            return None

        text = body.decode("utf-8", errors="replace")
        content_type = content_type.lower()

        if "application/json" in content_type:
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                self.logger.debug("Malformed JSON body inspected as text")
                return text

        if "application/x-www-form-urlencoded" in content_type:
            form: Dict[str, str] = dict(parse_qsl(text, keep_blank_values=True))
            return form

        return text
