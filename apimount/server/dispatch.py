"""Per-request execution of one bound method.

Each request to a bound path runs :class:`DispatchPipeline`:

1. ``before_execution`` hook, which may short-circuit the call,
2. the handler, called with the positional ``args`` of the request body,
3. normalisation of the outcome into ``(result, error)``,
4. ``before_response`` hook, which may take over the response,
5. the default response write (200 + result, or 500 + error body),
6. ``after_response`` hook, run once the response has been sent.

A :class:`DispatchContext` carries the state of one request and is never
shared with another.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from starlette.background import BackgroundTasks
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse, Response

from mountlib.contracts.call import CallRequest
from mountlib.telemetry.logger import get_logger
from mountlib.utils.helpers import format_error

from .errors import CallRejected
from .hooks import HookChain, HookOutcome

logger = get_logger(__name__)


class CallState(str, Enum):
    PENDING = "pending"
    INVOKING = "invoking"
    SUCCESS = "success"
    FAILURE = "failure"
    RESPONDED = "responded"
    DONE = "done"


class OutgoingResponse:
    """Response under construction, handed to hooks.

    Mirrors the small part of an express response hooks need:
    ``response.status(201).json(payload)``.  Only one body can be written.
    """

    def __init__(self) -> None:
        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self._response: Optional[Response] = None

    @property
    def written(self) -> bool:
        return self._response is not None

    @property
    def rendered(self) -> Optional[Response]:
        return self._response

    def status(self, code: int) -> "OutgoingResponse":
        self.status_code = code
        return self

    def header(self, name: str, value: str) -> "OutgoingResponse":
        self.headers[name] = value
        return self

    def json(self, content: Any) -> None:
        self.send(JSONResponse(jsonable_encoder(content), status_code=self.status_code))

    def send(self, response: Response) -> None:
        if self.written:
            raise RuntimeError("Response has already been written")
        response.headers.update(self.headers)
        self._response = response


@dataclass
class DispatchContext:
    method: str
    args: List[Any]
    request: Request
    response: OutgoingResponse = field(default_factory=OutgoingResponse)
    result: Any = None
    error: bool = False
    state: CallState = CallState.PENDING

    def advance(self, state: CallState) -> None:
        if self.state is CallState.DONE:
            raise RuntimeError(f"Call to {self.method} is already done")
        self.state = state

    def succeed(self, value: Any) -> None:
        self.result, self.error = value, False
        self.advance(CallState.SUCCESS)

    def fail(self, value: Any) -> None:
        self.result, self.error = value, True
        self.advance(CallState.FAILURE)


async def read_call_args(request: Request) -> List[Any]:
    """Return the positional arguments of a ``{"args": [...]}`` body.

    An empty body counts as no arguments.  Anything else that does not parse
    is answered with 400 before any hook runs.
    """

    raw = await request.body()
    try:
        call = CallRequest.model_validate_json(raw) if raw.strip() else CallRequest()
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=f'Malformed call body, expected {{"args": [...]}} ({exc.error_count()} error(s))',
        ) from exc
    return call.args


class DispatchPipeline:
    def __init__(self, method: str, handler: Callable[..., Any], receiver: Any, hooks: HookChain) -> None:
        self.method = method
        self.handler = handler
        self.receiver = receiver
        self.hooks = hooks

    async def __call__(self, request: Request) -> Response:
        args = await read_call_args(request)
        request.state.args = args
        ctx = DispatchContext(self.method, args, request)

        outcome = await self.hooks.run_before_execution(
            self.method, self.handler, self.receiver, request, ctx.response
        )
        if outcome is HookOutcome.SHORT_CIRCUIT:
            logger.debug("before_execution took over %s", self.method)
            return self._finish(ctx)

        await self._invoke(ctx)

        outcome = await self.hooks.run_before_response(
            ctx.result, ctx.error, self.method, request, ctx.response
        )
        if outcome is HookOutcome.SHORT_CIRCUIT:
            logger.debug("before_response took over %s", self.method)
        else:
            self._write_default(ctx)

        response = self._finish(ctx)
        tasks = BackgroundTasks([response.background] if response.background else None)
        tasks.add_task(self.hooks.run_after_response, ctx.result, ctx.error, self.method)
        response.background = tasks
        return response

    async def _invoke(self, ctx: DispatchContext) -> None:
        ctx.advance(CallState.INVOKING)
        try:
            if inspect.iscoroutinefunction(self.handler):
                value = await self.handler(*ctx.args)
            else:
                value = await run_in_threadpool(self.handler, *ctx.args)
                if inspect.isawaitable(value):
                    value = await value
        except CallRejected as exc:
            logger.info("Method %s rejected with %r", self.method, exc.value)
            ctx.fail(exc.value)
        except Exception as exc:
            logger.info("Method %s failed: %s: %s", self.method, type(exc).__name__, exc)
            ctx.fail(exc)
        else:
            ctx.succeed(value)

    def _write_default(self, ctx: DispatchContext) -> None:
        out = ctx.response
        if out.written:
            # before_response wrote the body itself but let the call continue.
            return
        if not ctx.error:
            out.json(ctx.result)
        elif isinstance(ctx.result, BaseException):
            out.status(500).json(format_error(ctx.result))
        else:
            out.status(500).json(ctx.result)
        ctx.advance(CallState.RESPONDED)

    def _finish(self, ctx: DispatchContext) -> Response:
        ctx.advance(CallState.DONE)
        response = ctx.response.rendered
        if response is None:
            logger.warning("Call to %s ended without a response, answering 204", self.method)
            return Response(status_code=204)
        return response
