"""Background ICS parsing with calling-thread fallback.

``ParserWorker`` runs the parser on a dedicated thread and talks to
``IcsParserClient`` only through protocol dicts (see ``worker_protocol``).
The client correlates replies to callers with a pending-request table and
switches once, for good, to parsing on the calling thread when the worker
cannot be built, crashes, or fails to initialize.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any, Optional

from ..calendar.lite_parser import ParseFn, parse_ics_content
from ..exceptions import (
    ParserError,
    ParserWorkerError,
    ParserWorkerTerminatedError,
    ParserWorkerUnavailableError,
)
from ..lite_models import ParseResult
from .worker_protocol import (
    InitFailed,
    InitOk,
    InitRequest,
    ParseFailed,
    ParseOk,
    ParseRequest,
    decode_request,
    decode_response,
    encode_message,
)

logger = logging.getLogger(__name__)

Initializer = Callable[[], None]
ReplyFn = Callable[[dict[str, Any]], None]
CrashFn = Callable[[BaseException], None]


def _noop_initializer() -> None:
    return None


class ParserMode(str, Enum):
    """Where parse requests run. The only transition is WORKER -> FALLBACK."""

    WORKER = "worker"
    FALLBACK = "fallback"


class ParserWorker:
    """Dedicated parsing thread consuming protocol request dicts."""

    def __init__(
        self,
        parse_fn: ParseFn,
        reply: ReplyFn,
        on_crash: Optional[CrashFn] = None,
        initializer: Optional[Initializer] = None,
        name: str = "ics-parser-worker",
    ) -> None:
        self._parse_fn = parse_fn
        self._reply = reply
        self._on_crash = on_crash
        self._initializer = initializer or _noop_initializer
        self._initialized = False
        self._init_lock = threading.Lock()
        self._queue: queue.Queue[Optional[dict[str, Any]]] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def post(self, message: dict[str, Any]) -> None:
        """Queue a request dict for the worker thread."""
        self._queue.put(message)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def terminate(self, timeout: float = 1.0) -> None:
        """Stop the thread after the message it is currently handling."""
        self._queue.put(None)
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _ensure_initialized(self) -> None:
        with self._init_lock:
            if not self._initialized:
                self._initializer()
                self._initialized = True

    def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """Answer one request dict with one response dict.

        Args:
            message: ``{"kind": "init"}`` or ``{"kind": "parse", "id", "content"}``

        Returns:
            Matching response dict; parse and init failures are reported in
            the response, never raised

        Raises:
            pydantic.ValidationError: If ``message`` is not a protocol request
            ParserWorkerError: If the decoded request is of an unknown kind
        """
        request = decode_request(message)

        if isinstance(request, InitRequest):
            try:
                self._ensure_initialized()
            except Exception as exc:
                logger.warning("Parser worker initialization failed: %s", exc)
                return encode_message(
                    InitFailed(error=str(exc) or "Failed to initialize parser worker")
                )
            return encode_message(InitOk())

        if not isinstance(request, ParseRequest):
            raise ParserWorkerError(f"Unexpected parser request: {type(request).__name__}")
        try:
            self._ensure_initialized()
            result = self._parse_fn(request.content)
            # Encoding validates the result, so a malformed one is a parse failure
            return encode_message(ParseOk(id=request.id, result=result))
        except Exception as exc:
            logger.warning("Parse request %d failed: %s", request.id, exc)
            return encode_message(
                ParseFailed(id=request.id, error=str(exc) or "Failed to parse ICS content")
            )

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            if message is None:
                logger.debug("Parser worker stopping")
                return
            try:
                self._reply(self.handle_message(message))
            except Exception as exc:
                logger.exception("Parser worker crashed")
                if self._on_crash is not None:
                    self._on_crash(exc)
                return


WorkerFactory = Callable[[ReplyFn, CrashFn], ParserWorker]


class IcsParserClient:
    """Async front-end for ICS parsing, worker-backed with a sticky fallback.

    Usage:
        async with IcsParserClient() as client:
            result = await client.parse(text)
    """

    def __init__(
        self,
        parse_fn: Optional[ParseFn] = None,
        initializer: Optional[Initializer] = None,
        worker_factory: Optional[WorkerFactory] = None,
    ) -> None:
        """Initialize the client.

        Args:
            parse_fn: Parser collaborator, defaults to the bundled icalendar parser
            initializer: One-time parser setup, run once per execution context
            worker_factory: Builds the worker from reply/crash callbacks
        """
        self._parse_fn: ParseFn = parse_fn or parse_ics_content
        self._initializer = initializer or _noop_initializer
        self._worker_factory = worker_factory or self._default_worker_factory

        self._mode = ParserMode.WORKER
        self._worker: Optional[ParserWorker] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._init_future: Optional[asyncio.Future[None]] = None
        self._pending: dict[int, asyncio.Future[ParseResult]] = {}
        self._next_id = 1
        self._fallback_initialized = False
        self._started = False
        self._terminated = False

        self.is_ready = False
        self.init_error: Optional[str] = None

    @property
    def mode(self) -> ParserMode:
        return self._mode

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def __aenter__(self) -> IcsParserClient:
        await self.start()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        self.terminate()

    def _default_worker_factory(self, reply: ReplyFn, on_crash: CrashFn) -> ParserWorker:
        return ParserWorker(self._parse_fn, reply, on_crash, self._initializer)

    async def start(self) -> None:
        """Build the worker and wait for its init reply (idempotent)."""
        if self._started:
            if self._init_future is not None and not self._init_future.done():
                await asyncio.shield(self._init_future)
            return

        self._started = True
        self._loop = asyncio.get_running_loop()
        try:
            worker = self._worker_factory(self._reply_threadsafe, self._crash_threadsafe)
            worker.start()
        except Exception as exc:
            logger.warning("Parser worker unavailable, parsing on the calling thread: %s", exc)
            self._activate_fallback(str(exc) or "Parser worker unavailable")
            return

        self._worker = worker
        self._init_future = self._loop.create_future()
        worker.post(encode_message(InitRequest()))
        await asyncio.shield(self._init_future)

    async def parse(self, content: str) -> ParseResult:
        """Parse ICS text through the worker, or on this thread in fallback mode.

        Raises:
            ParserWorkerUnavailableError: Client terminated or no worker running
            ParserWorkerTerminatedError: Client terminated while waiting
            ParserWorkerError: Worker crashed while the request was pending
            ParserError: The parser itself failed
        """
        if self._terminated:
            raise ParserWorkerUnavailableError("Parser worker unavailable")
        await self.start()

        if self._mode is ParserMode.FALLBACK:
            return self._parse_on_calling_thread(content)

        worker = self._worker
        if worker is None or self._loop is None:
            raise ParserWorkerUnavailableError("Parser worker unavailable")

        request_id = self._next_id
        self._next_id += 1
        future: asyncio.Future[ParseResult] = self._loop.create_future()
        self._pending[request_id] = future
        worker.post(encode_message(ParseRequest(id=request_id, content=content)))
        return await future

    def terminate(self) -> None:
        """Stop the worker and reject every pending request."""
        self._terminated = True
        self._reject_pending(ParserWorkerTerminatedError("Parser worker terminated"))
        self._resolve_init()
        if self._worker is not None:
            self._worker.terminate()
            self._worker = None
        self.is_ready = False

    # Worker thread -> event loop

    def _reply_threadsafe(self, message: dict[str, Any]) -> None:
        self._call_in_loop(self._handle_response, message)

    def _crash_threadsafe(self, exc: BaseException) -> None:
        self._call_in_loop(self._handle_crash, exc)

    def _call_in_loop(self, callback: Callable[[Any], None], arg: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Dropping parser worker message: event loop closed")
            return
        try:
            loop.call_soon_threadsafe(callback, arg)
        except RuntimeError:
            logger.debug("Dropping parser worker message: event loop closed")

    def _handle_response(self, message: dict[str, Any]) -> None:
        response = decode_response(message)

        if isinstance(response, InitOk):
            self.is_ready = True
            self.init_error = None
            self._resolve_init()
            return
        if isinstance(response, InitFailed):
            logger.warning("Parser worker init failed: %s", response.error)
            self._activate_fallback(response.error)
            self._resolve_init()
            return

        future = self._pending.pop(response.id, None)
        if future is None or future.done():
            logger.debug("Ignoring reply for unknown parse request %d", response.id)
            return
        if isinstance(response, ParseOk):
            future.set_result(response.result)
        elif isinstance(response, ParseFailed):
            future.set_exception(ParserError(response.error))
        else:
            future.set_exception(
                ParserWorkerError(f"Unexpected parser reply: {type(response).__name__}")
            )

    def _handle_crash(self, exc: BaseException) -> None:
        if self._terminated:
            return
        logger.error("Parser worker crashed: %s", exc)
        self._reject_pending(ParserWorkerError("Parser worker crashed"))
        self._activate_fallback("Parser worker crashed")
        self._resolve_init()

    # Fallback

    def _activate_fallback(self, reason: str) -> None:
        if self._mode is not ParserMode.FALLBACK:
            logger.info("Switching ICS parsing to the calling thread: %s", reason)
        self._mode = ParserMode.FALLBACK
        if self._worker is not None:
            self._worker.terminate(timeout=0)
            self._worker = None
        self.init_error = reason
        try:
            self._ensure_fallback_initialized()
        except Exception as exc:
            logger.warning("Fallback parser initialization failed: %s", exc)
            return
        self.is_ready = True

    def _ensure_fallback_initialized(self) -> None:
        if not self._fallback_initialized:
            self._initializer()
            self._fallback_initialized = True

    def _parse_on_calling_thread(self, content: str) -> ParseResult:
        try:
            self._ensure_fallback_initialized()
            return self._parse_fn(content)
        except ParserError:
            raise
        except Exception as exc:
            raise ParserError(str(exc) or "Failed to parse ICS content") from exc

    # Helpers

    def _reject_pending(self, error: ParserError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
        if pending:
            logger.debug("Rejected %d pending parse requests: %s", len(pending), error)

    def _resolve_init(self) -> None:
        if self._init_future is not None and not self._init_future.done():
            self._init_future.set_result(None)
