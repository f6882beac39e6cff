r"""
## iocapture: run a function and capture everything it prints to sys.stdout and sys.stderr

# Installation

`pip install iocapture`

# Example usage

```python
import iocapture

def work():
    print("test")
    return 42

c = iocapture.capture(work)
assert c.succeeded and c.value == 42 and c.output == "test"
```

# Documentation

Function `capture(work, rethrow=RethrowPolicy.ALL, color=False, echo=False, targets=None)`
calls `work()` with no arguments while `sys.stdout` and `sys.stderr` both point at a single
in-memory sink, and returns a `CaptureResult` with the fields

* `succeeded`: `False` if `work` raised an exception that was captured.
* `value`: the return value of `work`, or the exception object if it was captured.
* `output`: everything written to `sys.stdout` and `sys.stderr`, decoded as UTF-8, with one
  trailing newline removed.
* `trace`: a `traceback.StackSummary` of the captured exception, empty on success.

The sink is an `os.pipe()`. A separate thread listens to the read end and appends whatever
arrives to a `io.BytesIO`, so `work` can print any amount of data without the pipe ever
filling up. The write end is wrapped in a line buffered text stream that replaces both
`sys.stdout` and `sys.stderr`, which keeps the two streams interleaved in the order the writes
happened. Since the sink has a real `fileno()`, `os.write(sys.stdout.fileno(), ...)` inside
`work` is captured as well. The file descriptors 1 and 2 of the process are left alone, so
output of spawned processes is not captured.

`logging.StreamHandler` objects that write to the current `sys.stdout` or `sys.stderr`, on the
root logger or any named logger, are pointed at the sink for the duration of the call, so log
lines end up in `output` between the prints that surround them.

The `rethrow` parameter decides which exceptions escape `capture`. It is a `RethrowPolicy`:
`RethrowPolicy.ALL` (the default) re-raises everything, so that `capture` is transparent,
`RethrowPolicy.NONE` captures everything, including `KeyboardInterrupt`, and
`RethrowPolicy.only(ZeroDivisionError, KeyboardInterrupt)` re-raises only instances of the given
classes. For convenience, `rethrow` also accepts an exception class, a tuple of exception
classes (the empty tuple captures everything) or a union such as `ZeroDivisionError | KeyError`.
Any other value raises `InvalidRethrowPolicy` before `work` is called. Streams are always
restored before an exception leaves `capture`.

Libraries that colorize their output usually check `stream.isatty()` first. The sink answers
`False`, unless `color=True` is given, in which case it answers whatever the original
`sys.stdout` answers.

With `echo=True`, everything that is captured is also forwarded to the original `sys.stdout`
as it arrives, similar to the `tee` console command in Unix.

`OutputCapture(targets=None, color=False, echo=False)` is the context manager that
`capture` is built on. It can be used directly when a `with` block is more convenient than
a function; the captured text is available as `OutputCapture.output` after the block.

```python
with iocapture.OutputCapture() as cap:
    print("hello")
assert cap.output == "hello"
```

The streams being swapped are found through a `StandardStreams` handle, which defaults to the
`sys` module. Any object with `stdout` and `stderr` attributes can be wrapped instead, which
is mostly useful in tests. Nested captures work: the inner capture restores the sink of the
outer one.
"""
import io
import os
import sys
import codecs
import logging
import threading
import traceback
import types
import typing
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Callable, List, Optional, TextIO, Tuple, Type

__all__ = [
    "CaptureResult",
    "InvalidRethrowPolicy",
    "OutputCapture",
    "PipeSink",
    "RethrowPolicy",
    "StandardStreams",
    "capture",
]

logger = logging.getLogger(__name__)


class InvalidRethrowPolicy(TypeError):
    """Raised by `capture` when `rethrow` is not a recognized policy."""


class RethrowPolicy:
    """Which exceptions raised by the work escape `capture`.

    Use `RethrowPolicy.ALL`, `RethrowPolicy.NONE` or `RethrowPolicy.only(...)`.
    """

    ALL: 'RethrowPolicy'
    NONE: 'RethrowPolicy'

    tag: str
    kinds: Tuple[Type[BaseException], ...]

    def __init__(self, tag: str, kinds: Tuple[Type[BaseException], ...]):
        (self.tag, self.kinds) = (tag, kinds)

    @classmethod
    def only(cls, *kinds: Type[BaseException]) -> 'RethrowPolicy':
        """Propagate instances of `kinds`, capture everything else."""
        for kind in kinds:
            if not (isinstance(kind, type) and issubclass(kind, BaseException)):
                raise InvalidRethrowPolicy(f"not an exception class: {kind!r}")
        return cls("only", tuple(kinds))

    @classmethod
    def coerce(cls, value: Any) -> 'RethrowPolicy':
        """Resolve the accepted spellings of a policy into a `RethrowPolicy`.

        :param value: A `RethrowPolicy`, an exception class, a tuple of exception classes
            or a union of exception classes.
        :return: The corresponding policy.
        :raises InvalidRethrowPolicy: For anything else, booleans and `None` included.
        """
        if isinstance(value, RethrowPolicy):
            return value
        if isinstance(value, type) and issubclass(value, BaseException):
            return cls.only(value)
        if typing.get_origin(value) in (typing.Union, types.UnionType):
            return cls.only(*typing.get_args(value))
        if isinstance(value, tuple):
            return cls.only(*value) if value else cls.NONE
        raise InvalidRethrowPolicy(f"invalid rethrow policy: {value!r}")

    def propagates(self, exc: BaseException) -> bool:
        return isinstance(exc, self.kinds)

    def __eq__(self, other):
        if not isinstance(other, RethrowPolicy):
            return NotImplemented
        return (self.tag, set(self.kinds)) == (other.tag, set(other.kinds))

    def __hash__(self):
        return hash((self.tag, frozenset(self.kinds)))

    def __repr__(self):
        if self.tag == "only":
            return f"RethrowPolicy.only({', '.join(k.__name__ for k in self.kinds)})"
        return f"RethrowPolicy.{self.tag.upper()}"


RethrowPolicy.ALL = RethrowPolicy("all", (BaseException,))
RethrowPolicy.NONE = RethrowPolicy("none", ())


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of one `capture` call."""

    succeeded: bool
    value: Any
    output: str
    trace: traceback.StackSummary = field(default_factory=traceback.StackSummary)

    @property
    def error(self) -> bool:
        return not self.succeeded


class StandardStreams:
    """The `stdout` and `stderr` attributes of `namespace`, `sys` by default."""

    def __init__(self, namespace: Any = sys):
        self.namespace = namespace

    def save(self) -> Tuple[TextIO, TextIO]:
        return (self.namespace.stdout, self.namespace.stderr)

    def redirect(self, stream: TextIO) -> None:
        self.namespace.stdout = stream
        self.namespace.stderr = stream

    def restore(self, saved: Tuple[TextIO, TextIO]) -> None:
        (self.namespace.stdout, self.namespace.stderr) = saved


class _SinkStream(io.TextIOWrapper):
    """Text stream on the write end of the sink, reporting a fixed `isatty()`."""

    def __init__(self, fd: int, tty: bool):
        super().__init__(
            io.BufferedWriter(io.FileIO(fd, "wb")),
            encoding="utf-8",
            errors="backslashreplace",
            line_buffering=True,
            write_through=True,
        )
        self._tty = tty

    def isatty(self) -> bool:
        return self._tty

    def fileno(self) -> int:
        # raw writes to the fd must land after text written so far
        self.flush()
        return super().fileno()


class PipeSink:
    """In-memory destination for captured output.

    Bytes written to `PipeSink.stream` go through an `os.pipe()` and are collected by a
    separate thread into `PipeSink.buffer`, which grows without bound.
    """

    pipe_read_fd: int
    stream: _SinkStream
    buffer: io.BytesIO
    echo: Optional[TextIO]
    thread: threading.Thread

    def __init__(self, tty: bool = False, echo: Optional[TextIO] = None):
        """`PipeSink` constructor.

        :param tty: What `stream.isatty()` reports to writers that check for color support.
        :param echo: If given, every chunk received is also written to this text stream.
        """
        (pipe_read_fd, pipe_write_fd) = os.pipe()
        self.pipe_read_fd = pipe_read_fd
        self.stream = _SinkStream(pipe_write_fd, tty)
        (self.buffer, self.echo) = (io.BytesIO(), echo)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.thread = threading.Thread(target=self.printer, daemon=True)
        self.thread.start()

    def printer(self):
        """This is the thread that listens to the pipe and fills the buffer."""
        try:
            while True:
                data = os.read(self.pipe_read_fd, 100000)
                if not data:
                    break
                self.buffer.write(data)
                if self.echo is not None:
                    self.echo.write(self._decoder.decode(data))
                    self.echo.flush()
        finally:
            os.close(self.pipe_read_fd)

    def close(self) -> bytes:
        """Close the write end, wait for the reader to see EOF and return all bytes received."""
        if not self.stream.closed:
            self.stream.close()
        self.thread.join()
        return self.buffer.getvalue()


def _loggers() -> List[logging.Logger]:
    named = [
        lg for lg in list(logging.Logger.manager.loggerDict.values())
        if isinstance(lg, logging.Logger)
    ]
    return [logging.getLogger()] + named


def _redirect_log_handlers(
        originals: Tuple[TextIO, TextIO],
        stream: TextIO,
        swapped: List[Tuple[logging.StreamHandler, Any]],
) -> None:
    """Point stream handlers writing to one of `originals` at `stream`.

    Every swap is recorded in `swapped` as soon as it happens. Handlers whose `stream` is a
    read-only property, such as `logging.lastResort`, follow `sys.stderr` by themselves and
    are left alone.
    """
    seen = set()
    for lg in _loggers():
        for handler in lg.handlers:
            if id(handler) in seen or not isinstance(handler, logging.StreamHandler):
                continue
            seen.add(id(handler))
            if isinstance(getattr(type(handler), "stream", None), property):
                continue
            if any(handler.stream is s for s in originals):
                swapped.append((handler, handler.setStream(stream)))


def _chomp(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


class OutputCapture:
    """Redirect stdout, stderr and the matching log handlers into a `PipeSink`."""

    active: bool
    targets: StandardStreams
    saved: Tuple[TextIO, TextIO]
    sink: PipeSink
    output: Optional[str]

    def __init__(
            self,
            targets: Optional[StandardStreams] = None,
            color: bool = False,
            echo: bool = False,
    ) -> None:
        """The `OutputCapture` constructor. Capturing starts immediately.

        :param targets: The streams to redirect. Defaults to `StandardStreams()`, i.e. `sys`.
        :param color: Let the sink report the original stdout's `isatty()` instead of `False`.
        :param echo: Also forward captured output to the original stdout.
        """
        self.targets = StandardStreams() if targets is None else targets
        self.saved = self.targets.save()
        (stdout, stderr) = self.saved
        for stream in self.saved:
            if stream is not None:
                stream.flush()
        tty = bool(color and getattr(stdout, "isatty", lambda: False)())
        self.sink = PipeSink(tty=tty, echo=stdout if echo else None)
        self.output = None
        self._handlers = []
        try:
            _redirect_log_handlers(self.saved, self.sink.stream, self._handlers)
            self.targets.redirect(self.sink.stream)
        except BaseException:
            self.targets.restore(self.saved)
            self._restore_log_handlers()
            self.sink.close()
            raise
        self.active = True

    def _restore_log_handlers(self) -> None:
        for (handler, old) in reversed(self._handlers):
            handler.setStream(old)
        self._handlers = []

    def close(self) -> str:
        """Stop capturing, restore the streams and return the captured text."""
        if not self.active:
            return self.output
        self.active = False
        try:
            if not self.sink.stream.closed:
                self.sink.stream.flush()
        finally:
            self.targets.restore(self.saved)
            self._restore_log_handlers()
            data = self.sink.close()
        self.output = _chomp(data.decode("utf-8", errors="replace"))
        return self.output

    def __enter__(self):
        return self

    def __exit__(
            self,
            exc_type: Optional[Type[BaseException]],
            exc_val: Optional[BaseException],
            exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()


def capture(
        work: Callable[[], Any],
        rethrow: Any = RethrowPolicy.ALL,
        color: bool = False,
        echo: bool = False,
        targets: Optional[StandardStreams] = None,
) -> CaptureResult:
    """Call `work()` and capture everything it writes to stdout and stderr.

    :param work: Zero-argument callable.
    :param rethrow: A `RethrowPolicy`, or anything `RethrowPolicy.coerce` accepts.
    :param color: See `OutputCapture`.
    :param echo: See `OutputCapture`.
    :param targets: See `OutputCapture`.
    :return: The `CaptureResult`.
    :raises InvalidRethrowPolicy: If `rethrow` is invalid. `work` is not called in that case.
    """
    policy = RethrowPolicy.coerce(rethrow)
    logger.debug("capturing output of %r, rethrow=%r", work, policy)
    cap = OutputCapture(targets, color=color, echo=echo)
    try:
        value = work()
    except BaseException as err:
        if policy.propagates(err):
            raise
        (succeeded, value, trace) = (False, err, traceback.extract_tb(err.__traceback__))
    else:
        (succeeded, trace) = (True, traceback.StackSummary())
    finally:
        output = cap.close()
    logger.debug("captured %d characters, succeeded=%s", len(output), succeeded)
    return CaptureResult(succeeded, value, output, trace)
