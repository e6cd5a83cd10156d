"""Framework-neutral HTTP request/response values used by the validator."""

import asyncio
import json
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl


class BodyConsumedError(RuntimeError):
    """The body stream was already read."""


class _Tee:
    """Buffers one underlying stream so several clones can replay it."""

    def __init__(self, source: AsyncIterable[bytes]):
        self._iterator = source.__aiter__()
        self._chunks: list[bytes] = []
        self._done = False
        self._lock = asyncio.Lock()

    async def chunk(self, index: int) -> bytes | None:
        async with self._lock:
            while index >= len(self._chunks) and not self._done:
                try:
                    self._chunks.append(await self._iterator.__anext__())
                except StopAsyncIteration:
                    self._done = True
            if index < len(self._chunks):
                return self._chunks[index]
            return None


class BodyStream:
    """A single-read request or response body.

    ``clone()`` returns an independent reader over the same bytes; reading a
    clone never consumes the original.
    """

    def __init__(self, source: bytes | AsyncIterable[bytes] | None = None):
        if source is None or isinstance(source, (bytes, bytearray)):
            self._tee = None
            self._data = bytes(source or b"")
        else:
            self._tee = _Tee(source)
            self._data = None
        self.consumed = False

    @classmethod
    def _from_tee(cls, tee: _Tee) -> "BodyStream":
        clone = cls()
        clone._tee = tee
        clone._data = None
        return clone

    def clone(self) -> "BodyStream":
        if self.consumed:
            raise BodyConsumedError("Cannot clone a body that was already read")
        if self._tee is None:
            return BodyStream(self._data)
        return BodyStream._from_tee(self._tee)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        if self.consumed:
            raise BodyConsumedError("Body was already read")
        self.consumed = True
        if self._tee is None:
            if self._data:
                yield self._data
            return
        index = 0
        while True:
            chunk = await self._tee.chunk(index)
            if chunk is None:
                return
            yield chunk
            index += 1

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self.iter_chunks()])

    async def json(self) -> Any:
        return json.loads(await self.read())


def parse_cookie_header(header: str | None) -> dict[str, str]:
    """``"a=1; b=2"`` -> ``{"a": "1", "b": "2"}``. Values may contain ``=``."""
    result: dict[str, str] = {}
    for part in (header or "").split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name:
            result[name] = value
    return result


@dataclass
class RawRequest:
    method: str
    path: str = "/"
    path_params: dict[str, str] = field(default_factory=dict)
    query_string: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] | None = None
    body: BodyStream = field(default_factory=BodyStream)
    route_id: str | None = None
    # Set by the orchestrator once inputs pass validation
    validated: Any = field(default=None, repr=False)

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if self.cookies is None:
            self.cookies = parse_cookie_header(self.headers.get("cookie"))
        if not isinstance(self.body, BodyStream):
            self.body = BodyStream(self.body)

    @property
    def query(self) -> dict[str, str]:
        # Repeated keys keep the last value
        return dict(parse_qsl(self.query_string, keep_blank_values=True))

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


@dataclass
class RawResponse:
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: BodyStream = field(default_factory=BodyStream)

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if not isinstance(self.body, BodyStream):
            self.body = BodyStream(self.body)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def clone(self) -> "RawResponse":
        return RawResponse(status=self.status, headers=dict(self.headers), body=self.body.clone())

    async def json(self) -> Any:
        return await self.body.json()


def json_response(data: Any, status: int = 200, headers: dict[str, str] | None = None) -> RawResponse:
    return RawResponse(
        status=status,
        headers={"content-type": "application/json", **(headers or {})},
        body=json.dumps(data).encode("utf-8"),
    )


class HttpError(Exception):
    """Raised by handlers to produce an error response."""

    def __init__(self, status: int, body: Any = None):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.body = body if body is not None else {"message": "Error"}


def error(status: int, body: Any = None):
    """Raise an HttpError. A string body becomes ``{"message": body}``."""
    if isinstance(body, str):
        body = {"message": body}
    raise HttpError(status, body)


Handler = Callable[[RawRequest], Awaitable[RawResponse]]
