from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional, TypeVar, Union

import urllib3
from asyncer import asyncify
from pydantic import TypeAdapter, ValidationError
from urllib3 import HTTPHeaderDict
from urllib3.exceptions import HTTPError as TransportError
from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

if TYPE_CHECKING:
    from urllib3 import BaseHTTPResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

Headers = Iterable[tuple[str, str]]

METHODS = ("GET", "PUT")
DEFAULT_MAX_REDIRECTS = 10

# RFC 7230 token
_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class HttpError(Exception):
    """Base class for every failure raised by :class:`HttpClient`."""


class BuildingRequestError(HttpError):
    pass


class RequestError(HttpError):
    """The transport failed to connect, send, or read the response."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"HTTP request failed: {cause}")
        self.cause = cause


class InvalidUTF8Error(HttpError):
    pass


class ParsingError(HttpError):
    """The response body is not JSON of the requested shape."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"Could not parse response body: {cause}")
        self.cause = cause


class TooManyRedirectsError(HttpError):
    def __init__(self, uri: str, redirects: int) -> None:
        super().__init__(f"Exceeded {redirects} redirects, last location was {uri}")
        self.uri = uri
        self.redirects = redirects


class BodyConsumedError(RuntimeError):
    pass


def _is_visible_ascii(value: str) -> bool:
    return all(char == "\t" or " " <= char <= "~" for char in value)


@dataclass(frozen=True)
class Request:
    method: str
    uri: str
    headers: tuple[tuple[str, str], ...] = ()


def build_request(method: str, uri: str, headers: Headers = ()) -> Request:
    """
    Validate the parts of a request before anything goes over the wire.

    Header pairs are kept in order, duplicates included.

    :raises BuildingRequestError: on an unsupported method, an unparseable
        URI, or a header that cannot be sent as-is. A URI without a host
        parses fine and is left for the transport to reject.
    """
    method = method.upper()
    if method not in METHODS:
        raise BuildingRequestError(f"Unsupported method {method!r}")

    try:
        parse_url(uri)
    except LocationParseError as err:
        raise BuildingRequestError(f"Malformed URI {uri!r}") from err

    pairs = tuple((name, value) for name, value in headers)
    for name, value in pairs:
        if not _HEADER_NAME.match(name):
            raise BuildingRequestError(f"Invalid header name {name!r}")
        if not _is_visible_ascii(value):
            raise BuildingRequestError(f"Invalid value for header {name!r}")

    return Request(method=method, uri=uri, headers=pairs)


class Response:
    """
    A response whose body has not been read yet.

    The body can be aggregated exactly once; after that the underlying
    connection is back in the pool and the stream is gone.
    """

    def __init__(self, raw: BaseHTTPResponse) -> None:
        self.status: int = raw.status
        self.headers: HTTPHeaderDict = raw.headers
        self._raw: Optional[BaseHTTPResponse] = raw

    @property
    def is_redirect(self) -> bool:
        return 300 <= self.status <= 399

    @property
    def consumed(self) -> bool:
        return self._raw is None

    def _take(self) -> BaseHTTPResponse:
        if self._raw is None:
            raise BodyConsumedError("Response body was already read")

        raw, self._raw = self._raw, None
        return raw

    async def aggregate(self) -> bytes:
        raw = self._take()
        try:
            return await asyncify(raw.read)()
        except (TransportError, OSError) as err:
            raise RequestError(err) from err
        finally:
            raw.release_conn()

    async def release(self) -> None:
        """Discard an unread body so the connection can be reused."""
        raw = self._take()
        await asyncify(raw.drain_conn)()
        raw.release_conn()


class Transport:
    """Pooled urllib3 transport. Redirects and retries are left to the caller."""

    def __init__(
        self,
        pool: Optional[urllib3.PoolManager] = None,
        timeout: Union[float, urllib3.Timeout, None] = None,
    ) -> None:
        self.pool = pool or urllib3.PoolManager()
        self.timeout = timeout

    async def send(self, request: Request) -> BaseHTTPResponse:
        headers = HTTPHeaderDict()
        for name, value in request.headers:
            headers.add(name, value)

        options: dict[str, Any] = {}
        if self.timeout is not None:
            options["timeout"] = self.timeout

        return await asyncify(self.pool.request)(
            request.method,
            request.uri,
            headers=headers,
            redirect=False,
            retries=False,
            preload_content=False,
            **options,
        )


class HttpClient:
    """
    Small async HTTP client for talking to metadata services.

    Every call fully buffers the response body. Redirects are followed by
    appending the ``Location`` value to the URI that was requested, which is
    only correct for the relative-path redirects metadata services issue.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
    ) -> None:
        self.transport = transport or Transport()
        self.max_redirects = max(max_redirects, 0)

    async def request(self, method: str, uri: str, headers: Headers = ()) -> Response:
        """
        Execute a request and return the response with its body unread.

        4xx and 5xx responses are returned like any other; only redirects are
        acted on.
        """
        return await self._send(build_request(method, uri, headers), redirects=0)

    async def _send(self, request: Request, redirects: int) -> Response:
        logger.debug(f"{request.method} {request.uri}")
        try:
            response = Response(await self.transport.send(request))
        except (TransportError, OSError) as err:
            raise RequestError(err) from err

        if not response.is_redirect:
            return response

        locations = response.headers.getlist("Location")
        if not locations:
            return response

        await response.release()

        location = locations[0]
        if not _is_visible_ascii(location):
            raise BuildingRequestError("Redirect Location header is not valid text")

        uri = request.uri + location
        if redirects >= self.max_redirects:
            raise TooManyRedirectsError(uri, redirects)

        logger.debug(f"Following {response.status} redirect to {uri}")
        return await self._send(
            build_request(request.method, uri, request.headers),
            redirects=redirects + 1,
        )

    async def request_and_read_string(
        self, method: str, uri: str, headers: Headers = ()
    ) -> str:
        response = await self.request(method, uri, headers)
        body = await response.aggregate()

        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as err:
            raise InvalidUTF8Error(f"Response from {uri} is not valid UTF-8") from err

    async def get_and_read_string(self, uri: str, headers: Headers = ()) -> str:
        return await self.request_and_read_string("GET", uri, headers)

    async def put_and_read_string(self, uri: str, headers: Headers = ()) -> str:
        return await self.request_and_read_string("PUT", uri, headers)

    async def get_and_deserialize_json(
        self, uri: str, shape: type[T], headers: Headers = ()
    ) -> T:
        """
        GET ``uri`` and validate the JSON body against ``shape``.

        ``shape`` is anything pydantic can build a ``TypeAdapter`` for: a
        model, a ``TypedDict``, ``dict[str, Any]`` and so on.

        :raises ParsingError: if the body is not JSON or does not fit ``shape``.
        """
        response = await self.request("GET", uri, headers)
        body = await response.aggregate()

        try:
            return TypeAdapter(shape).validate_json(body)
        except ValidationError as err:
            raise ParsingError(err) from err
