import io
from typing import Callable, Union

import pytest
import urllib3

from aws_metadata_creds.client import HttpClient, Request

Reply = tuple[int, dict[str, str], bytes]


class FakeTransport:
    """Answers requests from a handler instead of the network."""

    def __init__(self, handler: Callable[[Request], Union[Reply, Exception]]):
        self.handler = handler
        self.sent: list[Request] = []

    async def send(self, request: Request) -> urllib3.HTTPResponse:
        self.sent.append(request)
        reply = self.handler(request)
        if isinstance(reply, Exception):
            raise reply

        status, headers, body = reply
        return urllib3.HTTPResponse(
            body=body if hasattr(body, "read") else io.BytesIO(body),
            headers=headers,
            status=status,
            preload_content=False,
        )


def routes(table: dict[tuple[str, str], Union[Reply, Exception]]):
    def handler(request: Request):
        return table[(request.method, request.uri)]

    return handler


@pytest.fixture
def fake_client():
    def make(table, **kwargs):
        transport = FakeTransport(table if callable(table) else routes(table))
        return HttpClient(transport=transport, **kwargs), transport

    return make
