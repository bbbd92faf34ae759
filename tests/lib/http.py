"""
Routing table for httpx.MockTransport.

Routes are keyed by method and URL without the query string. Each route holds
a queue of responses: they are served in order and the last one repeats.
A route can also be a callable receiving the httpx.Request.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx

ResponseSpec = Union[Dict[str, Any], Callable[[httpx.Request], httpx.Response]]


def url_key(url: httpx.URL) -> str:
    return f"{url.scheme}://{url.host}{url.path}"


class MockRoutes:
    def __init__(self):
        self._routes: Dict[Tuple[str, str], List[ResponseSpec]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        *,
        status_code: int = 200,
        json: Any = None,
        text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> "MockRoutes":
        entry = {"status_code": status_code, "json": json, "text": text, "headers": headers or {}}
        self._routes.setdefault((method.upper(), url), []).append(entry)
        return self

    def add_handler(self, method: str, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> "MockRoutes":
        self._routes.setdefault((method.upper(), url), []).append(handler)
        return self

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and url_key(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, url_key(request.url)))
        if not queue:
            return httpx.Response(404, json={"error": "no route"})

        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(entry):
            return entry(request)
        if entry["text"] is not None:
            return httpx.Response(entry["status_code"], text=entry["text"], headers=entry["headers"])
        return httpx.Response(entry["status_code"], json=entry["json"], headers=entry["headers"])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
