"""Open CORS for the live preview surface.

Preview routes are embedded in iframes on arbitrary origins, so they answer
with ``Access-Control-Allow-Origin: *`` regardless of the app-wide CORS
allow-list. Preflight requests are answered here without reaching the router.

Must be the outermost middleware so the app-wide CORSMiddleware never rejects
a preflight from an origin outside its list.
"""

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

PREVIEW_CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "GET, POST, OPTIONS",
    "access-control-allow-headers": "*",
    "access-control-max-age": "600",
}


class PreviewCORSMiddleware:
    """ASGI middleware applying ``*`` CORS to paths under ``path_prefix``."""

    def __init__(self, app: ASGIApp, path_prefix: str = "/api/preview") -> None:
        self.app = app
        self.path_prefix = path_prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope.get("path", "").startswith(self.path_prefix):
            await self.app(scope, receive, send)
            return

        if scope.get("method") == "OPTIONS":
            await send({
                "type": "http.response.start",
                "status": 204,
                "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in PREVIEW_CORS_HEADERS.items()],
            })
            await send({"type": "http.response.body", "body": b""})
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                # Replace any credentialed, origin-specific headers from the app-wide policy
                for key in list(headers.keys()):
                    if key.startswith("access-control-"):
                        del headers[key]
                for key, value in PREVIEW_CORS_HEADERS.items():
                    headers[key] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)
