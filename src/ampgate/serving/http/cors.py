"""CORS middleware applying the configured allow-origin to every response."""

from __future__ import annotations

from starlette.datastructures import Headers, MutableHeaders
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

HTTP_NO_CONTENT = 204
ALLOW_ORIGIN = "Access-Control-Allow-Origin"


class PreflightCORSMiddleware(CORSMiddleware):
    """
    Starlette CORS configuration with gateway response rules.

    Every ``OPTIONS`` request is answered here with an empty 204, whether or not it carries
    the preflight request headers. Every other response gets the allow-origin value: ``*``
    when any origin is allowed, else the request origin when it is configured. Origins
    outside the list get no allow-origin header and the browser enforces the refusal.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        request_headers = Headers(scope=scope)
        if scope["method"] == "OPTIONS":
            response = self.preflight_response(request_headers)
            await response(scope, receive, send)
            return
        await self.simple_response(scope, receive, send, request_headers)

    def allow_origin_for(self, origin: str | None) -> str | None:
        """
        Return the allow-origin value for a request origin.

        Returns
        -------
        str | None
            ``*``, the echoed origin, or None when the origin is not allowed.
        """
        if self.allow_all_origins:
            return "*"
        if origin and self.is_allowed_origin(origin=origin):
            return origin
        return None

    def preflight_response(self, request_headers: Headers) -> Response:
        """
        Answer an ``OPTIONS`` request without reaching the routes.

        Returns
        -------
        Response
            Empty 204 response with the allowed methods, headers and origin.
        """
        headers = {
            key: value for key, value in self.preflight_headers.items() if key != ALLOW_ORIGIN
        }
        allow_origin = self.allow_origin_for(request_headers.get("origin"))
        if allow_origin is not None:
            headers[ALLOW_ORIGIN] = allow_origin
        requested_headers = request_headers.get("access-control-request-headers")
        if self.allow_all_headers and requested_headers:
            headers["Access-Control-Allow-Headers"] = requested_headers
        return Response(status_code=HTTP_NO_CONTENT, headers=headers)

    async def simple_response(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        request_headers: Headers,
    ) -> None:
        allow_origin = self.allow_origin_for(request_headers.get("origin"))

        async def send_with_origin(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                for key, value in self.simple_headers.items():
                    if key != ALLOW_ORIGIN:
                        headers[key] = value
                if allow_origin is not None:
                    headers[ALLOW_ORIGIN] = allow_origin
                if not self.allow_all_origins:
                    headers.add_vary_header("Origin")
            await send(message)

        await self.app(scope, receive, send_with_origin)
