"""Local dashboard API.

Every request reads the customer's account through the deployed role, using
credentials from the :class:`CredentialBroker`.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from mailstack.aws.clients import create_client_with_credentials
from mailstack.aws_credentials import CredentialBroker, STSCredentialError
from mailstack.config import Settings, load_settings
from mailstack.console import queries
from mailstack.errors import MailstackError, wrap_client_error
from mailstack.utils.serialization import dumps

logger = logging.getLogger(__name__)

_EXEMPT_PATHS = frozenset({"/health"})

_STATUS_BY_CODE = {
    "access_denied": 403,
    "invalid_credentials": 401,
    "no_credentials": 401,
    "resource_not_found": 404,
    "not_found": 404,
}


def json_response(data: Any, status_code: int = 200) -> Response:
    # History items carry Decimal values.
    return Response(
        content=dumps(data, indent=None),
        status_code=status_code,
        media_type="application/json",
    )


def error_response(error: MailstackError, status_code: int | None = None) -> Response:
    status = status_code or _STATUS_BY_CODE.get(error.code, 502)
    return json_response({"error": error.to_dict()}, status)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response


class TokenGuardMiddleware(BaseHTTPMiddleware):
    """Require the session token printed at startup on every API call."""

    def __init__(self, app: Callable, token: str) -> None:
        super().__init__(app)
        self._token = token

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)
        header = request.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            supplied = header[7:]
        else:
            supplied = request.query_params.get("token", "")
        if not hmac.compare_digest(supplied.encode(), self._token.encode()):
            return json_response(
                {"error": {"code": "unauthorized", "message": "Missing or invalid console token"}},
                401,
            )
        return await call_next(request)


def _int_param(request: Request, name: str, default: int, low: int, high: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise MailstackError(f"{name} must be an integer", code="invalid_parameter") from None
    return max(low, min(high, value))


def _optional_int(request: Request, name: str) -> int | None:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise MailstackError(f"{name} must be an integer", code="invalid_parameter") from None


def create_console_app(
    broker: CredentialBroker,
    role_arn: str,
    region: str,
    external_id: str | None = None,
    table_name: str | None = None,
    account_id: str | None = None,
    token: str | None = None,
    settings: Settings | None = None,
    client_factory: Callable[..., Any] = create_client_with_credentials,
) -> Starlette:
    settings = settings or load_settings()

    async def run_query(action: str, service: str, call: Callable[[Any], Any]) -> Response:
        try:
            credentials = await broker.get_credentials(role_arn, external_id)
            aws = client_factory(service, region, credentials.as_boto3_kwargs(), settings)
            return json_response(await asyncio.to_thread(call, aws))
        except STSCredentialError as exc:
            logger.warning("Could not assume %s: %s", role_arn, exc)
            return json_response({"error": {"code": exc.code, "message": str(exc)}}, 403)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("%s failed: %s", action, exc)
            return error_response(wrap_client_error(exc, action))

    async def health(request: Request) -> Response:
        return json_response({"status": "ok", "region": region})

    async def metrics(request: Request) -> Response:
        try:
            days = _int_param(request, "days", 7, 1, queries.MAX_METRIC_DAYS)
        except MailstackError as exc:
            return error_response(exc, 400)
        return await run_query(
            "cloudwatch:GetMetricData",
            "cloudwatch",
            lambda cloudwatch: queries.fetch_metrics(cloudwatch, days),
        )

    async def quota(request: Request) -> Response:
        return await run_query("sesv2:GetAccount", "sesv2", queries.fetch_quota)

    async def emails(request: Request) -> Response:
        if not table_name:
            return json_response(
                {
                    "error": {
                        "code": "history_disabled",
                        "message": "Email history is not enabled for this deployment",
                        "suggestion": "Run 'mailstack upgrade --enable history'",
                    }
                },
                400,
            )
        try:
            limit = _int_param(request, "limit", queries.DEFAULT_LOG_LIMIT, 1, 1000)
            start_time = _optional_int(request, "startTime")
            end_time = _optional_int(request, "endTime")
        except MailstackError as exc:
            return error_response(exc, 400)
        return await run_query(
            "dynamodb:Query",
            "dynamodb",
            lambda dynamodb: {
                "logs": queries.fetch_email_log(
                    dynamodb,
                    table_name,
                    account_id=account_id,
                    limit=limit,
                    start_time=start_time,
                    end_time=end_time,
                )
            },
        )

    routes = [
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/api/metrics", endpoint=metrics, methods=["GET"]),
        Route("/api/quota", endpoint=quota, methods=["GET"]),
        Route("/api/emails", endpoint=emails, methods=["GET"]),
    ]

    middleware = [Middleware(SecurityHeadersMiddleware)]
    if token:
        middleware.append(Middleware(TokenGuardMiddleware, token=token))

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Console serving %s in %s", role_arn, region)
        yield
        await broker.invalidate(role_arn, external_id)

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)


def serve(app: Starlette, host: str, port: int) -> None:
    try:
        import uvicorn
    except ImportError as exc:
        raise RuntimeError("uvicorn is required to run the console") from exc

    # The dashboard API is plain JSON over HTTP; no websocket endpoints.
    uvicorn.run(app, host=host, port=port, ws="none", log_config=None)
