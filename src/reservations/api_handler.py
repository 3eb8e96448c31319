from __future__ import annotations

from typing import Any

from aws_lambda_powertools import Logger
from mangum import Mangum
from mangum.types import LambdaContext

from .api import app, metrics

logger = Logger()
handler = Mangum(app, lifespan="off")


def _with_local_request_context(event: dict[str, Any]) -> dict[str, Any]:
    # API Gateway fills these in; local invocations and tests often omit them
    if event.get("version") == "2.0":
        request_context = event.setdefault("requestContext", {})
        http_ctx = request_context.setdefault("http", {})
        http_ctx.setdefault("sourceIp", "127.0.0.1")
        http_ctx.setdefault("userAgent", "local")
        request_context.setdefault("stage", "$default")
    return event


@metrics.log_metrics
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> Any:
    if isinstance(event, dict):
        event = _with_local_request_context(event)
    return handler(event, context)
