import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from errors import NodeNotFound, WebhookError
from rate_limit import FixedWindowRateLimiter
from repo_conversions import ConversionRepo
from service_webhooks import WebhookService, check_headers
from settings import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Webhook Conversion Ingest")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

# Instantiate the repo + service here so the routes remain thin. Tests
# swap the service through `app.dependency_overrides[get_service]`.
repo = ConversionRepo()
limiter = FixedWindowRateLimiter(window_seconds=settings.rate_limit_window_seconds)
svc = WebhookService(repo, limiter)


def get_service() -> WebhookService:
    return svc


def error_response(error: WebhookError) -> JSONResponse:
    return JSONResponse(
        {"error": error.message, "reason": error.reason},
        status_code=error.status_code,
        headers=CORS_HEADERS,
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("cf-connecting-ip") or request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "0.0.0.0"


@app.get("/health")
def health(service: WebhookService = Depends(get_service)):
    try:
        service.health_check()
        return JSONResponse({"ok": True}, headers=CORS_HEADERS)
    except Exception as e:
        logger.error("DB health check failed: %s", e)
        return JSONResponse(
            {"error": f"DB health check failed: {e}", "reason": "downstream_failure"},
            status_code=500,
            headers=CORS_HEADERS,
        )


@app.options("/{path:path}")
def preflight(path: str):
    return Response(status_code=204, headers=CORS_HEADERS)


@app.post("/webhook/{workspace_id}/{node_id}/{token}")
async def webhook(
    workspace_id: str,
    node_id: str,
    token: str,
    request: Request,
    service: WebhookService = Depends(get_service),
):
    try:
        check_headers(request.headers.get("content-type"), request.headers.get("content-length"))
        body = await request.body()
        await run_in_threadpool(
            service.ingest,
            workspace_id,
            node_id,
            token,
            body,
            client_ip(request),
        )
    except WebhookError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled error while ingesting webhook for node %s", node_id)
        return error_response(WebhookError("Internal error"))
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
def not_found(path: str):
    return error_response(NodeNotFound("Not found"))
