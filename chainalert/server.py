"""
HTTP surface for the webhook pipelines.
"""
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .core.service import AlertService
from .errors import AuthenticationError, ConfigurationError
from .logger import logger


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


async def run_pipeline(pipeline: Optional[Any], provider: str, request: Request) -> JSONResponse:
    """
    Feed one request to a webhook pipeline and map the outcome to a response

    Args:
        pipeline: Pipeline with an async ``handle(body, headers)``, None when disabled
        provider: Provider name for log lines and errors
        request: Incoming request; its raw body is passed on untouched

    Returns:
        JSONResponse: 200 with the result, 401 on bad signatures, 500 on configuration or unexpected errors
    """
    if pipeline is None:
        return error_response(404, f"{provider} webhook disabled")

    body = await request.body()
    try:
        result = await pipeline.handle(body, dict(request.headers))
    except AuthenticationError as e:
        logger.warning(f"Rejected {provider} webhook: {e}")
        return error_response(AuthenticationError.status_code, str(e))
    except ConfigurationError as e:
        logger.error(f"{provider} webhook misconfigured: {e}")
        return error_response(ConfigurationError.status_code, str(e))
    except Exception as e:
        logger.exception(f"Error handling {provider} webhook: {e}")
        return error_response(500, "internal error")

    return JSONResponse(status_code=200, content=result.to_dict())


def create_app(service: AlertService, manage_lifecycle: bool = True) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        service: Alert service providing the webhook pipelines
        manage_lifecycle: Start and stop the service with the app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(title="chainalert", lifespan=lifespan)
    app.state.service = service

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/webhooks/tenderly", response_class=PlainTextResponse)
    async def tenderly_probe():
        return "ok - use POST here"

    @app.post("/webhooks/moralis")
    async def moralis_webhook(request: Request):
        return await run_pipeline(service.moralis, "moralis", request)

    @app.post("/webhooks/tenderly")
    async def tenderly_webhook(request: Request):
        return await run_pipeline(service.tenderly, "tenderly", request)

    return app
