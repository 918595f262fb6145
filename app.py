"""
app.py - HTTP surface over the NLP bus: health, metrics and an analyze gateway
"""
from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from contextlib import asynccontextmanager

from prometheus_client import CONTENT_TYPE_LATEST

from config import settings
from client import NlpClient
from errors import ReplyError
from service import NlpService, create_service
from metrics import get_metrics
from logger import configure_root_logger, get_logger

logger = get_logger(__name__)

# Failure reply kind -> HTTP status
ERROR_STATUS = {
    "CodecError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "IndexError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NotFoundError": status.HTTP_404_NOT_FOUND,
    "ModelError": status.HTTP_503_SERVICE_UNAVAILABLE,
    "NoHandlers": status.HTTP_503_SERVICE_UNAVAILABLE,
    "Timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


class AnalyzeRequest(BaseModel):
    text: str = Field(..., max_length=settings.get('max_text_length', 100000))


class ReferenceRequest(BaseModel):
    identifier: str = Field(..., min_length=1)


class ReferenceResponse(BaseModel):
    identifier: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str
    environment: str
    models: str
    topics: List[str]
    reference_store: Optional[str] = None
    reference_store_available: Optional[bool] = None


def _raise_for_reply(error: ReplyError):
    code = ERROR_STATUS.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(status_code=code, detail={"kind": error.kind, "message": error.message})


def create_app(service: Optional[NlpService] = None) -> FastAPI:
    """Build the FastAPI app; the service is started and stopped with it"""
    configure_root_logger()
    service = service or create_service()
    client = NlpClient(service.bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await service.start()
        except Exception as e:
            logger.critical(f"Service startup failed: {e}")
            raise
        yield
        await service.stop()

    app = FastAPI(
        title=settings.get('app_name', 'NLP Bus Service'),
        version=settings.get('version', '1.0.0'),
        lifespan=lifespan,
        docs_url="/api/docs" if settings.get('debug') else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.get('debug') else None
    )
    app.state.service = service

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Health check with model port and topic status"""
        details = await service.health()
        return HealthResponse(
            status=details["status"],
            version=settings.get('version', '1.0.0'),
            timestamp=datetime.utcnow().isoformat(),
            environment=settings.get('environment', 'production'),
            models=details["models"],
            topics=details["topics"],
            reference_store=details["reference_store"],
            reference_store_available=details["reference_store_available"],
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """Prometheus metrics endpoint"""
        if not settings.enable_metrics:
            raise HTTPException(status_code=404)

        return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/analyze", tags=["NLP"])
    async def analyze(request: AnalyzeRequest) -> Dict[str, Any]:
        """Analyze inline text through the bus"""
        try:
            analyzed = await client.analyze(request.text)
        except ReplyError as e:
            _raise_for_reply(e)
        return analyzed.to_dict()

    @app.post("/analyze/reference", response_model=ReferenceResponse, tags=["NLP"])
    async def analyze_reference(request: ReferenceRequest):
        """Analyze text previously written to the reference store"""
        try:
            identifier = await client.analyze_reference(request.identifier)
        except ReplyError as e:
            _raise_for_reply(e)
        return ReferenceResponse(identifier=identifier)

    return app


if __name__ == "__main__":
    import uvicorn

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
            },
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["default"],
        },
    }

    # Single worker: the model port and the bus live in this process
    uvicorn.run(
        "app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=log_config,
        reload=(settings.environment == "development"),
    )
