import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .agent import AgentFactory, default_agent_factory
from .config import GatewaySettings, load_settings
from .fallback import AllModelsFailedError, ModelFallbackRunner, describe_error
from .llm import LLMClient
from .schemas import HealthResponse, ResearchRequest
from .tavily import TavilyClient
from .tools import build_default_toolbox

logger = logging.getLogger("uvicorn.error")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}
MISSING_QUERY = "Missing required field: query"


def get_settings(request: Request) -> GatewaySettings:
    return request.app.state.settings


def get_runner(request: Request) -> ModelFallbackRunner:
    # One runner per request; nothing is shared between orchestrations.
    return ModelFallbackRunner(request.app.state.agent_factory)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def sse_format(event: dict) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


def parse_research_request(body: Any) -> ResearchRequest:
    if not isinstance(body, dict):
        body = {}
    try:
        payload = ResearchRequest(**body)
    except ValidationError as exc:
        fields = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
        if "query" in fields:
            raise HTTPException(status_code=400, detail=MISSING_QUERY)
        raise HTTPException(status_code=400, detail=f"Invalid request: {', '.join(sorted(fields))}")
    if not payload.query or not payload.query.strip():
        raise HTTPException(status_code=400, detail=MISSING_QUERY)
    return payload


def resolve_max_iterations(payload: ResearchRequest, settings: GatewaySettings) -> int:
    return payload.maxIterations or settings.max_iterations_default


router = APIRouter()


@router.get("/api/health")
async def health(settings: GatewaySettings = Depends(get_settings)):
    chain = settings.model_chain()
    return HealthResponse(primaryModel=chain[0], fallbackModels=chain[1:]).model_dump()


@router.post("/api/research")
async def research(
    request: Request,
    settings: GatewaySettings = Depends(get_settings),
    runner: ModelFallbackRunner = Depends(get_runner),
):
    try:
        body = await request.json()
        payload = parse_research_request(body)
        chain = settings.model_chain(payload.model)
        max_iterations = resolve_max_iterations(payload, settings)
        result = await runner.run(payload.query, chain, max_iterations)
    except HTTPException:
        raise
    except AllModelsFailedError as exc:
        return error_response(500, str(exc))
    except Exception as exc:
        logger.exception("[research] request failed before orchestration")
        return error_response(500, describe_error(exc))
    return result.model_dump()


@router.post("/api/research/stream")
async def research_stream(
    request: Request,
    settings: GatewaySettings = Depends(get_settings),
    runner: ModelFallbackRunner = Depends(get_runner),
):
    try:
        body = await request.json()
    except Exception as exc:
        return error_response(500, describe_error(exc))
    payload = parse_research_request(body)
    chain = settings.model_chain(payload.model)
    max_iterations = resolve_max_iterations(payload, settings)

    async def event_generator():
        async for event in runner.stream(payload.query, chain, max_iterations):
            yield sse_format(event)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code in (404, 405):
        return error_response(404, "Not found")
    return error_response(exc.status_code, str(exc.detail))


async def cors_middleware(request: Request, call_next):
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


def log_model_chain(settings: GatewaySettings) -> None:
    chain = settings.model_chain()
    logger.info("Research gateway running on port %s", settings.port)
    logger.info("  Primary model: %s", chain[0])
    if len(chain) > 1:
        logger.info("  Fallback models: %s", " -> ".join(chain[1:]))


def create_app(
    settings: GatewaySettings,
    *,
    agent_factory: Optional[AgentFactory] = None,
    llm_client: Optional[LLMClient] = None,
    tavily_client: Optional[TavilyClient] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_model_chain(app.state.settings)
        try:
            yield
        finally:
            await app.state.llm_client.close()
            await app.state.tavily_client.close()

    app = FastAPI(title="Research Gateway", lifespan=lifespan)
    app.state.settings = settings
    app.state.llm_client = llm_client or LLMClient(
        settings.llm_base_url, api_key=settings.llm_api_key, timeout=settings.llm_timeout_s
    )
    app.state.tavily_client = tavily_client or TavilyClient(settings.tavily_api_key)
    app.state.toolbox = build_default_toolbox(app.state.tavily_client)
    app.state.agent_factory = agent_factory or default_agent_factory(app.state.llm_client, app.state.toolbox)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.middleware("http")(cors_middleware)
    app.include_router(router)
    return app


app = create_app(load_settings())


def main() -> None:
    import uvicorn

    settings = app.state.settings
    try:
        uvicorn.run("research_gateway.main:app", host=settings.host, port=settings.port)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
