from typing import List

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..settings import Settings, get_settings
from .routers import items as items_router

openapi_tags = [
    {"name": "health", "description": "Reachability probe used by offline clients."},
    {
        "name": "items",
        "description": "Weekly note/link items: CRUD, soft delete and bulk week transitions.",
    },
]


def _cors_origins(settings: Settings) -> List[str]:
    """An empty origin list opens the service to every origin."""
    origins = [o for o in settings.cors_allow_origins if o != "*"]
    if not origins or "*" in settings.cors_allow_origins:
        return ["*"]
    return origins


app = FastAPI(
    title="SendNotes Item Service",
    description="Remote source of truth for weekly note/link items synced by offline clients.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(get_settings()),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Bad item payloads and query filters share one 422 envelope: error, message, detail."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """Answer 200 so `http_probe` reports the service reachable."""
    return {"message": "Healthy"}


app.include_router(items_router.router)
