from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobpilot.api import routes_auth, routes_chat, routes_pipeline
from jobpilot.core.config import get_settings
from jobpilot.core.logging import setup_logging

settings = get_settings()
setup_logging(settings.log_level, json_format=settings.log_json)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "service": settings.app_name}


app.include_router(routes_auth.router)
app.include_router(routes_pipeline.router)
app.include_router(routes_chat.router)
