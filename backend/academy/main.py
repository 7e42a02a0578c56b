import logging

from fastapi import FastAPI

from .ai_client import build_ai_client
from .db import init_db
from .settings import settings
from .routers import students
from .routers import exams
from .routers import attempts
from .routers import reports

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
# httpx logs every request URL at INFO, which includes the Gemini key in the query string
logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(title="Academy Report API")
app.include_router(students.router)
app.include_router(exams.router)
app.include_router(attempts.router)
app.include_router(reports.router)


@app.get("/info")
def root():
	client = getattr(app.state, "ai_client", None)
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"openai_configured": bool(settings.openai_api_key),
		"ai_providers": client.provider_names if client is not None else [],
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	init_db()
	# One AI client per process, injected into requests via deps.get_ai_client
	app.state.ai_client = build_ai_client(settings)


@app.on_event("shutdown")
async def shutdown_event():
	client = getattr(app.state, "ai_client", None)
	if client is not None:
		await client.aclose()
