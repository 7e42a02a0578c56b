from __future__ import annotations
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .ai_client import AIAnalysisClient, build_ai_client
from .db import get_db
from .pipeline import ReportPipeline


def get_ai_client(request: Request) -> AIAnalysisClient:
	# Built once at startup; lazily here when the app is used without lifespan events
	client = getattr(request.app.state, "ai_client", None)
	if client is None:
		client = build_ai_client()
		request.app.state.ai_client = client
	return client


def get_pipeline(db: Session = Depends(get_db), ai_client: AIAnalysisClient = Depends(get_ai_client)) -> ReportPipeline:
	return ReportPipeline(db, ai_client)
