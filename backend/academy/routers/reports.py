from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import HTMLResponse

from ..deps import get_pipeline
from ..errors import AcademyError
from ..pipeline import ReportPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("/generate/{attempt_id}")
async def generate_report(
	attempt_id: str,
	response: Response,
	force: bool = False,
	pipeline: ReportPipeline = Depends(get_pipeline),
):
	try:
		report, created = await pipeline.generate_report(attempt_id, force=force)
	except AcademyError as e:
		if e.status_code == 429:
			logger.warning("Report generation for %s rate limited", attempt_id)
		raise HTTPException(status_code=e.status_code, detail=str(e))
	except Exception as e:
		logger.exception("Report generation for %s failed", attempt_id)
		raise HTTPException(status_code=500, detail=f"Report generation failed: {e}")
	response.status_code = 201 if created else 200
	return report.to_dict()


@router.get("/{attempt_id}")
def get_report(attempt_id: str, pipeline: ReportPipeline = Depends(get_pipeline)):
	report = pipeline.find_report(attempt_id)
	if report is None:
		raise HTTPException(status_code=404, detail="Report not found")
	return report.to_dict()


@router.get("/{attempt_id}/html", response_class=HTMLResponse)
def get_report_html(attempt_id: str, pipeline: ReportPipeline = Depends(get_pipeline)):
	report = pipeline.find_report(attempt_id)
	if report is None:
		raise HTTPException(status_code=404, detail="Report not found")
	return HTMLResponse(content=report.html_content or "")


@router.delete("/{attempt_id}")
def delete_report(attempt_id: str, pipeline: ReportPipeline = Depends(get_pipeline)):
	try:
		pipeline.delete_report(attempt_id)
	except AcademyError as e:
		raise HTTPException(status_code=e.status_code, detail=str(e))
	return {"ok": True}
