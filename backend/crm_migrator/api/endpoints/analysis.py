import asyncio

from fastapi import APIRouter, File, HTTPException, UploadFile

from crm_migrator.schemas.analysis import WorkbookAnalysisResponse
from crm_migrator.services.errors import UnsupportedWorkbookError
from crm_migrator.services.workbook_reader import read_workbook
from crm_migrator.services.workbook_report import analyze_workbook

router = APIRouter()

ALLOWED_SUFFIXES = (".xlsx", ".xlsm", ".csv")


@router.post("/migration/analyze", response_model=WorkbookAnalysisResponse)
async def analyze_upload(file: UploadFile = File(...)):
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_SUFFIXES):
        raise HTTPException(status_code=400, detail="Only .xlsx, .xlsm or .csv files are allowed")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="The uploaded file is empty")

    try:
        workbook = await asyncio.to_thread(read_workbook, content, filename)
    except UnsupportedWorkbookError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return WorkbookAnalysisResponse(filename=filename, sheets=analyze_workbook(workbook))
