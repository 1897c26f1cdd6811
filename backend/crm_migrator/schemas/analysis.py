from pydantic import BaseModel
from typing import List, Optional


class ColumnProfileOut(BaseModel):
    index: int
    header: str
    dataType: str
    sampleValues: List[str]
    nonEmptyCount: int


class MappingSuggestionOut(BaseModel):
    sourceColumn: str
    columnIndex: int
    targetField: str
    confidenceTier: str
    reason: str


class DuplicateOut(BaseModel):
    fields: List[str]
    value: str
    rowNumbers: List[int]


class MissingRequiredOut(BaseModel):
    field: str
    rowNumbers: List[int]


class InvalidFormatOut(BaseModel):
    field: str
    row: int
    value: str
    message: str


class OrphanReferenceOut(BaseModel):
    field: str
    targetEntity: str
    row: int
    value: str


class IntegrityReportOut(BaseModel):
    checkedRows: int
    issueCount: int
    duplicates: List[DuplicateOut] = []
    missingRequired: List[MissingRequiredOut] = []
    invalidFormats: List[InvalidFormatOut] = []
    orphanReferences: List[OrphanReferenceOut] = []
    truncated: bool = False


class SheetAnalysis(BaseModel):
    name: str
    skipped: bool
    reason: Optional[str] = None
    entity: Optional[str] = None
    headerRowIndex: Optional[int] = None
    dataStartRow: Optional[int] = None
    totalRows: Optional[int] = None
    dataRows: Optional[int] = None
    headers: List[str] = []
    columnProfiles: List[ColumnProfileOut] = []
    suggestions: List[MappingSuggestionOut] = []
    integrity: Optional[IntegrityReportOut] = None


class WorkbookAnalysisResponse(BaseModel):
    filename: str
    sheets: List[SheetAnalysis]
