"""
Client for the external medical-analysis service.

The service takes a multipart upload (field ``file``) and answers with
``{status, analysis, recommendations[], riskLevel, confidence}``. Access is
gated and successful calls are audited the same way as the envelope codec.
"""
import logging
from typing import List, Literal, Optional

import requests
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from audit import record_audit
from config import ANALYSIS_URL, ANALYSIS_TIMEOUT_SECONDS
from errors import AnalysisUnavailable
from gate import require_codec_access
from models import User

logger = logging.getLogger("medsecure.analysis")


class AnalysisResult(BaseModel):
    status: str
    analysis: str
    recommendations: List[str] = []
    riskLevel: Optional[Literal["low", "medium", "high"]] = None
    confidence: Optional[float] = None


def request_analysis(file_name: str, data: bytes, mime_type: str = "",
                     url: str = ANALYSIS_URL, timeout: float = ANALYSIS_TIMEOUT_SECONDS) -> AnalysisResult:
    files = {"file": (file_name, data, mime_type or "application/octet-stream")}
    try:
        resp = requests.post(url, files=files, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("analysis service unreachable: %s", e)
        raise AnalysisUnavailable() from e
    if not resp.ok:
        raise AnalysisUnavailable(f"Analysis failed: {resp.status_code} {resp.reason}")
    try:
        return AnalysisResult.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        raise AnalysisUnavailable("Analysis service returned an unexpected response.") from e


def analyze_file(db: Session, user: User, file_name: str, data: bytes, mime_type: str = "", **kwargs) -> AnalysisResult:
    require_codec_access(user)
    result = request_analysis(file_name, data, mime_type, **kwargs)
    record_audit(db, user.id, f"Medical analysis performed on file: {file_name}", {
        "fileName": file_name,
        "fileSize": len(data),
        "action": "medical_analysis",
        "riskLevel": result.riskLevel,
    })
    return result
