"""
Analysis router - summary dashboard and chat-style questions.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ledgerbridge import services
from ledgerbridge.models.analysis import AnalysisResponse, Summary
from ledgerbridge.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class ChatRequest(BaseModel):
    message: Optional[str] = Field(default=None, description="Question about the stored data")


@router.get("/summary", response_model=Summary)
async def get_summary():
    """
    Aggregate view of the stored QuickBooks data.
    """
    return services.build_summary()


@router.post("/chat", response_model=AnalysisResponse)
async def chat(request: ChatRequest):
    """
    Answer a question over the stored data.
    Falls back to a templated summary when the model is unavailable.
    """
    try:
        return await services.run_analysis_agent(request.message or "")
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
