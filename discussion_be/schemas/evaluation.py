from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional

# rubric categories: (name used in the scoring prompt/response, evaluation column prefix)
CATEGORIES = (
    ("Pronunciation & Delivery", "pronunciation_delivery"),
    ("Communication Strategies", "communication_strategies"),
    ("Vocabulary & Language Patterns", "vocabulary_patterns"),
    ("Ideas & Organization", "ideas_organization"),
)

# -- scoring service response --

class CategoryScore(BaseModel):
    score: int = Field(..., ge=0, le=7)
    comment: str = ""

class ParticipantScores(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pronunciation_delivery: CategoryScore = Field(..., alias="Pronunciation & Delivery")
    communication_strategies: CategoryScore = Field(..., alias="Communication Strategies")
    vocabulary_patterns: CategoryScore = Field(..., alias="Vocabulary & Language Patterns")
    ideas_organization: CategoryScore = Field(..., alias="Ideas & Organization")

class ScoringResponse(BaseModel):
    participants: Dict[str, ParticipantScores]


# -- API --

class EvaluateRequest(BaseModel):
    session_id: Optional[str] = None

class EvaluationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    user_id: str
    participant: str
    pronunciation_delivery_score: int
    pronunciation_delivery_comment: Optional[str] = None
    communication_strategies_score: int
    communication_strategies_comment: Optional[str] = None
    vocabulary_patterns_score: int
    vocabulary_patterns_comment: Optional[str] = None
    ideas_organization_score: int
    ideas_organization_comment: Optional[str] = None

class EvaluationListResponse(BaseModel):
    session_id: str
    status: str
    evaluations: List[EvaluationOut]
