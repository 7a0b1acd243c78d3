# discussion_be/services/evaluation.py
"""
Rubric scoring of a merged discussion transcript.

One chat completion scores every participant on the four rubric
categories. The response is validated as a whole before anything is
written: either every mapped participant gets a row, or none does.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from openai import OpenAI
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from discussion_be.config import settings
from discussion_be.db.session import SessionLocal
from discussion_be.models.evaluations import Evaluation
from discussion_be.models.rubric import Rubric, TopicPrompt
from discussion_be.schemas.evaluation import CATEGORIES, ScoringResponse
from discussion_be.services import session_state as sm
from discussion_be.services.errors import AlreadyHandled, InvalidScoringResponse, PreconditionFailed
from discussion_be.services.session_service import get_session_or_404, speaker_labels
from discussion_be.services.transcripts import get_merged_transcript

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are an HKDSE speaking test examiner. "
    "Score each candidate's speaking performance based on the official rubric. "
    "Return only a JSON object with no additional text."
)


def build_user_prompt(topic: str, transcript: str, rubric: str, labels: Sequence[str]) -> str:
    label_list = ", ".join(labels)
    category_lines = "\n".join(f"{i}. {name}" for i, (name, _) in enumerate(CATEGORIES, start=1))
    example = ",\n".join(
        f'            "{name}": {{"score": integer, "comment": "Explanation"}}' for name, _ in CATEGORIES
    )
    return f"""
The assigned topic for discussion was:
{topic}

Here is the transcribed discussion. Each line starts with the speaker label:
{transcript}

Please evaluate each participant ({label_list}) based on the HKDSE rubric:
{rubric}

For each participant, analyze the following four criteria independently:
{category_lines}

Do NOT assume the scores should be similar across all categories.

Scoring instructions:
- Assign an integer from 0 to 7 for each category.
- Provide a brief but meaningful explanation for each score.
- Ensure the score follows the rubric criteria.

Return the results in valid JSON format:
{{
    "participants": {{
        "<label>": {{
{example}
        }}
    }}
}}
with one entry for each of: {label_list}.
"""


class OpenAIScorer:
    """Scoring service client. Stateless between calls."""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.openai_model

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.scoring_timeout_seconds,
            )
        return self._client

    def score(self, topic: str, transcript: str, rubric: str, labels: Sequence[str]) -> str:
        completion = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=0.2,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(topic, transcript, rubric, labels)},
            ],
        )
        return completion.choices[0].message.content or ""


def parse_scoring_response(raw: str) -> ScoringResponse:
    if not raw or not raw.strip():
        raise InvalidScoringResponse("scoring service returned an empty response", raw=raw)
    try:
        return ScoringResponse.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidScoringResponse(f"unparseable scoring response: {e.error_count()} error(s)", raw=raw) from e


@dataclass
class EvaluationResult:
    session_id: str
    evaluations: List[Evaluation] = field(default_factory=list)
    skipped_labels: List[str] = field(default_factory=list)


class EvaluationPipeline:

    def __init__(self, scorer=None):
        self.scorer = scorer or OpenAIScorer()

    def load_inputs(self, db: Session, session_id: str) -> Dict:
        session = get_session_or_404(db, session_id)

        topic = (session.test_topic or "").strip()
        if not topic:
            raise PreconditionFailed("session has no test topic")
        prompt = db.execute(
            select(TopicPrompt.content).where(TopicPrompt.test_topic == topic)
        ).scalar_one_or_none()

        rubric = db.execute(select(Rubric.content).order_by(Rubric.id).limit(1)).scalar_one_or_none()
        if not rubric:
            raise PreconditionFailed("rubric not found")

        merged = get_merged_transcript(db, session_id)
        if merged is None:
            raise PreconditionFailed("merged transcript not found")

        labels = speaker_labels(db, session_id)  # user_id -> label
        if not labels:
            raise PreconditionFailed("session has no human participants to score")

        return {
            "topic": prompt or topic,
            "rubric": rubric,
            "transcript": merged.merged_transcript,
            "user_by_label": {label: user_id for user_id, label in labels.items()},
        }

    def evaluate(self, db: Session, session_id: str) -> EvaluationResult:
        """
        Raises:
            AlreadyHandled: rows already exist for this session
            PreconditionFailed, InvalidScoringResponse: nothing is written
        """
        existing = db.execute(
            select(Evaluation.id).where(Evaluation.session_id == session_id).limit(1)
        ).first()
        if existing is not None:
            raise AlreadyHandled("session already evaluated")

        inputs = self.load_inputs(db, session_id)
        user_by_label = inputs["user_by_label"]
        labels = sorted(user_by_label)

        logger.info("[EVAL] session=%s scoring labels=%s", session_id, labels)
        raw = self.scorer.score(inputs["topic"], inputs["transcript"], inputs["rubric"], labels)
        parsed = parse_scoring_response(raw)

        missing = [label for label in labels if label not in parsed.participants]
        if missing:
            raise InvalidScoringResponse(f"scoring response missing participants {missing}", raw=raw)

        result = EvaluationResult(session_id=session_id)
        for label in sorted(parsed.participants):
            user_id = user_by_label.get(label)
            if user_id is None:
                logger.warning("[EVAL] session=%s label %s has no participant, skipped", session_id, label)
                result.skipped_labels.append(label)
                continue

            scores = parsed.participants[label]
            row = Evaluation(session_id=session_id, user_id=user_id, participant=label)
            for _, prefix in CATEGORIES:
                category = getattr(scores, prefix)
                setattr(row, f"{prefix}_score", category.score)
                setattr(row, f"{prefix}_comment", category.comment)
            result.evaluations.append(row)

        db.add_all(result.evaluations)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise AlreadyHandled("session already evaluated")

        sm.advance_if(db, session_id, sm.DISCUSSION, sm.EVALUATION)
        sm.advance_if(db, session_id, sm.EVALUATION, sm.COMPLETED)
        logger.info("[EVAL] session=%s stored %d evaluations", session_id, len(result.evaluations))
        return result


def list_evaluations(db: Session, session_id: str) -> List[Evaluation]:
    return list(db.execute(
        select(Evaluation).where(Evaluation.session_id == session_id).order_by(Evaluation.participant)
    ).scalars())


def run_evaluation(pipeline: EvaluationPipeline, session_id: str) -> None:
    """Background entry point: own DB session, failures logged, never raised."""
    with SessionLocal() as db:
        try:
            pipeline.evaluate(db, session_id)
        except AlreadyHandled as e:
            logger.info("[EVAL] session=%s skipped: %s", session_id, e)
        except Exception:
            db.rollback()
            logger.exception("[EVAL] session=%s evaluation failed", session_id)
