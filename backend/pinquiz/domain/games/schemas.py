"""Pydantic schemas for the games API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from pinquiz.domain.games import models


class GameCreateRequest(BaseModel):
    activity_id: str = Field(..., min_length=1)
    activity_type: str = Field(..., pattern="^(quiz|poll|ranking|thoughts-gathering|presentation)$")


class JoinRequest(BaseModel):
    pin: str = Field(..., min_length=6, max_length=12)
    nickname: str = Field(..., min_length=1, max_length=60)


class SlideRequest(BaseModel):
    index: int = Field(..., ge=0)


class SubmissionsToggleRequest(BaseModel):
    open: Optional[bool] = None


class ThoughtRequest(BaseModel):
    text: str = Field(..., min_length=1)


class ItemRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)


class ItemApprovalRequest(BaseModel):
    approved: bool = True


class RatingsRequest(BaseModel):
    ratings: Dict[str, Dict[str, float]]


class CrowdsourceSubmissionRequest(BaseModel):
    question_text: str
    answers: List[str]
    correct_answer_index: int
    player_name: Optional[str] = None


class SelectionRequest(BaseModel):
    submission_ids: List[str]


class GameSummary(BaseModel):
    id: str
    activity_id: str
    activity_type: str
    host_id: str
    state: str
    game_pin: str
    current_question_index: int
    current_slide_index: int
    question_start_time: Optional[int] = None
    submissions_open: Optional[bool] = None
    item_submissions_open: Optional[bool] = None
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    crowdsource_state: Optional[Dict[str, Any]] = None
    results_error: Optional[str] = None
    title: str = ""

    @classmethod
    def from_game(cls, game: models.Game) -> "GameSummary":
        return cls(
            id=game.id,
            activity_id=game.activity_id,
            activity_type=game.activity_type,
            host_id=game.host_id,
            state=game.state,
            game_pin=game.game_pin,
            current_question_index=game.current_question_index,
            current_slide_index=game.current_slide_index,
            question_start_time=game.question_start_time,
            submissions_open=game.submissions_open,
            item_submissions_open=game.item_submissions_open,
            questions=game.questions,
            crowdsource_state=game.crowdsource_state.to_mapping() if game.crowdsource_state else None,
            results_error=game.results_error,
            title=game.title,
        )


class PlayerSummary(BaseModel):
    id: str
    name: str
    score: int
    current_streak: int


class JoinResponse(BaseModel):
    game: GameSummary
    player: PlayerSummary


class CreatedResponse(BaseModel):
    id: str


class SelectionResponse(BaseModel):
    selected_ids: List[str]


class CountResponse(BaseModel):
    count: int
