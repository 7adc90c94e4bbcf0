"""FastAPI routes for live game sessions."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from pinquiz.domain.crowdsource.service import CrowdsourceService
from pinquiz.domain.games import schemas
from pinquiz.domain.games.service import GamesService
from pinquiz.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/games", tags=["games"])


def get_games_service() -> GamesService:
	return GamesService()


def get_crowdsource_service() -> CrowdsourceService:
	return CrowdsourceService()


def _summary(game) -> schemas.GameSummary:
	return schemas.GameSummary.from_game(game)


@router.post("", response_model=schemas.GameSummary, status_code=status.HTTP_201_CREATED)
async def create_game_endpoint(
	payload: schemas.GameCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.create_game(auth_user, payload.activity_id, payload.activity_type))


@router.post("/join", response_model=schemas.JoinResponse)
async def join_game_endpoint(
	payload: schemas.JoinRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.JoinResponse:
	game, player = await service.join_game(auth_user, payload.pin, payload.nickname)
	return schemas.JoinResponse(
		game=_summary(game),
		player=schemas.PlayerSummary(
			id=player.id,
			name=player.name,
			score=player.score,
			current_streak=player.current_streak,
		),
	)


@router.get("/{game_id}", response_model=schemas.GameSummary)
async def get_game_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.get_game(game_id))


@router.post("/{game_id}/start", response_model=schemas.GameSummary)
async def start_game_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.start_game(auth_user, game_id))


@router.post("/{game_id}/question/start", response_model=schemas.GameSummary)
async def start_question_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.start_question(auth_user, game_id))


@router.post("/{game_id}/question/finish", response_model=schemas.GameSummary)
async def finish_question_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.finish_question(auth_user, game_id))


@router.post("/{game_id}/question/retry-results", response_model=schemas.GameSummary)
async def retry_results_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.retry_question_results(auth_user, game_id))


@router.post("/{game_id}/question/next", response_model=schemas.GameSummary)
async def next_question_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.next_question(auth_user, game_id))


@router.post("/{game_id}/results", response_model=schemas.GameSummary)
async def show_results_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.show_results(auth_user, game_id))


@router.post("/{game_id}/slides/goto", response_model=schemas.GameSummary)
async def go_to_slide_endpoint(
	game_id: str,
	payload: schemas.SlideRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.go_to_slide(auth_user, game_id, payload.index))


@router.post("/{game_id}/slides/next", response_model=schemas.GameSummary)
async def next_slide_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.next_slide(auth_user, game_id))


@router.post("/{game_id}/slides/previous", response_model=schemas.GameSummary)
async def previous_slide_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.previous_slide(auth_user, game_id))


@router.post("/{game_id}/thoughts/toggle", response_model=schemas.GameSummary)
async def toggle_submissions_endpoint(
	game_id: str,
	payload: schemas.SubmissionsToggleRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.toggle_submissions(auth_user, game_id, payload.open))


@router.post("/{game_id}/thoughts", response_model=schemas.CreatedResponse, status_code=status.HTTP_201_CREATED)
async def submit_thought_endpoint(
	game_id: str,
	payload: schemas.ThoughtRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.CreatedResponse:
	return schemas.CreatedResponse(id=await service.submit_thought(auth_user, game_id, payload.text))


@router.post("/{game_id}/thoughts/process", response_model=schemas.GameSummary)
async def stop_and_process_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.stop_and_process(auth_user, game_id))


@router.post("/{game_id}/thoughts/collect-more", response_model=schemas.GameSummary)
async def collect_more_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.collect_more(auth_user, game_id))


@router.post("/{game_id}/items", response_model=schemas.CreatedResponse, status_code=status.HTTP_201_CREATED)
async def add_item_endpoint(
	game_id: str,
	payload: schemas.ItemRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.CreatedResponse:
	return schemas.CreatedResponse(id=await service.add_item(auth_user, game_id, payload.text, payload.description))


@router.post("/{game_id}/items/{item_id}/approval", status_code=status.HTTP_204_NO_CONTENT)
async def approve_item_endpoint(
	game_id: str,
	item_id: str,
	payload: schemas.ItemApprovalRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> None:
	await service.approve_item(auth_user, game_id, item_id, payload.approved)


@router.post("/{game_id}/items/close", response_model=schemas.GameSummary)
async def close_items_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.close_item_submissions(auth_user, game_id))


@router.post("/{game_id}/ranking/start", response_model=schemas.GameSummary)
async def start_ranking_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.start_ranking(auth_user, game_id))


@router.post("/{game_id}/ratings", status_code=status.HTTP_204_NO_CONTENT)
async def submit_ratings_endpoint(
	game_id: str,
	payload: schemas.RatingsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> None:
	await service.submit_ratings(auth_user, game_id, payload.ratings)


@router.post("/{game_id}/ranking/end", response_model=schemas.GameSummary)
async def end_ranking_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.end_ranking(auth_user, game_id))


@router.post("/{game_id}/end", response_model=schemas.GameSummary)
async def end_session_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.GameSummary:
	return _summary(await service.end_session(auth_user, game_id))


@router.delete("/{game_id}", response_model=schemas.CountResponse)
async def cancel_game_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GamesService = Depends(get_games_service),
) -> schemas.CountResponse:
	return schemas.CountResponse(count=await service.cancel_game(auth_user, game_id))


@router.post("/{game_id}/crowdsource/submissions", response_model=schemas.CreatedResponse, status_code=status.HTTP_201_CREATED)
async def crowdsource_submit_endpoint(
	game_id: str,
	payload: schemas.CrowdsourceSubmissionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	crowdsource: CrowdsourceService = Depends(get_crowdsource_service),
) -> schemas.CreatedResponse:
	submission = await crowdsource.submit_question(
		auth_user,
		game_id,
		question_text=payload.question_text,
		answers=payload.answers,
		correct_answer_index=payload.correct_answer_index,
		player_name=payload.player_name,
	)
	return schemas.CreatedResponse(id=submission.id)


@router.post("/{game_id}/crowdsource/evaluate", response_model=schemas.SelectionResponse)
async def crowdsource_evaluate_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	crowdsource: CrowdsourceService = Depends(get_crowdsource_service),
) -> schemas.SelectionResponse:
	selected: List[str] = await crowdsource.lock_and_evaluate(auth_user, game_id)
	return schemas.SelectionResponse(selected_ids=selected)


@router.post("/{game_id}/crowdsource/retry", response_model=schemas.SelectionResponse)
async def crowdsource_retry_endpoint(
	game_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	crowdsource: CrowdsourceService = Depends(get_crowdsource_service),
) -> schemas.SelectionResponse:
	return schemas.SelectionResponse(selected_ids=await crowdsource.retry_evaluation(auth_user, game_id))


@router.post("/{game_id}/crowdsource/selection", response_model=schemas.CountResponse)
async def crowdsource_selection_endpoint(
	game_id: str,
	payload: schemas.SelectionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	crowdsource: CrowdsourceService = Depends(get_crowdsource_service),
) -> schemas.CountResponse:
	return schemas.CountResponse(count=await crowdsource.save_selection(auth_user, game_id, payload.submission_ids))
