import json

import pytest

from pinquiz.domain.compute.answers import submit_answer
from pinquiz.domain.compute.registry import build_registry
from pinquiz.domain.games import policy
from pinquiz.domain.games.service import GamesService, game_path
from pinquiz.domain.leaderboards.aggregate import aggregate_path, read_aggregate
from pinquiz.domain.questions.answer_key import answer_key_path
from pinquiz.domain.questions.validation import QuestionValidationError
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import MemoryDocumentStore
from pinquiz.infra.errors import InputValidationError
from pinquiz.infra.functions import LocalFunctionsClient, RemoteCallError

QUIZ_QUESTIONS = [
	{
		"type": "single-choice",
		"text": "Capital of France?",
		"answers": [{"text": "Paris"}, {"text": "Rome"}],
		"correctAnswerIndex": 0,
	},
	{
		"type": "free-response",
		"text": "Largest planet?",
		"correctAnswer": "Jupiter",
		"timeLimit": 10,
	},
]


class RecordingStore(MemoryDocumentStore):
	def __init__(self):
		super().__init__()
		self.writes = []

	async def set(self, path, data, *, merge=False):
		self.writes.append(("set", path, dict(data)))
		await super().set(path, data, merge=merge)

	async def update(self, path, fields):
		self.writes.append(("update", path, dict(fields)))
		await super().update(path, fields)


def _local(store, generator=None):
	return LocalFunctionsClient(build_registry(store, generator=generator))


async def _quiz(store, host, player, functions=None, **activity):
	await store.set("quizzes/quiz-1", {"hostId": host.id, "title": "Capitals", "questions": QUIZ_QUESTIONS, **activity})
	service = GamesService(store, functions or _local(store))
	game = await service.create_game(host, "quiz-1", "quiz")
	await service.join_game(player, game.game_pin, "Ada")
	return service, game


async def _answer(store, player, game_id, question_index, **answer):
	payload = {"gameId": game_id, "playerId": player.id, "questionIndex": question_index, "timeRemaining": 5, **answer}
	return await submit_answer(store, payload, player)


# ============================================================================
# Creation and joining
# ============================================================================


class TestCreateAndJoin:
	@pytest.mark.asyncio
	async def test_quiz_session_embeds_sanitized_questions(self, store, host, player):
		service, game = await _quiz(store, host, player)

		assert game.state == "lobby"
		assert game.title == "Capitals"
		assert len(game.game_pin) == 6
		assert "correctAnswerIndex" not in game.questions[0]
		assert "correctAnswer" not in game.questions[1]
		key = await store.get(answer_key_path(game.id))
		assert key.data["questions"][0]["correctAnswerIndex"] == 0
		assert key.data["questions"][1]["correctAnswer"] == "Jupiter"

	@pytest.mark.asyncio
	async def test_create_rejects_invalid_quiz(self, store, host):
		bad = {"type": "multiple-choice", "text": "Q", "answers": [{"text": "a"}, {"text": "b"}], "correctAnswerIndices": [0]}
		await store.set("quizzes/quiz-1", {"hostId": host.id, "questions": [bad]})
		with pytest.raises(QuestionValidationError):
			await GamesService(store).create_game(host, "quiz-1", "quiz")
		assert await store.list("games") == []

	@pytest.mark.asyncio
	async def test_create_guards(self, store, host):
		service = GamesService(store)
		with pytest.raises(InputValidationError):
			await service.create_game(host, "quiz-1", "trivia")
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.create_game(host, "missing", "quiz")
		assert excinfo.value.status_code == 404

		await store.set("quizzes/theirs", {"hostId": "someone-else", "questions": QUIZ_QUESTIONS})
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.create_game(host, "theirs", "quiz")
		assert excinfo.value.code == "not_host"

	@pytest.mark.asyncio
	async def test_join_normalises_and_rejoins(self, store, host, player):
		service, game = await _quiz(store, host, player)
		other = AuthenticatedUser(id="player-2")

		_, joined = await service.join_game(other, f" {game.game_pin.lower()} ", "  Grace   Hopper ")
		assert joined.name == "Grace Hopper"
		_, again = await service.join_game(other, game.game_pin, "Someone Else")
		assert again.name == "Grace Hopper"
		assert again.joined_at == joined.joined_at
		assert len(await service.list_players(game.id)) == 2

	@pytest.mark.asyncio
	async def test_join_errors(self, store, host, player):
		service, game = await _quiz(store, host, player)
		with pytest.raises(InputValidationError):
			await service.join_game(player, "12", "Ada")
		with pytest.raises(InputValidationError):
			await service.join_game(player, game.game_pin, "x" * 31)
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.join_game(player, "ZZZZZZ" if game.game_pin != "ZZZZZZ" else "YYYYYY", "Ada")
		assert excinfo.value.code == "not_found"

	@pytest.mark.asyncio
	async def test_ended_games_cannot_be_joined(self, store, host, player):
		service, game = await _quiz(store, host, player)
		await service.end_session(host, game.id)
		with pytest.raises(policy.GamePolicyError):
			await service.join_game(AuthenticatedUser(id="late"), game.game_pin, "Late")


# ============================================================================
# Quiz lifecycle
# ============================================================================


class TestQuizLifecycle:
	@pytest.mark.asyncio
	async def test_full_quiz(self, store, host, player):
		service, game = await _quiz(store, host, player)

		game = await service.start_game(host, game.id)
		assert game.state == "preparing"
		assert (await read_aggregate(store, game.id)).total_players == 1

		game = await service.start_question(host, game.id)
		assert game.state == "question"
		assert isinstance(game.question_start_time, int)

		response = await _answer(store, player, game.id, 0, answerIndex=0)
		assert response["isCorrect"] is True

		game = await service.finish_question(host, game.id)
		assert game.state == "leaderboard"
		assert game.results_error is None
		standings = await read_aggregate(store, game.id)
		assert standings.top_players[0].id == player.id
		assert standings.answer_counts == [1]

		game = await service.next_question(host, game.id)
		assert game.state == "preparing"
		assert game.current_question_index == 1
		assert game.question_start_time is None
		reset = await read_aggregate(store, game.id)
		assert reset.answer_counts == []
		assert reset.total_answered == 0
		assert reset.top_players[0].score == standings.top_players[0].score

		await service.start_question(host, game.id)
		await _answer(store, player, game.id, 1, textAnswer="jupitr")
		await service.finish_question(host, game.id)
		game = await service.next_question(host, game.id)
		assert game.state == "ended"
		players = await service.list_players(game.id)
		assert players[0].current_streak == 2

	@pytest.mark.asyncio
	async def test_leaderboard_initialised_before_state_change(self, host, player):
		store = RecordingStore()
		service, game = await _quiz(store, host, player)
		store.writes.clear()

		await service.start_game(host, game.id)
		paths = [(kind, path, data.get("state")) for kind, path, data in store.writes]
		aggregate_write = paths.index(("set", aggregate_path(game.id), None))
		state_write = paths.index(("update", game_path(game.id), "preparing"))
		assert aggregate_write < state_write

	@pytest.mark.asyncio
	async def test_only_host_drives(self, store, host, player):
		service, game = await _quiz(store, host, player)
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.start_game(player, game.id)
		assert excinfo.value.status_code == 403

	@pytest.mark.asyncio
	async def test_invalid_transitions(self, store, host, player):
		service, game = await _quiz(store, host, player)
		with pytest.raises(policy.GamePolicyError):
			await service.start_question(host, game.id)
		await service.start_game(host, game.id)
		with pytest.raises(policy.GamePolicyError):
			await service.finish_question(host, game.id)
		with pytest.raises(policy.GamePolicyError):
			await service.start_game(host, game.id)

	@pytest.mark.asyncio
	async def test_results_failure_still_reaches_leaderboard(self, store, host, player, fake_functions):
		service, game = await _quiz(store, host, player, functions=fake_functions)
		await service.start_game(host, game.id)
		await service.start_question(host, game.id)
		fake_functions.error = RemoteCallError("unavailable", "results service down")

		game = await service.finish_question(host, game.id)
		assert game.state == "leaderboard"
		assert game.results_error == "results service down"

		with pytest.raises(RemoteCallError):
			await service.retry_question_results(host, game.id)
		assert (await service.get_game(game.id)).results_error == "results service down"

		fake_functions.error = None
		game = await service.retry_question_results(host, game.id)
		assert game.results_error is None
		assert game.state == "leaderboard"

	@pytest.mark.asyncio
	async def test_auto_finish_is_a_noop_once_finished(self, store, host, player, fake_functions):
		service, game = await _quiz(store, host, player, functions=fake_functions)
		await service.start_game(host, game.id)
		await service.start_question(host, game.id)
		await service.finish_question(host, game.id)

		game = await service.finish_question(host, game.id, auto=True)
		assert game.state == "leaderboard"
		assert [name for name, _ in fake_functions.calls] == ["computeQuestionResults"]

	@pytest.mark.asyncio
	async def test_next_question_from_question_finishes_first(self, store, host, player, fake_functions):
		service, game = await _quiz(store, host, player, functions=fake_functions)
		await service.start_game(host, game.id)
		await service.start_question(host, game.id)

		game = await service.next_question(host, game.id)
		assert game.state == "leaderboard"
		assert game.current_question_index == 0

	@pytest.mark.asyncio
	async def test_end_and_cancel(self, store, host, player):
		service, game = await _quiz(store, host, player)
		ended = await service.end_session(host, game.id)
		assert ended.state == "ended"
		with pytest.raises(policy.GamePolicyError):
			await service.end_session(host, game.id)

		removed = await service.cancel_game(host, game.id)
		assert removed >= 3
		assert (await store.get(game_path(game.id))).exists is False
		assert await store.list(f"games/{game.id}/players") == []


# ============================================================================
# Crowdsourced questions at quiz start
# ============================================================================


@pytest.mark.asyncio
async def test_selected_submissions_are_integrated_on_start(store, host, player):
	crowdsource = {"enabled": True, "topicPrompt": "Space", "questionsNeeded": 1, "integrationMode": "prepend"}
	service, game = await _quiz(store, host, player, crowdsource=crowdsource)
	assert game.crowdsource_state is not None
	await store.set(
		f"games/{game.id}/submissions/s1",
		{
			"playerId": player.id,
			"playerName": "Ada",
			"questionText": "Closest planet to the sun?",
			"answers": ["Venus", "Mars", "Mercury", "Earth"],
			"correctAnswerIndex": 2,
			"aiSelected": True,
		},
	)
	await store.set(
		f"games/{game.id}/submissions/s2",
		{"playerId": "x", "playerName": "X", "questionText": "Skip me", "answers": ["a", "b", "c", "d"], "aiSelected": False},
	)

	game = await service.start_game(host, game.id)
	assert [question["text"] for question in game.questions] == [
		"Closest planet to the sun?",
		"Capital of France?",
		"Largest planet?",
	]
	assert game.questions[0]["submittedBy"] == "Ada"
	assert "correctAnswerIndex" not in game.questions[0]
	key = await store.get(answer_key_path(game.id))
	assert key.data["questions"][0]["correctAnswerIndex"] == 2


# ============================================================================
# Poll and presentation
# ============================================================================


@pytest.mark.asyncio
async def test_poll_flow(store, host):
	questions = [
		{"type": "poll-single", "text": "Tea or coffee?", "answers": [{"text": "Tea"}, {"text": "Coffee"}]},
		{"type": "poll-multiple", "text": "Fruits?", "answers": [{"text": "Apple"}, {"text": "Pear"}]},
	]
	await store.set("polls/poll-1", {"hostId": host.id, "questions": questions})
	service = GamesService(store)
	game = await service.create_game(host, "poll-1", "poll")

	game = await service.start_game(host, game.id)
	assert game.state == "question"
	assert isinstance(game.question_start_time, int)
	game = await service.show_results(host, game.id)
	assert game.state == "results"
	game = await service.next_question(host, game.id)
	assert (game.state, game.current_question_index) == ("question", 1)
	await service.show_results(host, game.id)
	game = await service.next_question(host, game.id)
	assert game.state == "ended"


@pytest.mark.asyncio
async def test_presentation_slides(store, host):
	await store.set("presentations/p-1", {"hostId": host.id, "slides": [{"title": "a"}, {"title": "b"}, {"title": "c"}]})
	service = GamesService(store)
	game = await service.create_game(host, "p-1", "presentation")

	game = await service.start_game(host, game.id)
	assert (game.state, game.current_slide_index) == ("presenting", 0)
	game = await service.next_slide(host, game.id)
	assert game.current_slide_index == 1
	game = await service.go_to_slide(host, game.id, 10)
	assert game.current_slide_index == 2
	game = await service.previous_slide(host, game.id)
	assert game.current_slide_index == 1
	await service.go_to_slide(host, game.id, 2)
	game = await service.next_slide(host, game.id)
	assert game.state == "ended"


# ============================================================================
# Thoughts gathering
# ============================================================================


async def _thoughts(store, host, player, functions=None):
	await store.set(
		"activities/th-1",
		{"hostId": host.id, "config": {"prompt": "Ideas?", "maxSubmissionsPerPlayer": 2, "allowMultipleRounds": True}},
	)
	service = GamesService(store, functions)
	game = await service.create_game(host, "th-1", "thoughts-gathering")
	await service.join_game(player, game.game_pin, "Ada")
	return service, game


class TestThoughtsGathering:
	@pytest.mark.asyncio
	async def test_submission_limits(self, store, host, player):
		service, game = await _thoughts(store, host, player)
		assert (game.state, game.submissions_open) == ("collecting", True)

		await service.submit_thought(player, game.id, "More plants")
		await service.submit_thought(player, game.id, "  Quiet room ")
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.submit_thought(player, game.id, "Third")
		assert excinfo.value.code == "submission_limit"

		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.submit_thought(AuthenticatedUser(id="stranger"), game.id, "Hi")
		assert excinfo.value.code == "not_joined"
		with pytest.raises(InputValidationError):
			await service.submit_thought(player, game.id, "   ")

		texts = sorted(snap.get("rawText") for snap in await store.list(f"games/{game.id}/submissions"))
		assert texts == ["More plants", "Quiet room"]

	@pytest.mark.asyncio
	async def test_closed_submissions(self, store, host, player):
		service, game = await _thoughts(store, host, player)
		game = await service.toggle_submissions(host, game.id, False)
		assert game.submissions_open is False
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.submit_thought(player, game.id, "Too late")
		assert excinfo.value.code == "submissions_closed"
		game = await service.toggle_submissions(host, game.id)
		assert game.submissions_open is True

	@pytest.mark.asyncio
	async def test_processing_failure_reverts(self, store, host, player, fake_functions):
		service, game = await _thoughts(store, host, player, fake_functions)
		fake_functions.error = RemoteCallError("resource-exhausted", "quota")

		with pytest.raises(RemoteCallError):
			await service.stop_and_process(host, game.id)
		game = await service.get_game(game.id)
		assert (game.state, game.submissions_open) == ("collecting", True)

	@pytest.mark.asyncio
	async def test_process_and_collect_more(self, store, host, player, fake_generator):
		service, game = await _thoughts(store, host, player, _local(store, fake_generator))
		submission_id = await service.submit_thought(player, game.id, "More plants")
		fake_generator.reply = json.dumps(
			{"topics": [{"topic": "Greenery", "description": "Plants", "count": 1, "submissionIds": [submission_id]}]}
		)

		game = await service.stop_and_process(host, game.id)
		assert game.state == "display"
		topics = await store.get(f"games/{game.id}/aggregates/topics")
		assert topics.data["topics"][0]["topic"] == "Greenery"

		game = await service.collect_more(host, game.id)
		assert (game.state, game.submissions_open) == ("collecting", True)


# ============================================================================
# Ranking
# ============================================================================


async def _ranking(store, host, player, functions=None):
	await store.set(
		"activities/rk-1",
		{
			"hostId": host.id,
			"config": {
				"metrics": [{"id": "impact", "name": "Impact", "scaleMin": 1, "scaleMax": 5}],
				"requireApproval": True,
				"maxItemsPerParticipant": 1,
			},
		},
	)
	service = GamesService(store, functions)
	game = await service.create_game(host, "rk-1", "ranking")
	await service.join_game(player, game.game_pin, "Ada")
	return service, game


class TestRanking:
	@pytest.mark.asyncio
	async def test_items_and_approval(self, store, host, player):
		service, game = await _ranking(store, host, player)
		assert (game.state, game.item_submissions_open) == ("collecting", True)

		host_item = await service.add_item(host, game.id, "Solar", "Panels on the roof")
		mine = await service.add_item(player, game.id, "Wind")
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.add_item(player, game.id, "Hydro")
		assert excinfo.value.code == "submission_limit"

		host_doc = await store.get(f"games/{game.id}/items/{host_item}")
		player_doc = await store.get(f"games/{game.id}/items/{mine}")
		assert (host_doc.get("approved"), host_doc.get("order"), host_doc.get("description")) == (True, 0, "Panels on the roof")
		assert (player_doc.get("approved"), player_doc.get("order"), player_doc.get("submittedBy")) == (False, 999, "Ada")

		await service.approve_item(host, game.id, mine)
		assert (await store.get(f"games/{game.id}/items/{mine}")).get("approved") is True
		with pytest.raises(policy.GamePolicyError):
			await service.approve_item(player, game.id, mine)

	@pytest.mark.asyncio
	async def test_ranking_needs_items(self, store, host, player):
		service, game = await _ranking(store, host, player)
		with pytest.raises(policy.GamePolicyError) as excinfo:
			await service.start_ranking(host, game.id)
		assert excinfo.value.code == "no_items"

	@pytest.mark.asyncio
	async def test_full_ranking(self, store, host, player):
		service, game = await _ranking(store, host, player, _local(store))
		item_id = await service.add_item(host, game.id, "Solar")
		game = await service.start_ranking(host, game.id)
		assert (game.state, game.item_submissions_open) == ("ranking", False)

		await service.submit_ratings(player, game.id, {item_id: {"impact": 4}})
		with pytest.raises(InputValidationError):
			await service.submit_ratings(player, game.id, {item_id: {"impact": "high"}})

		game = await service.end_ranking(host, game.id)
		assert game.state == "results"
		results = await store.get(f"games/{game.id}/aggregates/rankings")
		assert results.data["items"][0]["itemId"] == item_id
		assert results.data["participantsWhoRated"] == 1

	@pytest.mark.asyncio
	async def test_end_ranking_reverts_on_remote_error(self, store, host, player, fake_functions):
		service, game = await _ranking(store, host, player, fake_functions)
		await service.add_item(host, game.id, "Solar")
		await service.start_ranking(host, game.id)
		fake_functions.error = RemoteCallError("unavailable", "down")

		with pytest.raises(RemoteCallError):
			await service.end_ranking(host, game.id)
		assert (await service.get_game(game.id)).state == "ranking"

	@pytest.mark.asyncio
	async def test_end_ranking_reverts_on_unsuccessful_result(self, store, host, player, fake_functions):
		service, game = await _ranking(store, host, player, fake_functions)
		await service.add_item(host, game.id, "Solar")
		await service.start_ranking(host, game.id)
		fake_functions.responses["computeRankingResults"] = {"success": False, "message": "No items to rank"}

		with pytest.raises(RemoteCallError) as excinfo:
			await service.end_ranking(host, game.id)
		assert excinfo.value.code == "failed-precondition"
		assert excinfo.value.detail == "No items to rank"
		assert (await service.get_game(game.id)).state == "ranking"
