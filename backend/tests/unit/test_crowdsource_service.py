import pytest

from pinquiz.domain.crowdsource import service as crowdsource
from pinquiz.domain.crowdsource.models import Submission
from pinquiz.domain.games.policy import GamePolicyError
from pinquiz.domain.questions.models import parse_question
from pinquiz.infra.functions import RemoteCallError

ANSWERS = ["Mars", "Venus", "Jupiter", "Mercury"]


async def _setup(store, *, enabled=True, locked=None, max_per_player=2, state="lobby"):
	await store.set(
		"quizzes/q1",
		{
			"title": "Space",
			"crowdsource": {
				"enabled": enabled,
				"topicPrompt": "Planets",
				"questionsNeeded": 2,
				"maxSubmissionsPerPlayer": max_per_player,
			},
		},
	)
	game = {"hostId": "host-1", "activityType": "quiz", "activityId": "q1", "state": state, "gamePin": "ABC234"}
	if locked is not None:
		game["crowdsourceState"] = {"submissionsLocked": locked}
	await store.set("games/g1", game)
	await store.set("games/g1/players/player-1", {"name": "Ada in game"})


def _service(store, functions):
	return crowdsource.CrowdsourceService(store, functions, grace_seconds=0)


# ============================================================================
# Pure helpers
# ============================================================================


@pytest.mark.parametrize(
	"text,answers,index",
	[
		("   ", ANSWERS, 0),
		("x" * 501, ANSWERS, 0),
		("Largest planet?", ANSWERS[:3], 0),
		("Largest planet?", ["Mars", " ", "Jupiter", "Mercury"], 0),
		("Largest planet?", ANSWERS, 4),
	],
)
def test_validate_submission_rejects(text, answers, index):
	with pytest.raises(crowdsource.CrowdsourceError) as excinfo:
		crowdsource.validate_submission(text, answers, index)
	assert excinfo.value.code == "invalid_submission"


def test_toggle_selection():
	assert crowdsource.toggle_selection({"a"}, "b") == {"a", "b"}
	assert crowdsource.toggle_selection({"a", "b"}, "a") == {"b"}


def test_review_order_puts_selected_first():
	subs = [
		Submission(id="unscored", player_id="p", player_name="P", question_text="Q"),
		Submission(id="low", player_id="p", player_name="P", question_text="Q", ai_score=20, ai_selected=False),
		Submission(id="picked", player_id="p", player_name="P", question_text="Q", ai_score=60, ai_selected=True),
		Submission(id="high", player_id="p", player_name="P", question_text="Q", ai_score=90, ai_selected=False),
	]
	assert [sub.id for sub in crowdsource.review_order(subs)] == ["picked", "high", "low", "unscored"]


class TestIntegrateQuestions:
	def setup_method(self):
		self.quiz = [parse_question({"type": "poll-single", "text": "Sky is blue", "answers": [{"text": "Yes"}, {"text": "No"}]})]
		self.subs = [
			Submission(id="s1", player_id="p", player_name="Ada", question_text="Red planet?", answers=ANSWERS, correct_answer_index=0)
		]

	def test_modes(self):
		appended = crowdsource.integrate_questions(self.quiz, self.subs, "append")
		prepended = crowdsource.integrate_questions(self.quiz, self.subs, "prepend")
		replaced = crowdsource.integrate_questions(self.quiz, self.subs, "replace")
		assert [q.text for q in appended] == ["Sky is blue", "Red planet?"]
		assert [q.text for q in prepended] == ["Red planet?", "Sky is blue"]
		assert [q.text for q in replaced] == ["Red planet?"]

	def test_submissions_become_single_choice(self):
		question = crowdsource.integrate_questions([], self.subs)[0]
		assert question.type == "single-choice"
		assert question.time_limit == 20
		assert question.submitted_by == "Ada"
		assert [answer.text for answer in question.answers] == ANSWERS

	def test_no_selection_leaves_quiz_unchanged(self):
		assert crowdsource.integrate_questions(self.quiz, [], "replace") == self.quiz


# ============================================================================
# Submissions
# ============================================================================


class TestSubmitQuestion:
	@pytest.mark.asyncio
	async def test_stores_trimmed_submission(self, store, player, fake_functions):
		await _setup(store)
		submission = await _service(store, fake_functions).submit_question(
			player, "g1", question_text="  Red planet?  ", answers=[" Mars "] + ANSWERS[1:], correct_answer_index=0
		)

		stored = await store.get(f"games/g1/submissions/{submission.id}")
		assert stored.get("questionText") == "Red planet?"
		assert stored.get("answers")[0] == "Mars"
		assert stored.get("playerName") == "Ada in game"
		assert stored.get("playerId") == "player-1"

	@pytest.mark.asyncio
	async def test_per_player_cap(self, store, player, fake_functions):
		await _setup(store, max_per_player=1)
		service = _service(store, fake_functions)
		await service.submit_question(player, "g1", question_text="One?", answers=ANSWERS, correct_answer_index=0)
		with pytest.raises(crowdsource.CrowdsourceError) as excinfo:
			await service.submit_question(player, "g1", question_text="Two?", answers=ANSWERS, correct_answer_index=1)
		assert excinfo.value.code == "submission_limit"
		assert excinfo.value.status_code == 409

	@pytest.mark.asyncio
	async def test_locked_or_disabled(self, store, player, fake_functions):
		await _setup(store, locked=True)
		with pytest.raises(crowdsource.CrowdsourceError) as excinfo:
			await _service(store, fake_functions).submit_question(
				player, "g1", question_text="Q?", answers=ANSWERS, correct_answer_index=0
			)
		assert excinfo.value.code == "submissions_locked"

		await _setup(store, enabled=False)
		with pytest.raises(crowdsource.CrowdsourceError) as excinfo:
			await _service(store, fake_functions).submit_question(
				player, "g1", question_text="Q?", answers=ANSWERS, correct_answer_index=0
			)
		assert excinfo.value.code == "crowdsource_disabled"

	@pytest.mark.asyncio
	async def test_unknown_game(self, store, player, fake_functions):
		with pytest.raises(GamePolicyError) as excinfo:
			await _service(store, fake_functions).submit_question(
				player, "missing", question_text="Q?", answers=ANSWERS, correct_answer_index=0
			)
		assert excinfo.value.status_code == 404


# ============================================================================
# Lock, evaluate, select
# ============================================================================


class TestLockAndEvaluate:
	@pytest.mark.asyncio
	async def test_lock_is_set_before_evaluation(self, store, host, fake_functions):
		await _setup(store)
		await store.set("games/g1/submissions/s1", {"playerId": "p", "questionText": "Q", "aiSelected": True})
		await store.set("games/g1/submissions/s2", {"playerId": "p", "questionText": "Q", "aiSelected": False})
		seen = {}

		async def inspect(name, payload):
			seen["locked"] = (await store.get("games/g1")).get("crowdsourceState")["submissionsLocked"]

		fake_functions.on_call = inspect
		selected = await _service(store, fake_functions).lock_and_evaluate(host, "g1")

		assert seen == {"locked": True}
		assert selected == ["s1"]
		assert fake_functions.calls == [
			("evaluateSubmissions", {"gameId": "g1", "topicPrompt": "Planets", "questionsNeeded": 2})
		]

	@pytest.mark.asyncio
	async def test_failure_keeps_lock_and_retry_succeeds(self, store, host, fake_functions):
		await _setup(store)
		service = _service(store, fake_functions)
		fake_functions.error = RemoteCallError("resource-exhausted", "AI quota exceeded", function="evaluateSubmissions")

		with pytest.raises(crowdsource.CrowdsourceError) as excinfo:
			await service.lock_and_evaluate(host, "g1")
		assert excinfo.value.code == "evaluation_failed"
		assert excinfo.value.status_code == 502
		assert excinfo.value.detail == "AI quota exceeded"
		assert (await store.get("games/g1")).get("crowdsourceState")["submissionsLocked"] is True

		fake_functions.error = None
		assert await service.retry_evaluation(host, "g1") == []
		assert len(fake_functions.calls) == 2

	@pytest.mark.asyncio
	async def test_retry_requires_lock(self, store, host, fake_functions):
		await _setup(store)
		with pytest.raises(crowdsource.CrowdsourceError) as excinfo:
			await _service(store, fake_functions).retry_evaluation(host, "g1")
		assert excinfo.value.code == "not_locked"

	@pytest.mark.asyncio
	async def test_host_and_lobby_only(self, store, host, player, fake_functions):
		await _setup(store)
		with pytest.raises(GamePolicyError) as excinfo:
			await _service(store, fake_functions).lock_and_evaluate(player, "g1")
		assert excinfo.value.code == "not_host"

		await _setup(store, state="question")
		with pytest.raises(GamePolicyError) as excinfo:
			await _service(store, fake_functions).lock_and_evaluate(host, "g1")
		assert excinfo.value.code == "invalid_state"
		assert fake_functions.calls == []


@pytest.mark.asyncio
async def test_save_selection_overrides_ai_choice(store, host, fake_functions):
	await _setup(store, locked=True)
	await store.set("games/g1/submissions/s1", {"playerId": "p", "questionText": "One", "aiSelected": True})
	await store.set("games/g1/submissions/s2", {"playerId": "p", "questionText": "Two", "aiSelected": False})
	service = _service(store, fake_functions)

	count = await service.save_selection(host, "g1", ["s2", "ghost"])
	assert count == 1
	assert [sub.id for sub in await service.selected_submissions("g1")] == ["s2"]
	assert (await store.get("games/g1")).get("crowdsourceState")["selectedCount"] == 1
