import json

import httpx
import pytest

from pinquiz.domain.compute import ai, evaluation, topics
from pinquiz.domain.crowdsource.models import Submission
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.functions import FunctionError

HOST = AuthenticatedUser(id="host-1")


def test_strip_code_fences():
	assert ai.strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
	assert ai.strip_code_fences("```\n[]```") == "[]"
	assert ai.strip_code_fences(' {"a": 1} ') == '{"a": 1}'


def test_parse_json_reply_requires_list():
	assert ai.parse_json_reply('{"topics": [{"topic": "x"}, 3]}', "topics") == [{"topic": "x"}]
	with pytest.raises(ValueError):
		ai.parse_json_reply('{"topics": {}}', "topics")
	with pytest.raises(ValueError):
		ai.parse_json_reply("not json", "topics")


@pytest.mark.parametrize(
	"message,code",
	[("quota exceeded", "resource-exhausted"), ("blocked by SAFETY", "invalid-argument"), ("boom", "internal")],
)
def test_function_error_for(message, code):
	assert ai.function_error_for(RuntimeError(message), "do things").code == code


class TestHttpTextGenerator:
	@pytest.mark.asyncio
	async def test_posts_prompt_and_reads_text(self):
		seen = {}

		def handler(request):
			seen.update(json.loads(request.content))
			return httpx.Response(200, json={"text": "hello"})

		generator = ai.HttpTextGenerator("http://ai.test/generate", transport=httpx.MockTransport(handler))
		reply = await generator.generate(system="sys", prompt="p", temperature=0.3, max_output_tokens=10)
		assert reply == "hello"
		assert seen == {"system": "sys", "prompt": "p", "temperature": 0.3, "maxOutputTokens": 10}

	@pytest.mark.asyncio
	async def test_quota_errors(self):
		transport = httpx.MockTransport(lambda request: httpx.Response(429))
		generator = ai.HttpTextGenerator("http://ai.test/generate", transport=transport)
		with pytest.raises(ai.TextGenerationError, match="quota"):
			await generator.generate(system="s", prompt="p", temperature=0.1, max_output_tokens=1)

	@pytest.mark.asyncio
	async def test_unconfigured(self):
		with pytest.raises(ai.TextGenerationError):
			await ai.HttpTextGenerator("").generate(system="s", prompt="p", temperature=0.1, max_output_tokens=1)


# ============================================================================
# evaluateSubmissions
# ============================================================================


def test_parse_evaluation_response_clamps_scores():
	reply = "```json\n" + json.dumps(
		{
			"evaluations": [
				{"submissionId": "a", "score": 150, "reasoning": "great"},
				{"submissionId": "b", "score": -5},
				{"submissionId": "c", "score": 87.5},
			]
		}
	) + "\n```"
	parsed = evaluation.parse_evaluation_response(reply)
	assert [(item.submission_id, item.score) for item in parsed] == [("a", 100), ("b", 0), ("c", 88)]


def test_parse_evaluation_response_failure():
	with pytest.raises(FunctionError) as excinfo:
		evaluation.parse_evaluation_response("I think they are all great")
	assert excinfo.value.code == "internal"


def test_select_top_treats_unscored_as_zero():
	subs = [Submission(id=sid, player_id="p", player_name="P", question_text="Q") for sid in ("a", "b", "c")]
	scores = {"a": evaluation.Evaluation("a", 40), "c": evaluation.Evaluation("c", 90)}
	assert evaluation.select_top(subs, scores, 2) == {"a", "c"}


async def _crowdsourced_game(store, submissions=2):
	await store.set("games/g1", {"hostId": HOST.id, "activityType": "quiz", "crowdsourceState": {"submissionsLocked": True}})
	for idx in range(submissions):
		await store.set(
			f"games/g1/submissions/s{idx}",
			{
				"playerId": f"p{idx}",
				"playerName": f"P{idx}",
				"questionText": f"Question {idx}",
				"answers": ["a", "b", "c", "d"],
				"correctAnswerIndex": 0,
			},
		)


PAYLOAD = {"gameId": "g1", "topicPrompt": "Space", "questionsNeeded": 1}


class TestEvaluateSubmissions:
	@pytest.mark.asyncio
	async def test_scores_and_selects(self, store, fake_generator):
		await _crowdsourced_game(store)
		fake_generator.reply = json.dumps(
			{"evaluations": [{"submissionId": "s0", "score": 30}, {"submissionId": "s1", "score": 95, "reasoning": "On topic"}]}
		)

		result = await evaluation.evaluate_submissions(store, PAYLOAD, HOST, generator=fake_generator)
		assert result == {"success": True, "evaluatedCount": 2, "selectedCount": 1}
		assert "Space" in fake_generator.prompts[0]
		s0 = await store.get("games/g1/submissions/s0")
		s1 = await store.get("games/g1/submissions/s1")
		assert (s0.get("aiScore"), s0.get("aiSelected"), s0.get("aiReasoning")) == (30, False, evaluation.DEFAULT_REASONING)
		assert (s1.get("aiScore"), s1.get("aiSelected"), s1.get("aiReasoning")) == (95, True, "On topic")
		state = (await store.get("games/g1")).get("crowdsourceState")
		assert state == {"submissionsLocked": True, "evaluationComplete": True, "selectedCount": 1}

	@pytest.mark.asyncio
	async def test_no_submissions(self, store, fake_generator):
		await _crowdsourced_game(store, submissions=0)
		result = await evaluation.evaluate_submissions(store, PAYLOAD, HOST, generator=fake_generator)
		assert result["evaluatedCount"] == 0
		assert fake_generator.prompts == []
		assert (await store.get("games/g1")).get("crowdsourceState")["evaluationComplete"] is True

	@pytest.mark.asyncio
	async def test_generator_failure_is_mapped(self, store, fake_generator):
		await _crowdsourced_game(store)
		fake_generator.error = ai.TextGenerationError("quota exceeded")
		with pytest.raises(FunctionError) as excinfo:
			await evaluation.evaluate_submissions(store, PAYLOAD, HOST, generator=fake_generator)
		assert excinfo.value.code == "resource-exhausted"
		assert (await store.get("games/g1/submissions/s0")).get("aiScore") is None

	@pytest.mark.asyncio
	@pytest.mark.parametrize(
		"payload,user,code",
		[
			(PAYLOAD, None, "unauthenticated"),
			({**PAYLOAD, "topicPrompt": ""}, HOST, "invalid-argument"),
			({**PAYLOAD, "questionsNeeded": 0}, HOST, "invalid-argument"),
			({**PAYLOAD, "gameId": "nope"}, HOST, "not-found"),
			(PAYLOAD, AuthenticatedUser(id="p0"), "permission-denied"),
		],
	)
	async def test_guards(self, store, fake_generator, payload, user, code):
		await _crowdsourced_game(store)
		with pytest.raises(FunctionError) as excinfo:
			await evaluation.evaluate_submissions(store, payload, user, generator=fake_generator)
		assert excinfo.value.code == code


# ============================================================================
# extractTopics
# ============================================================================


def test_parse_extraction_response_defaults():
	reply = json.dumps({"topics": [{"topic": " Plants "}, {"topic": ""}, {"topic": "Light", "count": 3, "variations": ["Lamps"]}]})
	parsed = topics.parse_extraction_response(reply)
	assert parsed == [
		{"topic": "Plants", "description": "", "count": 1, "variations": ["Plants"], "submissionIds": []},
		{"topic": "Light", "description": "", "count": 3, "variations": ["Lamps"], "submissionIds": []},
	]


class TestExtractTopics:
	@pytest.mark.asyncio
	async def test_groups_submissions_and_moves_to_display(self, store, fake_generator):
		await store.set("activities/a1", {"config": {"prompt": "Office ideas?"}})
		await store.set("games/g1", {"hostId": HOST.id, "activityType": "thoughts-gathering", "activityId": "a1", "state": "processing"})
		await store.set("games/g1/submissions/t1", {"playerName": "A", "rawText": "More plants"})
		fake_generator.reply = json.dumps({"topics": [{"topic": "Plants", "submissionIds": ["t1"]}]})

		result = await topics.extract_topics(store, {"gameId": "g1"}, HOST, generator=fake_generator)
		assert result == {"success": True, "topicCount": 1, "submissionCount": 1}
		assert "Office ideas?" in fake_generator.prompts[0]
		stored = await store.get("games/g1/aggregates/topics")
		assert stored.get("totalSubmissions") == 1
		assert (await store.get("games/g1")).get("state") == "display"

	@pytest.mark.asyncio
	async def test_wrong_activity(self, store, fake_generator):
		await store.set("games/g1", {"hostId": HOST.id, "activityType": "quiz"})
		with pytest.raises(FunctionError) as excinfo:
			await topics.extract_topics(store, {"gameId": "g1"}, HOST, generator=fake_generator)
		assert excinfo.value.code == "failed-precondition"
