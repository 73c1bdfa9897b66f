"""
Tests for AI proposal parsing and the per-model fan-out
"""
from types import SimpleNamespace

from src.services.ai_proposals import OpenAIProposalService, build_prompt, parse_model_response

from factories import make_snapshot


def completion(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    def __init__(self, replies):
        self.replies = replies
        self.calls = []

    async def create(self, **params):
        self.calls.append(params)
        reply = self.replies[params["model"]]
        if isinstance(reply, Exception):
            raise reply
        return completion(reply)


def fake_client(replies):
    completions = FakeCompletions(replies)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_parse_fenced_json():
    text = 'Here you go:\n```json\n{"signals": [{"symbol": "BTCUSDT"}, "junk"]}\n```'
    assert parse_model_response(text) == [{"symbol": "BTCUSDT"}]


def test_parse_failures():
    assert parse_model_response(None) is None
    assert parse_model_response("no json here") is None
    assert parse_model_response('{"signals": [') is None
    assert parse_model_response('{"ideas": []}') is None


def test_parse_empty_list_is_not_failure():
    assert parse_model_response('{"signals": []}') == []


def test_build_prompt_lists_symbols():
    prompt = build_prompt([make_snapshot("BTCUSDT", 100.0), make_snapshot("ETHUSDT", 2000.0)], 2.5)

    assert "BTCUSDT price 100.0" in prompt
    assert "ETHUSDT price 2000.0" in prompt
    assert "Risk/reward must be >= 2.5" in prompt


async def test_propose_isolates_model_failures():
    client, completions = fake_client({
        "model-a": '{"signals": [{"symbol": "BTCUSDT", "direction": "LONG"}]}',
        "model-b": RuntimeError("rate limited"),
        "model-c": "I cannot help with that",
    })
    service = OpenAIProposalService(models=["model-a", "model-b", "model-c"], client=client, temperature=None)

    result = await service.propose("prompt")

    assert result == {
        "model-a": [{"symbol": "BTCUSDT", "direction": "LONG"}],
        "model-b": None,
        "model-c": None,
    }
    assert all("temperature" not in call for call in completions.calls)
