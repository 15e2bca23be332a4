import json
from types import SimpleNamespace

import openai
import pytest
from fakes import make_ticket

from impactlens.core.errors import SynthesisError, UpstreamError
from impactlens.core.models import RiskLevel
from impactlens.insights.openai_advisor import OpenAIInsightAdvisor, render_related, render_ticket


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _advisor(*replies):
    completions = FakeCompletions(replies)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIInsightAdvisor(model="test-model", client=client), completions


SOURCE = make_ticket("ABC-1", "Add login throttling", "Limit attempts", labels=("auth",))
OTHER = make_ticket("ABC-2", "Session timeout", status="Done")


def test_keywords_request_uses_json_mode():
    advisor, completions = _advisor({"keywords": ["login", " ", "throttle", 42]})
    assert advisor.extract_keywords(SOURCE) == ["login", "throttle", "42"]
    request = completions.requests[0]
    assert request["model"] == "test-model"
    assert request["response_format"] == {"type": "json_object"}
    assert "ABC-1" in request["messages"][1]["content"]


def test_score_parses_number():
    advisor, _ = _advisor({"score": "0.75"})
    assert advisor.score(SOURCE, OTHER) == 0.75


def test_api_failure_becomes_upstream_error():
    advisor, _ = _advisor(openai.OpenAIError("boom"))
    with pytest.raises(UpstreamError):
        advisor.extract_keywords(SOURCE)


def test_unusable_score_is_upstream_error():
    advisor, _ = _advisor({"relevance": 1})
    with pytest.raises(UpstreamError):
        advisor.score(SOURCE, OTHER)


def test_gap_and_regression_parsing():
    advisor, _ = _advisor(
        {"category": "Security", "description": "No lockout", "severity": "major", "suggestions": ["Add lockout"]},
        {"areas": [{"area": "Login", "description": "d", "riskLevel": "High", "testCases": ["t1"]}]},
        {"summary": "Touches authentication."},
    )
    gap = advisor.analyze_gaps(SOURCE, [OTHER])
    assert gap.severity is RiskLevel.HIGH
    areas = advisor.suggest_regression_areas(SOURCE, [OTHER])
    assert areas[0].area == "Login" and areas[0].test_cases == ("t1",)
    assert advisor.summarize(SOURCE, [OTHER]) == "Touches authentication."


@pytest.mark.parametrize(
    "reply",
    ["not json", ["a list"], {"category": "x", "description": "y", "severity": "apocalyptic"}],
)
def test_malformed_gap_is_synthesis_error(reply):
    advisor, _ = _advisor(reply)
    with pytest.raises(SynthesisError):
        advisor.analyze_gaps(SOURCE, [])


def test_missing_area_list_is_synthesis_error():
    advisor, _ = _advisor({"areas": "none"})
    with pytest.raises(SynthesisError):
        advisor.suggest_regression_areas(SOURCE, [])


def test_rendering():
    text = render_ticket(make_ticket("ABC-3", "S", "z" * 5000, comments=("c1",), attachments=("a.png",)))
    assert "Labels" not in text
    assert "Comments:\nc1" in text
    assert "Attachments: a.png" in text
    assert "z" * 4000 + " ..." in text
    assert "z" * 4001 not in text
    assert render_related([]) == "(none)"
    assert render_related([OTHER]) == "- ABC-2 [Done]: Session timeout"
