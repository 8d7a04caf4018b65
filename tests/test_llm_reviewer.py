import json
from collections.abc import Generator
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from openai import OpenAIError

from statement_auditor.errors import ReviewError
from statement_auditor.evidence import build_anomaly
from statement_auditor.models import Anomaly, AnomalyType, Evidence
from statement_auditor.reviewers.llm import LLMReviewer, reviewer_from_env


@pytest.fixture
def mock_openai_client() -> Generator[MagicMock, None, None]:
    with patch("statement_auditor.reviewers.llm.OpenAI") as mock:
        yield mock


@pytest.fixture
def anomaly(make_transaction) -> Anomaly:
    first = make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 5))
    second = make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 7))
    evidence = [Evidence(kind="DUPLICATE_GROUP", description="2 similar charges", value=2)]
    return build_anomaly(AnomalyType.DUPLICATE_FEE, [first, second], 5000, 0.96, evidence, "Claim it back.")


def _respond(mock_openai_client: MagicMock, text: str) -> MagicMock:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.return_value = MagicMock(output_text=text)
    return mock_instance


def test_llm_review(mock_openai_client: MagicMock, anomaly: Anomaly) -> None:
    answer = [
        {
            "anomaly_id": anomaly.id,
            "explanation": "The card fee was taken twice in two days.",
            "suggested_actions": ["Contact the branch"],
            "regulatory_reference": None,
            "fraud_suspected": False,
        },
        {"anomaly_id": "INVENTED-1", "explanation": "Not in the list"},
    ]
    mock_instance = _respond(mock_openai_client, json.dumps(answer))

    reviewer = LLMReviewer(api_key="sk-fake", model="gpt-4o-mini")
    annotations = reviewer.classify(anomaly.transactions, [anomaly])

    assert list(annotations) == [anomaly.id]
    annotation = annotations[anomaly.id]
    assert annotation.explanation == "The card fee was taken twice in two days."
    assert annotation.suggested_actions == ["Contact the branch"]
    assert annotation.fraud_suspected is False

    mock_instance.responses.create.assert_called_once()
    kwargs = mock_instance.responses.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert anomaly.id in kwargs["input"]


def test_llm_review_fenced_answer(mock_openai_client: MagicMock, anomaly: Anomaly) -> None:
    fenced = "```json\n" + json.dumps([{"anomaly_id": anomaly.id, "explanation": "Duplicate"}]) + "\n```"
    _respond(mock_openai_client, fenced)

    annotations = LLMReviewer(api_key="sk-fake").classify(anomaly.transactions, [anomaly])

    assert annotations[anomaly.id].explanation == "Duplicate"


def test_llm_review_batches(mock_openai_client: MagicMock, anomaly: Anomaly) -> None:
    mock_instance = _respond(mock_openai_client, "[]")
    other = anomaly.model_copy(update={"id": "DUP-OTHER"})

    LLMReviewer(api_key="sk-fake", batch_size=1).classify(anomaly.transactions, [anomaly, other])

    assert mock_instance.responses.create.call_count == 2


def test_llm_review_api_error(mock_openai_client: MagicMock, anomaly: Anomaly) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.side_effect = OpenAIError("boom")

    with pytest.raises(ReviewError):
        LLMReviewer(api_key="sk-fake").classify(anomaly.transactions, [anomaly])


@pytest.mark.parametrize("text", ["not json", '{"anomaly_id": "x"}'])
def test_llm_review_invalid_answer(mock_openai_client: MagicMock, anomaly: Anomaly, text: str) -> None:
    _respond(mock_openai_client, text)

    with pytest.raises(ReviewError):
        LLMReviewer(api_key="sk-fake").classify(anomaly.transactions, [anomaly])


def test_reviewer_disabled_without_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert reviewer_from_env() is None


def test_reviewer_from_env(monkeypatch: pytest.MonkeyPatch, mock_openai_client: MagicMock) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-fake")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4.1-mini")

    reviewer = reviewer_from_env()

    assert isinstance(reviewer, LLMReviewer)
    assert reviewer.model == "gpt-4.1-mini"
