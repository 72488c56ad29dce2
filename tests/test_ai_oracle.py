"""AI oracle parsing and fallback tests."""

from types import SimpleNamespace

import pytest

from services.anomaly_service.ai_oracle import AIOracle
from services.anomaly_service.models import Severity


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content=None, error=None):
    completions = FakeCompletions(content, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


ANALYSIS_ARGS = dict(
    title="Flooding on Main St",
    description="Water over the road after heavy rain",
    type="weather",
    location="Springfield",
    raw_data={"gauge": 4.2},
)


@pytest.fixture
def offline_oracle(monkeypatch):
    from services.anomaly_service import ai_oracle

    monkeypatch.setattr(ai_oracle.settings, "openai_endpoint", None)
    monkeypatch.setattr(ai_oracle.settings, "openai_api_key", None)
    return AIOracle()


@pytest.mark.asyncio
async def test_unconfigured_oracle_returns_flagged_fallback(offline_oracle):
    assert offline_oracle.available is False

    analysis = await offline_oracle.analyze_anomaly(**ANALYSIS_ARGS)

    assert analysis.is_fallback
    assert analysis.confidence == 0.65
    assert analysis.severity == Severity.MEDIUM
    assert analysis.categories == ["weather"]
    assert analysis.entities == ["Springfield"]
    assert analysis.summary.startswith("Analysis of weather anomaly: Water over the road")


@pytest.mark.asyncio
async def test_unconfigured_cross_verify_counts_sources(offline_oracle):
    verified = await offline_oracle.cross_verify("a1", ["usgs", "emsc"])
    assert verified.verified is True
    assert verified.confidence == 0.75
    assert verified.matching_sources == 2
    assert verified.metadata == {"fallback": True}

    single = await offline_oracle.cross_verify("a1", ["usgs"])
    assert single.verified is False
    assert single.confidence == 0.5


@pytest.mark.asyncio
async def test_unconfigured_impact_assessment(offline_oracle):
    impact = await offline_oracle.generate_impact_assessment({"title": "x"})
    assert impact["fallback"] is True
    assert impact["overall_impact"] == "medium"


@pytest.mark.asyncio
async def test_analysis_is_parsed_and_clamped():
    client = _client('Sure, here it is: {"summary": "Flood", "severity": "HIGH", "confidence": 1.7, '
                     '"categories": ["flood"], "risk_factors": ["traffic"]} Thanks!')
    oracle = AIOracle(client=client, config={"deployment_name": "test-deployment"})

    analysis = await oracle.analyze_anomaly(**ANALYSIS_ARGS)

    assert not analysis.is_fallback
    assert analysis.summary == "Flood"
    assert analysis.severity == Severity.HIGH
    assert analysis.confidence == 1.0
    assert analysis.categories == ["flood"]
    assert analysis.risk_factors == ["traffic"]
    assert analysis.sentiment == "neutral"

    request = client.chat.completions.requests[0]
    assert request["model"] == "test-deployment"
    assert request["messages"][0]["role"] == "system"


@pytest.mark.asyncio
async def test_missing_keys_get_defaults():
    oracle = AIOracle(client=_client('{"severity": "apocalyptic"}'))

    analysis = await oracle.analyze_anomaly(**ANALYSIS_ARGS)

    assert analysis.severity == Severity.MEDIUM
    assert analysis.confidence == 0.5
    assert analysis.categories == ["weather"]
    assert analysis.summary == ANALYSIS_ARGS["description"]


@pytest.mark.asyncio
async def test_model_error_degrades_to_fallback():
    oracle = AIOracle(client=_client(error=RuntimeError("rate limited")))

    analysis = await oracle.analyze_anomaly(**ANALYSIS_ARGS)
    assert analysis.is_fallback
    assert "rate limited" in analysis.metadata["reason"]

    verification = await oracle.cross_verify("a1", ["one", "two", "three"])
    assert verification.verified is True
    assert verification.confidence == 0.6


@pytest.mark.asyncio
async def test_non_json_answer_degrades_to_fallback():
    oracle = AIOracle(client=_client("I cannot help with that."))

    analysis = await oracle.analyze_anomaly(**ANALYSIS_ARGS)

    assert analysis.is_fallback
    assert analysis.confidence == 0.65


@pytest.mark.asyncio
async def test_cross_verify_parses_model_answer():
    oracle = AIOracle(client=_client('{"verified": true, "confidence": -0.3, "matching_sources": 2, '
                                     '"discrepancies": ["timing"]}'))

    result = await oracle.cross_verify("a1", ["x", "y"])

    assert result.verified is True
    assert result.confidence == 0.0
    assert result.discrepancies == ["timing"]


def test_extract_json_rejects_text_without_object():
    with pytest.raises(ValueError):
        AIOracle._extract_json("no braces here")
