"""Tests for the Gemini-backed estimate agent (model calls mocked)."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

from relaykit.agents.base import ERROR_INVALID_JSON, ERROR_REQUEST_FAILED, ERROR_TIMEOUT
from relaykit.agents.estimate_agent import EstimateAgent
from relaykit.domain.schemas import DraftEstimateResponse
from relaykit.infra.gemini_client import clean_schema, generation_config


def _model_returning(text: str, prompt_tokens: int = 10, completion_tokens: int = 5):
    response = MagicMock()
    response.text = text
    response.usage_metadata = MagicMock(
        prompt_token_count=prompt_tokens, candidates_token_count=completion_tokens
    )
    model = MagicMock()
    model.generate_content_async = AsyncMock(return_value=response)
    return model


async def test_draft_parses_and_validates(make_draft):
    model = _model_returning(json.dumps(make_draft()))
    agent = EstimateAgent(model_name="gemini-test")

    with patch("relaykit.infra.gemini_client.get_model", return_value=model) as get_model:
        result = await agent.draft("system", "Job title: Sink", images=[{"mime_type": "image/png", "data": b"x"}])

    assert result.ok
    assert isinstance(result.data, DraftEstimateResponse)
    assert result.data.estimate.labor[0].hours == 2
    assert result.data.client.customer_name == "Dana Client"
    assert result.tokens_used == 15

    kwargs = get_model.call_args.kwargs
    assert kwargs["json_mode"] is True
    assert kwargs["system_instruction"] == "system"
    assert kwargs["model_name"] == "gemini-test"
    contents = model.generate_content_async.await_args.args[0]
    assert contents == ["Job title: Sink", {"mime_type": "image/png", "data": b"x"}]


async def test_non_json_reply_is_invalid_json():
    model = _model_returning("Sure! Here is your estimate.")
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent().draft("system", "text")

    assert not result.ok
    assert result.error_code == ERROR_INVALID_JSON
    assert result.data == "Sure! Here is your estimate."


async def test_json_array_reply_is_invalid_json():
    model = _model_returning("[1, 2, 3]")
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent().draft("system", "text")

    assert result.error_code == ERROR_INVALID_JSON


async def test_wrong_shape_is_invalid_json():
    model = _model_returning(json.dumps({"estimate": {"labor": [{"task": "x", "hours": "lots"}]}}))
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent().draft("system", "text")

    assert not result.ok
    assert result.error_code == ERROR_INVALID_JSON
    assert "schema error" in result.error


async def test_null_fields_fall_back_to_defaults():
    reply = {
        "client": {"customerName": "Dana", "phone": None, "preferredDate": None},
        "estimate": {
            "jobNotes": None,
            "labor": None,
            "materials": [{"item": "P-trap", "qty": None, "cost": None}],
        },
        "image_analysis": None,
    }
    model = _model_returning(json.dumps(reply))
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent().draft("system", "text")

    assert result.ok
    assert result.data.client.customer_name == "Dana"
    assert result.data.client.phone == ""
    assert result.data.client.preferred_date == ""
    assert result.data.estimate.job_notes == ""
    assert result.data.estimate.labor == []
    assert result.data.estimate.materials[0].qty == 0
    assert result.data.estimate.materials[0].cost == 0
    assert result.data.image_analysis == []


async def test_empty_reply_is_request_failure():
    model = _model_returning("")
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent().draft("system", "text")

    assert result.error_code == ERROR_REQUEST_FAILED


async def test_sdk_exception_is_request_failure():
    model = MagicMock()
    model.generate_content_async = AsyncMock(side_effect=RuntimeError("429 quota exceeded"))
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent().draft("system", "text")

    assert result.error_code == ERROR_REQUEST_FAILED
    assert "quota" in result.error


async def test_slow_model_times_out():
    async def never(*args, **kwargs):
        await asyncio.sleep(5)

    model = MagicMock()
    model.generate_content_async = never
    with patch("relaykit.infra.gemini_client.get_model", return_value=model):
        result = await EstimateAgent(timeout_seconds=0.01).draft("system", "text")

    assert result.error_code == ERROR_TIMEOUT


def test_clean_schema_inlines_refs_and_strips_unsupported_keys():
    cleaned = clean_schema(DraftEstimateResponse.model_json_schema())

    serialized = json.dumps(cleaned)
    assert "$ref" not in serialized
    assert "$defs" not in serialized
    assert '"title"' not in serialized
    labor = cleaned["properties"]["estimate"]["properties"]["labor"]
    assert labor["items"]["properties"]["hours"]["type"] == "number"


def test_generation_config_only_sends_schema_in_json_mode():
    schema = DraftEstimateResponse.model_json_schema()

    assert generation_config(0.3) == {"temperature": 0.3}
    assert generation_config(0.3, response_schema=schema) == {"temperature": 0.3}

    config = generation_config(0.3, json_mode=True, response_schema=schema)
    assert config["response_mime_type"] == "application/json"
    assert "$defs" not in config["response_schema"]
