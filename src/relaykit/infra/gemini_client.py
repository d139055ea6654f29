"""Gemini model factory for RelayKit agents."""

import copy
from functools import lru_cache

import google.generativeai as genai

from relaykit.app.config import get_settings


# Fields that Pydantic v2 adds to JSON Schema but Gemini's API rejects
_UNSUPPORTED_KEYS = {
    "$defs", "definitions", "title", "default", "examples",
    "additionalProperties", "maximum", "minimum", "exclusiveMaximum",
    "exclusiveMinimum", "maxLength", "minLength", "pattern",
    "maxItems", "minItems", "uniqueItems",
}


def clean_schema(schema: dict) -> dict:
    """Clean a Pydantic JSON Schema for Gemini consumption.

    Inlines ``$defs``/``$ref`` references, collapses ``anyOf`` with a
    ``null`` branch (Optional fields) into the non-null branch, and strips
    keys the SDK rejects.
    """
    schema = copy.deepcopy(schema)
    defs = schema.pop("$defs", None) or schema.pop("definitions", None)

    def _resolve(node):
        if isinstance(node, dict):
            if "$ref" in node:
                ref_name = node["$ref"].rsplit("/", 1)[-1]
                if defs and ref_name in defs:
                    return _resolve(copy.deepcopy(defs[ref_name]))
                return node
            if "anyOf" in node:
                branches = [b for b in node["anyOf"] if b.get("type") != "null"]
                if len(branches) == 1:
                    merged = {k: v for k, v in node.items() if k != "anyOf"}
                    merged.update(branches[0])
                    merged["nullable"] = True
                    return _resolve(merged)
            for key in _UNSUPPORTED_KEYS:
                node.pop(key, None)
            for key, value in list(node.items()):
                node[key] = _resolve(value)
        elif isinstance(node, list):
            for i, item in enumerate(node):
                node[i] = _resolve(item)
        return node

    return _resolve(schema)


@lru_cache(maxsize=4)
def _configure(api_key: str) -> None:
    genai.configure(api_key=api_key)


def generation_config(
    temperature: float, json_mode: bool = False, response_schema: dict | None = None
) -> dict:
    config = {"temperature": temperature}
    if json_mode:
        config["response_mime_type"] = "application/json"
    if json_mode and response_schema:
        config["response_schema"] = clean_schema(response_schema)
    return config


def get_model(
    model_name: str | None = None,
    temperature: float | None = None,
    json_mode: bool = False,
    response_schema: dict | None = None,
    system_instruction: str | None = None,
):
    """Build a ``GenerativeModel``; unset name and temperature come from settings."""
    settings = get_settings()
    _configure(settings.gemini_api_key)
    return genai.GenerativeModel(
        model_name=model_name or settings.estimate_model,
        generation_config=generation_config(
            settings.estimate_temperature if temperature is None else temperature,
            json_mode=json_mode,
            response_schema=response_schema,
        ),
        system_instruction=system_instruction,
    )
