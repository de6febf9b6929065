from __future__ import annotations

import asyncio
import json
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from deepresearch.errors import ProviderError
from deepresearch.llm_client import LLM
from deepresearch.services import logger as log_service

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseAgent:
    """Base for the single-call LLM agents of the pipeline.

    Subclasses set `name` and build prompts; `_complete_json` turns the
    model's reply into a validated pydantic object or None. An agent with
    no LLM behaves as if every call failed.
    """

    name: str = "base"

    def __init__(self, llm: LLM | None = None):
        self.llm = llm

    @staticmethod
    def _extract_json_object(raw_text: str) -> dict[str, Any]:
        text = raw_text.strip()
        if text.startswith("```"):
            parts = text.split("```")
            if len(parts) >= 2:
                text = parts[1]
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise json.JSONDecodeError("object not found", text, 0)
        parsed = json.loads(text[start : end + 1])
        if not isinstance(parsed, dict):
            raise json.JSONDecodeError("not an object", text, 0)
        return parsed

    async def _complete_json(self, system: str, user: str, schema: type[ModelT]) -> ModelT | None:
        if self.llm is None:
            return None
        try:
            text = await self.llm.complete(system, user, json_mode=True, caller=self.name)
        except asyncio.CancelledError:
            raise
        except ProviderError as e:
            log_service.log_event(
                event_type="agent_call_failed",
                message=f"{self.name} call failed",
                error=e.reason,
            )
            return None

        try:
            return schema.model_validate(self._extract_json_object(text))
        except (json.JSONDecodeError, SchemaError) as e:
            log_service.log_event(
                event_type="agent_output_invalid",
                message=f"{self.name} returned unusable JSON",
                error=str(e)[:300],
            )
            return None
