"""Style advisor model function backed by OpenAI chat completions."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from services.advisor.prompts import (
	advisor_system_prompt,
	analysis_user_prompt,
	appearance_prompt,
	visual_context_note,
)
from utils.media_validation import is_image_data_uri

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_TOKENS = 1000


def sse_line(event: Dict[str, Any]) -> str:
	return f"data: {json.dumps(event)}\n\n"


def _image_message(text: str, image: str) -> Dict[str, Any]:
	return {
		"role": "user",
		"content": [
			{"type": "text", "text": text},
			{"type": "image_url", "image_url": {"url": image}},
		],
	}


class StyleAdvisorService:
	"""Answer analysis and follow-up requests for the chat engine."""

	def __init__(self, client: AsyncOpenAI, default_model: str = DEFAULT_MODEL, max_tokens: int = MAX_TOKENS) -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.default_model = default_model
		self.max_tokens = max_tokens

	async def analyze(self, image: str, model: Optional[str] = None, temperature: float = 0.7) -> Dict[str, str]:
		"""Return `{response, visualContext}` for a first photo.

		Args:
			image: Image data URI.
			model: Chat model; defaults to the service default.
			temperature: Sampling temperature for the advice.
		"""
		model = model or self.default_model
		advice = await self._complete(
			model,
			[{"role": "system", "content": advisor_system_prompt()}, _image_message(analysis_user_prompt(), image)],
			temperature,
		)
		description = await self._complete(model, [_image_message(appearance_prompt(), image)], 0.2)
		return {"response": advice, "visualContext": description}

	async def stream_reply(
		self,
		messages: Sequence[Dict[str, str]],
		model: Optional[str] = None,
		temperature: float = 0.7,
		image: Optional[str] = None,
		visual_context: Optional[str] = None,
		visual_history: Sequence[Dict[str, Any]] = (),
	) -> AsyncIterator[str]:
		"""Yield `data: {...}` lines for a follow-up; failures become one error line."""
		api_messages = self._build_messages(messages, image, visual_context, visual_history)
		try:
			stream = await self.client.chat.completions.create(
				model=model or self.default_model,
				messages=api_messages,
				temperature=temperature,
				max_tokens=self.max_tokens,
				stream=True,
			)
			async for chunk in stream:
				if not chunk.choices:
					continue
				delta = chunk.choices[0].delta.content
				if delta:
					yield sse_line({"content": delta})
		except Exception as exc:
			LOGGER.exception("Style advisor stream failed")
			yield sse_line({"error": str(exc) or exc.__class__.__name__})
			return
		yield "data: [DONE]\n\n"

	def _build_messages(
		self,
		messages: Sequence[Dict[str, str]],
		image: Optional[str],
		visual_context: Optional[str],
		visual_history: Sequence[Dict[str, Any]],
	) -> List[Dict[str, Any]]:
		api_messages: List[Dict[str, Any]] = [{"role": "system", "content": advisor_system_prompt()}]
		note = visual_context_note(visual_context, visual_history)
		if note:
			api_messages.append({"role": "system", "content": note})
		history = [{"role": m["role"], "content": m["content"]} for m in messages]
		if not image and visual_context and is_image_data_uri(visual_context):
			image = visual_context
		# The current photo rides along with the newest user message.
		if image and history and history[-1]["role"] == "user":
			last = history.pop()
			history.append(_image_message(last["content"], image))
		api_messages.extend(history)
		return api_messages

	async def _complete(self, model: str, messages: List[Dict[str, Any]], temperature: float) -> str:
		response = await self.client.chat.completions.create(
			model=model,
			messages=messages,
			temperature=temperature,
			max_tokens=self.max_tokens,
		)
		content = response.choices[0].message.content if response.choices else None
		if not content:
			raise RuntimeError("No response content from the model")
		return content.strip()
