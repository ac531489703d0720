"""Prompt helpers for the style advisor model function."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from utils.media_validation import is_image_data_uri


def advisor_system_prompt() -> str:
	"""Return the stylist persona used for every request."""
	return (
		"You are a professional fashion stylist and image consultant. "
		"Provide personalized style advice based on what you observe in photos or respond to follow-up "
		"questions about fashion and styling. Be specific, practical, and encouraging in your recommendations."
	)


def analysis_user_prompt() -> str:
	"""Return the instruction sent with a first photo."""
	return (
		"Please analyze this photo and provide personalized style advice. Consider skin tone, face shape, "
		"current style, and suggest specific improvements for clothing, colors, and accessories."
	)


def appearance_prompt() -> str:
	"""Return the instruction for the short appearance note kept as visual context."""
	return (
		"Describe only what the person in this photo is wearing and their visible styling "
		"(garments, colors, patterns, accessories, hair) in two or three factual sentences. "
		"Do not give advice."
	)


def _text_note(value: Any) -> Optional[str]:
	if not value or is_image_data_uri(str(value)):
		return None
	return str(value).strip() or None


def visual_context_note(visual_context: Optional[str], visual_history: Sequence[Dict[str, Any]] = (), limit: int = 3) -> Optional[str]:
	"""Return a system note recalling earlier observations, or None when there are none.

	Photos stored as visual context are not repeated here; only textual
	appearance notes are.
	"""
	latest = _text_note(visual_context)
	earlier = [
		note
		for note in (_text_note(entry.get("visual_context")) for entry in visual_history)
		if note and note != latest
	][-limit:]
	if not latest and not earlier:
		return None
	lines = ["What you have observed about the user so far:"]
	lines.extend(f"- Earlier: {note}" for note in earlier)
	if latest:
		lines.append(f"- Most recent: {latest}")
	return "\n".join(lines)
