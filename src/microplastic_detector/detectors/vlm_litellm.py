"""Particle characterization via a vision-language model through LiteLLM."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Sequence
from typing import Any

import litellm
from pydantic import BaseModel

from microplastic_detector.errors import CharacterizationUnavailable
from microplastic_detector.vision.types import AnalyzedParticle

LOG = logging.getLogger(__name__)

SHAPE_CATEGORIES = ("Fiber", "Fragment", "Film", "Bead", "Foam", "Pellet", "Unknown")
TRANSPARENCY_LEVELS = ("Opaque", "Translucent", "Transparent", "Unknown")
COLOR_EXAMPLES = (
    "Blue",
    "Red",
    "White",
    "Clear",
    "Black",
    "Green",
    "Yellow",
    "Multi-colored",
    "Unknown",
)


def build_prompt(indices: Sequence[int]) -> str:
    """Return the characterization prompt for the given annotation indices."""
    idx = ", ".join(str(i) for i in indices)
    schema_hint = {
        "index": "<particle_index_number>",
        "analysis": {
            "shape": "<Shape Category>",
            "color": "<Dominant Color>",
            "transparency": "<Transparency Level>",
        },
    }
    return f"""
Analyze the provided image containing microplastic particles marked with red boxes and index numbers ({idx}).
For EACH index number visible in the image, provide its characteristics.

Output your response ONLY as a single JSON array. Do not include any introductory text, code block markers (like ```json), explanations, or any other text outside the JSON array itself.
Each object in the JSON array should represent one particle and MUST have the following structure:
{json.dumps(schema_hint, indent=2)}

Use these specific categories:
- Shape Categories: {", ".join(SHAPE_CATEGORIES)}
- Transparency Levels: {", ".join(TRANSPARENCY_LEVELS)}
- Color: Describe the dominant color (e.g., {", ".join(COLOR_EXAMPLES)})

If you cannot determine a characteristic for a specific index, use the string "Unknown".
If an index number from the list ({idx}) is not clearly identifiable or visible in the image, omit that index entirely from the JSON array.
Ensure the final output is a valid JSON array.
    """.strip()


def _content_to_text(content: Any) -> str:
    """Best-effort normalization of provider responses to a single text string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    # OpenAI-style content blocks: [{"type":"text","text":"..."} , ...]
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict):
                t = item.get("text")
                if isinstance(t, str):
                    chunks.append(t)
        return "\n".join(chunks).strip()
    if isinstance(content, dict):
        t = content.get("text")
        if isinstance(t, str):
            return t
    return str(content)


def _response_to_dict(resp: Any) -> dict[str, Any]:
    """Normalize a LiteLLM completion response object to a plain dict."""
    if isinstance(resp, dict):
        return resp
    if isinstance(resp, BaseModel):
        return resp.model_dump()
    raise TypeError(f"Unsupported completion response type: {type(resp)!r}")


def _extract_choice_text(resp: dict[str, Any]) -> tuple[str, str]:
    """Extract assistant content and finish_reason from a Chat Completions-style response."""
    choices = resp.get("choices") or []
    if not isinstance(choices, list) or not choices:
        return "", ""
    c0 = choices[0] or {}
    if not isinstance(c0, dict):
        return "", ""
    finish_reason = str(c0.get("finish_reason") or "")

    msg = c0.get("message") or {}
    if isinstance(msg, dict) and "content" in msg:
        return _content_to_text(msg.get("content")), finish_reason

    # Some providers put content at the choice level.
    if "text" in c0:
        return _content_to_text(c0.get("text")), finish_reason

    return "", finish_reason


def _build_messages(annotated_png: bytes, particles: Sequence[AnalyzedParticle]) -> list[dict[str, Any]]:
    b64 = base64.b64encode(annotated_png).decode("ascii")
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": build_prompt([p.index for p in particles])},
                {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64}"}},
            ],
        }
    ]


def _reply_text(raw_resp: Any, *, max_tokens: int) -> str:
    resp = _response_to_dict(raw_resp)
    text, finish_reason = _extract_choice_text(resp)
    LOG.info(
        "VLM response received: finish_reason=%s usage=%s",
        finish_reason,
        resp.get("usage"),
    )
    LOG.debug("VLM response content:\n%s", text)
    if not text.strip():
        raise CharacterizationUnavailable(
            "VLM returned empty content. "
            f"finish_reason={finish_reason!r}, max_tokens={max_tokens}, "
            f"usage={resp.get('usage')!r}"
        )
    return text


def characterize(
    annotated_png: bytes,
    particles: Sequence[AnalyzedParticle],
    *,
    model: str,
    temperature: float = 0.0,
    max_tokens: int = 4000,
    timeout_s: float = 60.0,
) -> str:
    """Ask a VLM to characterize index-labeled particles; return its raw reply.

    The reply is untrusted free text; parse it with
    :func:`microplastic_detector.llm.response.parse_analysis_response`.

    Raises:
        CharacterizationUnavailable: If the model returns no text.
    """
    LOG.info("Requesting characterization via LiteLLM: model=%s particles=%s", model, len(particles))
    raw_resp = litellm.completion(
        model=model,
        messages=_build_messages(annotated_png, particles),
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout_s,
    )
    return _reply_text(raw_resp, max_tokens=max_tokens)


async def acharacterize(
    annotated_png: bytes,
    particles: Sequence[AnalyzedParticle],
    *,
    model: str,
    temperature: float = 0.0,
    max_tokens: int = 4000,
    timeout_s: float = 60.0,
) -> str:
    """Async variant of :func:`characterize`."""
    LOG.info("Requesting characterization via LiteLLM: model=%s particles=%s", model, len(particles))
    raw_resp = await litellm.acompletion(
        model=model,
        messages=_build_messages(annotated_png, particles),
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout_s,
    )
    return _reply_text(raw_resp, max_tokens=max_tokens)
