"""
AI Responder — produces the hidden AI player's chat lines.

Uses Gemini text generation (not Live API) in three layers:
  1. Primary model   (settings.ai_model, last 10 messages of context)
  2. Backup model    (settings.ai_backup_model, last 5 messages, shorter prompt)
  3. Canned line     (static, per personality)

generate() never raises and never returns an empty string. A failing provider
degrades chat quality; it must not reach the Room Session.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from config import settings
from models.game import Personality

logger = logging.getLogger(__name__)

# (system_instruction, prompt) -> text
Provider = Callable[[str, str], Awaitable[str]]

MAX_REPLY_CHARS = 300


# ── Personalities ─────────────────────────────────────────────────────────────

PERSONALITIES: Dict[str, Dict[str, str]] = {
    Personality.CASUAL.value: {
        "name": "Casual Gamer",
        "system": (
            "You are playing a social deduction game where you must blend in with human "
            "players as an AI imposter. Your personality is casual and friendly - you're a "
            "typical gamer who likes to have fun. Use casual language, gaming slang "
            "occasionally, and act like you've played similar games before. Keep responses "
            "short and natural (1-2 sentences max). Use emojis sparingly. Don't be overly "
            "helpful or analytical."
        ),
        "fallback": "Yeah, this is fun! 😄",
    },
    Personality.FUNNY.value: {
        "name": "Class Clown",
        "system": (
            "You are playing a social deduction game as an AI imposter trying to blend in. "
            "Your personality is funny and jokes around a lot. Make lighthearted jokes, use "
            "humor to deflect suspicion, and keep the mood light. Don't overdo it with "
            "jokes - be naturally funny. Keep responses short (1-2 sentences max). Use "
            "emojis occasionally for comedic effect."
        ),
        "fallback": "Haha, you guys are hilarious! 😂",
    },
    Personality.SERIOUS.value: {
        "name": "Strategic Player",
        "system": (
            "You are an AI imposter in a social deduction game. Your personality is serious "
            "and strategic - you analyze situations carefully and speak thoughtfully. Be "
            "logical and methodical but don't sound robotic. Ask strategic questions and "
            "make reasoned observations. Keep responses concise (1-2 sentences max). Avoid "
            "emojis mostly."
        ),
        "fallback": "Interesting discussion so far.",
    },
    Personality.SHY.value: {
        "name": "Quiet Observer",
        "system": (
            "You are an AI imposter trying to blend in as a shy, quiet player. You don't "
            "talk much, prefer short responses, and seem a bit nervous or hesitant. When "
            "you do speak, keep it brief and sometimes uncertain. Use phrases like "
            "\"I think...\" or \"Maybe...\" Keep responses very short. Rarely use emojis."
        ),
        "fallback": "I... I'm not sure...",
    },
}

DEFAULT_FALLBACK = "Hey everyone!"


def _personality(tag: str) -> Dict[str, str]:
    return PERSONALITIES.get(tag, PERSONALITIES[Personality.CASUAL.value])


def list_personalities() -> List[Dict[str, str]]:
    return [{"id": tag, "name": p["name"]} for tag, p in PERSONALITIES.items()]


def fallback_line(personality: str) -> str:
    entry = PERSONALITIES.get(personality)
    return entry["fallback"] if entry else DEFAULT_FALLBACK


# ── Context ───────────────────────────────────────────────────────────────────

class ChatLine(BaseModel):
    player_name: str
    content: str
    is_ai: bool = False


class AIContext(BaseModel):
    messages: List[ChatLine] = []
    human_names: List[str] = []
    game_phase: str = "discussion"


def _format_chat(lines: List[ChatLine]) -> str:
    return "\n".join(f"{m.player_name}: {m.content}" for m in lines) or "(no chat yet)"


def _build_primary_prompt(context: AIContext) -> str:
    return (
        "Game context:\n"
        "- You are one of the players in this chat\n"
        f"- Other human players: {', '.join(context.human_names)}\n"
        f"- Current game phase: {context.game_phase}\n"
        "- Recent conversation:\n"
        f"{_format_chat(context.messages[-10:])}\n\n"
        "Respond naturally to the conversation as your character would. "
        "Remember to blend in with the humans!"
    )


def _build_backup_prompt(context: AIContext) -> str:
    return (
        f"Recent chat:\n{_format_chat(context.messages[-5:])}\n"
        "Reply with one short chat line, no name prefix."
    )


def _clean(text: Optional[str]) -> str:
    """First non-empty line, trimmed to chat length."""
    if not text:
        return ""
    for line in text.strip().splitlines():
        line = line.strip()
        if line:
            return line[:MAX_REPLY_CHARS]
    return ""


# ── Gemini provider ───────────────────────────────────────────────────────────

# Module-level Gemini client cache — created once on first use.
_genai_client: Optional[Any] = None


def _get_client():
    global _genai_client
    if _genai_client is None:
        if not settings.gemini_api_key:
            raise RuntimeError("GEMINI_API_KEY not set")
        from google import genai
        _genai_client = genai.Client(api_key=settings.gemini_api_key)
    return _genai_client


def gemini_provider(model: str) -> Provider:
    """Build a provider that calls ``model`` via the async Gemini client."""

    async def _call(system: str, prompt: str) -> str:
        from google.genai import types

        client = _get_client()
        response = await client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                temperature=settings.ai_temperature,
                max_output_tokens=settings.ai_max_output_tokens,
            ),
        )
        return response.text or ""

    return _call


# ── Responder ─────────────────────────────────────────────────────────────────

class AIResponder:
    """Layered text generation; see module docstring."""

    def __init__(
        self,
        primary: Optional[Provider] = None,
        backup: Optional[Provider] = None,
        timeout: Optional[float] = None,
    ):
        self.primary = primary
        self.backup = backup
        self.timeout = timeout if timeout is not None else settings.ai_timeout

    @classmethod
    def from_settings(cls) -> "AIResponder":
        return cls(
            primary=gemini_provider(settings.ai_model),
            backup=gemini_provider(settings.ai_backup_model) if settings.ai_backup_enabled else None,
        )

    async def _attempt(self, label: str, provider: Provider, system: str, prompt: str) -> str:
        try:
            text = await asyncio.wait_for(provider(system, prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("[ai] %s generation timed out after %.1fs", label, self.timeout)
            return ""
        except Exception as exc:
            logger.warning("[ai] %s generation failed: %s", label, exc)
            return ""
        cleaned = _clean(text)
        if not cleaned:
            logger.warning("[ai] %s generation returned no usable text", label)
        return cleaned

    async def generate(self, personality: str, context: AIContext) -> str:
        config = _personality(personality)

        if self.primary is not None:
            text = await self._attempt("primary", self.primary, config["system"], _build_primary_prompt(context))
            if text:
                return text

        if self.backup is not None:
            # Backup gets only the first sentence of the persona
            system = config["system"].split(".")[0] + "."
            text = await self._attempt("backup", self.backup, system, _build_backup_prompt(context))
            if text:
                return text

        logger.info("[ai] Using canned line for personality '%s'", personality)
        return fallback_line(personality)
