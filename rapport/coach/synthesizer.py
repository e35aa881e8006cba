import logging

from rapport.analytics.relationship import RelationshipType
from rapport.coach.prompts import FALLBACK_RESPONSE, AnalysisPrompt, counterpart_for, persona_for
from rapport.config import settings
from rapport.llm import LLMClient, get_llm_client
from rapport.models import COACH_SENDER_ID, Message, User

logger = logging.getLogger(__name__)


def _display_name(sender_id: str, users: dict[str, User]) -> str:
    if sender_id == COACH_SENDER_ID:
        return "Coach"
    user = users.get(sender_id)
    return user.name if user else sender_id


def format_transcript(messages: list[Message], users: dict[str, User]) -> str:
    return "\n".join(f"{_display_name(m.sender_id, users)}: {m.text}" for m in messages)


def _history_turns(coach_history: list[Message]) -> list[dict]:
    turns: list[dict] = []
    for msg in coach_history:
        role = "assistant" if msg.sender_id == COACH_SENDER_ID else "user"
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += "\n\n" + msg.text
        else:
            turns.append({"role": role, "content": msg.text})
    # Providers expect the first turn from the user
    while turns and turns[0]["role"] == "assistant":
        turns.pop(0)
    return turns


class CoachSynthesizer:
    def __init__(self, llm_client: LLMClient | None = None):
        self.llm = llm_client or get_llm_client()

    def build_messages(
        self,
        relationship: RelationshipType,
        prompt: AnalysisPrompt,
        coach_history: list[Message],
        parent_messages: list[Message],
        user_name: str,
        users: dict[str, User] | None = None,
    ) -> tuple[str, list[dict]]:
        """System prompt and chat turns for one coaching response."""
        users = users or {}
        sections = [
            persona_for(relationship),
            prompt.context,
            f"You are acting as a coach to {user_name}, to whom you are talking. "
            "Address them directly, not in the third person.",
        ]
        if prompt.include_parent and parent_messages:
            sections.append(
                f"Here are the last {len(parent_messages)} messages from {user_name}'s chat with "
                f"{counterpart_for(relationship)} (this may not be their full conversation):\n"
                + format_transcript(parent_messages, users)
            )
        system = "\n\n".join(s for s in sections if s)

        messages = _history_turns(coach_history) if prompt.include_history else []
        final = f"{prompt.instruction}\n\nKeep your response under {prompt.word_limit} words."
        if messages and messages[-1]["role"] == "user":
            messages[-1]["content"] += "\n\n" + final
        else:
            messages.append({"role": "user", "content": final})
        return system, messages

    async def synthesize(
        self,
        relationship: RelationshipType,
        prompt: AnalysisPrompt,
        coach_history: list[Message],
        parent_messages: list[Message],
        user_name: str,
        users: dict[str, User] | None = None,
    ) -> str:
        """Generate one coaching response; never raises, falls back to a fixed message."""
        system, messages = self.build_messages(
            relationship, prompt, coach_history, parent_messages, user_name, users
        )
        try:
            text = await self.llm.chat(
                system=system,
                messages=messages,
                model=settings.resolved_coach_model,
                max_tokens=settings.max_coach_tokens,
                temperature=prompt.temperature,
            )
        except Exception:
            logger.exception("Coach generation failed for %s", user_name)
            return FALLBACK_RESPONSE

        text = (text or "").strip()
        if not text:
            logger.warning("Coach generation returned empty output for %s", user_name)
            return FALLBACK_RESPONSE
        return text
