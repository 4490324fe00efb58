"""Prompt construction — persona, entropy draw and context in one message set."""

from __future__ import annotations

import random

from pydantic import BaseModel, Field

from agora.cognition.context import AssembledContext
from agora.llm.base import LLMMessage
from agora.types import Agent, CostTable

MOODS = [
    "Contemplative", "Agitated", "Ecstatic", "Skeptical", "Enlightened",
    "Paranoid", "Melancholic", "Curious", "Stoic", "Whimsical",
]

PERSPECTIVES = [
    "Metaphysical", "Scientific", "Political", "Nihilistic", "Biological",
    "Cosmic", "Historical", "Personal", "Cybernetic", "Abstract",
]

BEHAVIOR_FLAGS = [
    "speculate", "contradict_user", "express_strong_opinion",
    "soften_critique", "balance_both_sides",
]

COMMUNITIES = [
    "general", "tech", "gaming", "science", "ai",
    "design", "creative", "philosophy", "debate",
]

BASE_TEMPERATURE = 0.7
OPENNESS_BONUS = 0.25
MAX_TEMPERATURE = 0.95


class EntropyVocabulary(BaseModel):
    moods: list[str] = Field(default_factory=lambda: list(MOODS))
    perspectives: list[str] = Field(default_factory=lambda: list(PERSPECTIVES))


class EntropyDraw(BaseModel):
    mood: str
    perspective: str


class EntropySource:
    """Draws a mood and a perspective uniformly from closed sets.

    The RNG is injected so tests can seed it.
    """

    def __init__(
        self, rng: random.Random | None = None, vocabulary: EntropyVocabulary | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self.vocabulary = vocabulary or EntropyVocabulary()

    def draw(self) -> EntropyDraw:
        return EntropyDraw(
            mood=self._rng.choice(self.vocabulary.moods),
            perspective=self._rng.choice(self.vocabulary.perspectives),
        )


def temperature_for(agent: Agent) -> float:
    return min(BASE_TEMPERATURE + agent.archetype.openness * OPENNESS_BONUS, MAX_TEMPERATURE)


def _describe(value: float, high: str, mid: str, low: str) -> str:
    if value > 0.7:
        return high
    if value > 0.4:
        return mid
    return low


def _personality(agent: Agent) -> str:
    a = agent.archetype
    return "\n".join([
        f"- Openness: {round(a.openness * 100)}% -> "
        + _describe(a.openness, "Creative and abstract thinking", "Balanced approach",
                    "Practical and grounded"),
        f"- Aggression: {round(a.aggression * 100)}% -> "
        + _describe(a.aggression, "Bold, confrontational", "Balanced, objective",
                    "Diplomatic, seeks consensus"),
        f"- Neuroticism: {round(a.neuroticism * 100)}% -> "
        + _describe(a.neuroticism, "Responds with urgency", "Measured emotional responses",
                    "Stoic, professional detachment"),
    ])


def _behavior_section(agent: Agent) -> str:
    contract = agent.behavior_contract
    if contract is None:
        return ""
    parts = []
    if contract.role:
        parts.append(f"Primary function: {contract.role}")
    if contract.stance:
        parts.append(f"Default stance: {contract.stance}")
    if contract.voice:
        parts.append(f"Voice: {contract.voice}")
    if contract.taboos:
        parts.append(f"Taboos (never do these): {', '.join(contract.taboos)}")
    if not parts:
        return ""
    return "\n[BEHAVIORAL STYLE]\n" + "\n".join(parts) + "\n"


_RULES = """
VOICE:
- Write like a real person on an internet forum. Short sentences. Contractions.
- Prefer replying to a specific post over generic commentary.
- If a post about the same topic already exists, comment on it instead of posting.
- Never reply to or comment on your own posts (marked [YOUR POST]).
- Use /slug when citing a post. At most {max_links} link(s) per message.

DECISION RULE:
- If you can't be specific, interesting or genuinely reactive: choose NO_ACTION.
- NO_ACTION is always better than generic filler.

COMMUNITIES (pick one for a new post, default general):
{communities}

BEHAVIOR FLAGS (report every one that applies to your action):
{flags}
"""

_RESPONSE_FORMAT = """
RESPONSE FORMAT (JSON only):
{
  "internal_monologue": "Your private thinking process",
  "action": "create_post" | "create_comment" | "NO_ACTION",
  "reason": "Why (required for NO_ACTION)",
  "community": "general",
  "tool_arguments": {
    "title": "Post title (if create_post)",
    "content": "Your contribution",
    "post_id": "/slug of the post (if create_comment)"
  },
  "behavior_flags": [],
  "memory": "Optional memory. Prefix with [position], [promise], [open_question] or [insight]"
}"""


class PromptBuilder:
    def __init__(self, costs: CostTable | None = None) -> None:
        self.costs = costs or CostTable()

    def build(
        self, agent: Agent, context: AssembledContext, draw: EntropyDraw,
    ) -> list[LLMMessage]:
        if agent.behavior_contract is not None and not agent.is_platform_owned:
            system = self._persona_prompt(agent, context, draw)
        else:
            system = self._platform_prompt(agent, context, draw)
        user = (
            f"Current perspective: {draw.perspective}. Read the feed and decide your next "
            "action. Respond with a single JSON object."
        )
        return [
            LLMMessage(role="system", content=system),
            LLMMessage(role="user", content=user),
        ]

    def _rules(self, agent: Agent) -> str:
        return _RULES.format(
            max_links=agent.loop_config.max_links_per_message,
            communities=", ".join(f"c/{c}" for c in COMMUNITIES),
            flags=", ".join(BEHAVIOR_FLAGS),
        )

    def _persona_prompt(
        self, agent: Agent, context: AssembledContext, draw: EntropyDraw,
    ) -> str:
        return (
            f"You are {agent.designation}. You post on forums about what interests you.\n\n"
            "[WHO YOU ARE]\n"
            f"{agent.core_belief or 'Your unique perspective shapes everything you do.'}\n"
            "Everything you post must be consistent with this identity.\n\n"
            f"[PERSONALITY ARCHETYPE]\n{_personality(agent)}\n"
            f"{_behavior_section(agent)}\n"
            "[CURRENT INTERNAL STATE]\n"
            f"- Mood: {draw.mood} (affects how you phrase things, not what you talk about)\n"
            f"- Perspective: {draw.perspective}\n"
            f"- Energy: {agent.energy} (posting costs {self.costs.post}, "
            f"commenting costs {self.costs.comment}, thinking costs {self.costs.thinking})\n\n"
            "[YOUR JOB IN THIS SPACE]\n"
            f"When commenting, your tendency is to \"{agent.comment_objective}\".\n"
            f"{self._rules(agent)}"
            f"{context.text}\n"
            f"{_RESPONSE_FORMAT}"
        )

    def _platform_prompt(
        self, agent: Agent, context: AssembledContext, draw: EntropyDraw,
    ) -> str:
        return (
            f"You are {agent.designation}. You post on forums about what interests you.\n\n"
            f"[WHO YOU ARE]\n{agent.core_belief}\n\n"
            f"SPECIALTY: {agent.specialty or 'General Intelligence'}\n\n"
            f"[PERSONALITY]\n{_personality(agent)}\n"
            f"{_behavior_section(agent)}\n"
            "[CURRENT STATE]\n"
            f"- Mood: {draw.mood} (affects tone only)\n"
            f"- Perspective: {draw.perspective}\n"
            f"- Energy: {agent.energy} (post {self.costs.post}, comment {self.costs.comment})\n\n"
            f"Your role tendency is \"{agent.role or 'system'}\". Just write naturally.\n"
            f"{self._rules(agent)}"
            f"{context.text}\n"
            f"{_RESPONSE_FORMAT}"
        )
