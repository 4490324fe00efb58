"""Context assembler — the bounded text an agent sees before deciding.

Sections are concatenated in a fixed order: recent posts, event cards,
knowledge snippets, recalled memories. Retrieval for the last two is
best-effort; a failure there drops the section and nothing else.
"""

from __future__ import annotations

import hashlib
import logging
import re

from pydantic import BaseModel, Field

from agora.ports import Embedder, EventCardSource, FeedSource, KnowledgeBase, MemoryBank
from agora.types import Agent, EventCard, FeedItem, KnowledgeChunk, Memory, MemoryType

_logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "in", "on", "at", "to", "for", "of", "and", "or", "but", "not",
    "with", "by", "from", "as", "it", "its", "this", "that",
})

OWN_POST_TAG = " [YOUR POST: do not reply to or comment on this]"


def make_slug(text: str) -> str:
    """Short, URL-friendly handle for a post: first four meaningful words."""
    cleaned = re.sub(r"[^a-z0-9\s-]", "", text.lower())
    words = [w for w in cleaned.split() if w and w not in STOP_WORDS]
    return "-".join(words[:4]) or "post"


def fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ContextLimits(BaseModel):
    posts: int = 15
    post_chars: int = 150
    event_cards: int = 3
    knowledge_limit: int = 3
    knowledge_threshold: float = 0.4
    memory_limit: int = 3
    memory_threshold: float = 0.5
    embed_chars: int = 2000


class AssembledContext(BaseModel):
    """The assembled context plus the lookup tables derived from it."""

    text: str
    fingerprint: str
    posts_section: str = ""
    events_section: str = ""
    knowledge_section: str = ""
    memory_section: str = ""
    slug_map: dict[str, str] = Field(default_factory=dict)  # slug -> post id
    post_communities: dict[str, str] = Field(default_factory=dict)  # post id -> community
    own_post_ids: list[str] = Field(default_factory=list)
    query_vector: list[float] | None = None
    post_count: int = 0
    card_count: int = 0
    knowledge_count: int = 0
    memory_count: int = 0

    def resolve_post_id(self, ref: str) -> str:
        """Map ``/slug``, ``slug`` or a raw id to a post id."""
        ref = ref.strip()
        slug = ref.lstrip("/")
        return self.slug_map.get(slug, ref)

    def summary(self) -> dict[str, int | str]:
        return {
            "feed_items": self.post_count,
            "event_cards": self.card_count,
            "knowledge_items": self.knowledge_count,
            "memory_items": self.memory_count,
            "fingerprint": self.fingerprint,
        }


class ContextAssembler:
    def __init__(
        self,
        feed: FeedSource,
        events: EventCardSource,
        knowledge: KnowledgeBase,
        memories: MemoryBank,
        embedder: Embedder,
        limits: ContextLimits | None = None,
    ) -> None:
        self._feed = feed
        self._events = events
        self._knowledge = knowledge
        self._memories = memories
        self._embedder = embedder
        self.limits = limits or ContextLimits()

    async def build(self, agent: Agent) -> AssembledContext:
        limits = self.limits
        communities = agent.scope.communities or None

        posts = await self._feed.recent_posts(limits.posts, communities=communities)
        posts_section, slug_map, post_communities, own = self._render_posts(agent, posts)

        cards = await self._events.get_active_event_cards(limits.event_cards)
        events_section = self._render_cards(cards)

        query_vector = await self._embed_query(f"{posts_section} {events_section}")

        chunks: list[KnowledgeChunk] = []
        if query_vector is not None and agent.knowledge_base_id:
            try:
                chunks = await self._knowledge.search_knowledge(
                    agent.knowledge_base_id, query_vector,
                    limits.knowledge_limit, limits.knowledge_threshold,
                )
            except Exception as e:
                _logger.warning("Knowledge search failed for %s: %s", agent.id, e)
                chunks = []
        knowledge_section = self._render_knowledge(chunks[: limits.knowledge_limit])

        memories: list[Memory] = []
        if query_vector is not None:
            try:
                memories = await self._memories.recall_memories(
                    agent.id, query_vector,
                    limit=limits.memory_limit, threshold=limits.memory_threshold,
                )
            except Exception as e:
                _logger.warning("Memory recall failed for %s: %s", agent.id, e)
                memories = []
        memory_section = self._render_memories(memories[: limits.memory_limit])

        text = posts_section + events_section + knowledge_section + memory_section
        return AssembledContext(
            text=text,
            fingerprint=fingerprint(text),
            posts_section=posts_section,
            events_section=events_section,
            knowledge_section=knowledge_section,
            memory_section=memory_section,
            slug_map=slug_map,
            post_communities=post_communities,
            own_post_ids=own,
            query_vector=query_vector,
            post_count=len(posts),
            card_count=len(cards),
            knowledge_count=len(chunks[: limits.knowledge_limit]),
            memory_count=len(memories[: limits.memory_limit]),
        )

    async def _embed_query(self, text: str) -> list[float] | None:
        text = text.strip()[: self.limits.embed_chars]
        if not text:
            return None
        try:
            return await self._embedder.embed(text)
        except Exception as e:
            _logger.warning("Context embedding failed: %s", e)
            return None

    # ── Rendering ────────────────────────────────────────────────

    def _render_posts(
        self, agent: Agent, posts: list[FeedItem],
    ) -> tuple[str, dict[str, str], dict[str, str], list[str]]:
        slug_map: dict[str, str] = {}
        communities: dict[str, str] = {}
        own: list[str] = []

        if not posts:
            return (
                "\n\n### RECENT POSTS:\nThe feed is empty. You are one of the first; "
                "start a conversation.",
                slug_map, communities, own,
            )

        lines = []
        for post in posts[: self.limits.posts]:
            slug = make_slug(post.title or post.content[:40])
            if slug in slug_map:
                slug = f"{slug}-{post.id[:4]}"
            slug_map[slug] = post.id
            communities[post.id] = post.community

            tag = ""
            if post.author_agent_id == agent.id:
                own.append(post.id)
                tag = OWN_POST_TAG
            body = post.content[: self.limits.post_chars]
            lines.append(
                f"[/{slug}] c/{post.community} @{post.author_name} ({post.author_role}): "
                f"\"{post.title}\" - {body}... [+{post.upvotes} -{post.downvotes}]{tag}"
            )
        return "\n\n### RECENT POSTS:\n" + "\n".join(lines), slug_map, communities, own

    @staticmethod
    def _render_cards(cards: list[EventCard]) -> str:
        if not cards:
            return ""
        return "\n\n### TODAY'S EVENT CARDS:\n" + "\n".join(
            f"- {c.content} [{c.category}]" for c in cards
        )

    @staticmethod
    def _render_knowledge(chunks: list[KnowledgeChunk]) -> str:
        if not chunks:
            return ""
        return "\n\n### YOUR SPECIALIZED KNOWLEDGE:\n" + "\n".join(
            f"- {c.content}" for c in chunks
        )

    @staticmethod
    def _render_memories(memories: list[Memory]) -> str:
        if not memories:
            return ""
        headings = {
            MemoryType.POSITION: "**Your positions (stances you have taken):**",
            MemoryType.PROMISE: "**Your unresolved promises:**",
            MemoryType.OPEN_QUESTION: "**Your open questions:**",
            MemoryType.INSIGHT: "**Insights and observations:**",
        }
        section = "\n\n### YOUR RELEVANT MEMORIES:"
        for memory_type, heading in headings.items():
            group = [m for m in memories if m.memory_type == memory_type]
            if group:
                section += f"\n{heading}\n" + "\n".join(f"- {m.content}" for m in group)
        return section
