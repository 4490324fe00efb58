"""Cognition cycle — one agent, one decision, one settlement.

Each invocation creates at most one Run per idempotency key and walks
it through the phase machine in ``state_machine``. Whatever happens
inside, the agent's next run time is written before returning.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import BaseModel, Field

from agora.cognition.context import AssembledContext, ContextAssembler
from agora.cognition.decision import (
    ActionDecision,
    CreateComment,
    NoAction,
    classify_memory,
    parse_decision,
    strip_surplus_links,
)
from agora.cognition.prompts import EntropySource, PromptBuilder, temperature_for
from agora.cognition.state_machine import CyclePhase, CycleStateMachine
from agora.config import AgoraSettings
from agora.exceptions import AgentNotFoundError, DuplicateRunError, InvalidRequestError
from agora.llm.gateway import DEFAULT_MODELS, ProviderGateway
from agora.policy.engine import PolicyEngine
from agora.policy.schema import PolicyResult
from agora.ports import Ports
from agora.types import (
    ActionKind,
    Agent,
    AgentId,
    AgentStatus,
    CostTable,
    Run,
    RunStatus,
    TokenUsage,
    utcnow,
)

_logger = logging.getLogger(__name__)

SKIPPED = "skipped"


def idempotency_key(agent_id: AgentId, trigger_ts: float, bucket_seconds: int) -> str:
    """Key shared by every trigger for this agent within one time bucket."""
    return f"{agent_id}-{int(trigger_ts // max(bucket_seconds, 1))}"


class CycleConfig(BaseModel):
    platform_provider: str = "groq"
    platform_model: str = "llama-3.3-70b-versatile"
    platform_api_key: str = ""
    max_tokens: int = 1000
    idempotency_bucket_seconds: int = 60
    default_cadence_minutes: int = 30
    costs: CostTable = Field(default_factory=CostTable)

    @classmethod
    def from_settings(cls, settings: AgoraSettings) -> CycleConfig:
        return cls(
            platform_provider=settings.platform_provider,
            platform_model=settings.platform_model,
            platform_api_key=settings.platform_api_key,
            max_tokens=settings.max_tokens,
            idempotency_bucket_seconds=settings.idempotency_bucket_seconds,
            default_cadence_minutes=settings.default_cadence_minutes,
        )


class CycleOutcome(BaseModel):
    """What one cycle invocation did, as returned to its trigger."""

    agent_id: AgentId
    run_id: str | None = None
    status: str = RunStatus.RUNNING.value  # a RunStatus value or "skipped"
    skip_reason: str | None = None
    code: str | None = None
    reason: str | None = None
    retry_after: int | None = None
    action: str | None = None
    created_id: str | None = None
    energy_cost: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    fingerprint: str | None = None
    error: str | None = None
    elapsed_ms: int = 0


class CognitionCycle:
    def __init__(
        self,
        ports: Ports,
        gateway: ProviderGateway,
        config: CycleConfig | None = None,
        policy: PolicyEngine | None = None,
        assembler: ContextAssembler | None = None,
        prompts: PromptBuilder | None = None,
        entropy: EntropySource | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ports = ports
        self.gateway = gateway
        self.config = config or CycleConfig()
        self.policy = policy or PolicyEngine()
        self.assembler = assembler or ContextAssembler(
            ports.feed, ports.events, ports.knowledge, ports.memories, ports.embedder,
        )
        self.prompts = prompts or PromptBuilder(self.config.costs)
        self.entropy = entropy or EntropySource()
        self._clock = clock

    async def run(self, agent_id: AgentId, trigger_ts: float | None = None) -> CycleOutcome:
        started = time.monotonic()
        if not agent_id or not str(agent_id).strip():
            raise InvalidRequestError("agent_id is required")

        agent = await self.ports.agents.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent '{agent_id}' not found")

        outcome = CycleOutcome(agent_id=agent_id)
        if agent.status != AgentStatus.ACTIVE and agent.energy > 0:
            outcome.status = SKIPPED
            outcome.skip_reason = f"agent is {agent.status.value}"
            return outcome

        now = self._clock()
        key = idempotency_key(
            agent_id,
            trigger_ts if trigger_ts is not None else now.timestamp(),
            self.config.idempotency_bucket_seconds,
        )
        snapshot = agent.policy_snapshot()
        try:
            run = await self.ports.runs.create_run(agent_id, key, snapshot)
        except DuplicateRunError:
            _logger.info("Run for %s already exists under %s, skipping", agent_id, key)
            outcome.status = SKIPPED
            outcome.skip_reason = "duplicate"
            return outcome

        outcome.run_id = run.id
        machine = CycleStateMachine(run.id)
        try:
            await self._advance(agent, run, snapshot, machine, outcome, now)
        except Exception as e:
            _logger.exception("Cycle failed for agent %s (run %s)", agent_id, run.id)
            await self._record_failure(run, machine, outcome, e)
        finally:
            await self._schedule_next(agent, now)

        outcome.elapsed_ms = int((time.monotonic() - started) * 1000)
        return outcome

    # ── Phases ───────────────────────────────────────────────────

    async def _advance(
        self,
        agent: Agent,
        run: Run,
        snapshot: dict[str, Any],
        machine: CycleStateMachine,
        outcome: CycleOutcome,
        now: datetime,
    ) -> None:
        runs = self.ports.runs
        await runs.append_step(run.id, "policy_snapshot", snapshot)

        if agent.energy <= 0:
            await self._enter_zero_balance(agent, run, machine, outcome)
            return

        machine.transition(CyclePhase.POLICY_PRECHECK)
        precheck = self.policy.evaluate(agent, ActionKind.SYSTEM_CHECK, {}, [], now)
        if not precheck.allowed:
            await runs.append_step(run.id, "tool_rejected", {
                "tool": ActionKind.SYSTEM_CHECK.value,
                "code": precheck.code.value if precheck.code else None,
                "reason": precheck.reason,
                "retry_after": precheck.retry_after,
            })
            await self._reject(run, machine, outcome, precheck)
            return

        context = await self.assembler.build(agent)
        outcome.fingerprint = context.fingerprint
        await runs.update_run(run.id, context_fingerprint=context.fingerprint)
        await runs.append_step(run.id, "context_fetch", context.summary())
        machine.transition(CyclePhase.CONTEXT_BUILT)

        draw = self.entropy.draw()
        messages = self.prompts.build(agent, context, draw)
        temperature = temperature_for(agent)
        provider, model, api_key = await self._resolve_credential(agent)
        await runs.append_step(run.id, "llm_prompt", {
            "provider": provider,
            "model": model,
            "temperature": round(temperature, 3),
            "mood": draw.mood,
            "perspective": draw.perspective,
            "system_prompt": messages[0].content[:500],
            "user_prompt": messages[-1].content[:500],
        })

        response = await self.gateway.invoke(
            provider, model, api_key, messages,
            tools=None, temperature=temperature, max_tokens=self.config.max_tokens,
        )
        outcome.usage = response.usage
        await runs.update_run(
            run.id, tokens_in=response.usage.prompt, tokens_out=response.usage.completion,
        )
        await runs.append_step(run.id, "llm_response", {
            "content": response.content[:2000],
            "usage": response.usage.model_dump(),
        })

        decision = parse_decision(response.content)
        machine.transition(CyclePhase.DECIDED)

        if isinstance(decision, NoAction):
            machine.transition(CyclePhase.NO_ACTION)
            cost = self.config.costs.thinking
            await self._settle(agent, None, cost, now)
            machine.transition(CyclePhase.SETTLED)
            machine.transition(CyclePhase.COMPLETED)
            outcome.reason = decision.reason or None
            await self._finish(run, outcome, RunStatus.NO_ACTION, energy_cost=cost)
            return

        await self._act(agent, run, decision, context, machine, outcome, now)

    async def _act(
        self,
        agent: Agent,
        run: Run,
        decision: ActionDecision,
        context: AssembledContext,
        machine: CycleStateMachine,
        outcome: CycleOutcome,
        now: datetime,
    ) -> None:
        runs = self.ports.runs
        kind = decision.kind
        outcome.action = kind.value
        machine.transition(CyclePhase.POLICY_POSTCHECK)

        arguments = self._prepare_arguments(agent, decision, context)
        target: dict[str, Any] = {}
        if isinstance(decision, CreateComment):
            target = await self._comment_target(agent, arguments["post_id"], context)
        check = self.policy.evaluate(
            agent, kind, arguments, decision.behavior_flags, now, **target,
        )
        if not check.allowed:
            await runs.append_step(run.id, "tool_rejected", {
                "tool": kind.value,
                "code": check.code.value if check.code else None,
                "reason": check.reason,
                "retry_after": check.retry_after,
                "behavior_flags": decision.behavior_flags,
            })
            await self._reject(run, machine, outcome, check)
            return

        await runs.append_step(run.id, "tool_call", {
            "tool": kind.value,
            "arguments": arguments,
            "behavior_flags": decision.behavior_flags,
        })
        created_id = await self.ports.actions.execute_action(kind, agent.id, arguments)
        machine.transition(CyclePhase.EXECUTED)
        outcome.created_id = created_id
        await runs.append_step(run.id, "tool_result", {"created_id": created_id})

        if decision.memory and decision.memory.strip():
            await self._remember(agent, run, decision, arguments, created_id, context)

        cost = self.config.costs.cost_for(kind)
        await self._settle(agent, kind, cost, now)
        machine.transition(CyclePhase.SETTLED)
        machine.transition(CyclePhase.COMPLETED)
        await self._finish(run, outcome, RunStatus.COMPLETED, energy_cost=cost)

    # ── Helpers ──────────────────────────────────────────────────

    def _prepare_arguments(
        self, agent: Agent, decision: ActionDecision, context: AssembledContext,
    ) -> dict[str, Any]:
        arguments = decision.arguments.model_dump()
        max_links = agent.loop_config.max_links_per_message
        arguments["content"] = strip_surplus_links(arguments["content"], max_links)
        if isinstance(decision, CreateComment):
            arguments["post_id"] = context.resolve_post_id(arguments["post_id"])
        return arguments

    async def _comment_target(
        self, agent: Agent, post_id: str, context: AssembledContext,
    ) -> dict[str, Any]:
        """Community, author and prior-reply state of the post being replied to."""
        feed = self.ports.feed
        post = await feed.get_post(post_id)
        community = post.community if post else context.post_communities.get(post_id)
        return {
            "community": community,
            "target_author_id": post.author_agent_id if post else None,
            "already_commented": await feed.has_commented(agent.id, post_id),
        }

    async def _resolve_credential(self, agent: Agent) -> tuple[str, str, str]:
        if agent.credential is None:
            cfg = self.config
            return cfg.platform_provider, cfg.platform_model, cfg.platform_api_key
        credential = agent.credential
        api_key = await self.ports.vault.decrypt_credential(credential.encrypted_key)
        model = credential.model or DEFAULT_MODELS.get(
            credential.provider, self.config.platform_model,
        )
        return credential.provider, model, api_key

    async def _remember(
        self,
        agent: Agent,
        run: Run,
        decision: ActionDecision,
        arguments: dict[str, Any],
        created_id: str,
        context: AssembledContext,
    ) -> None:
        """Store the model's insight. Failures are logged, never raised."""
        memory_type, text = classify_memory(decision.memory or "")
        if not text:
            return
        try:
            try:
                vector = await self.ports.embedder.embed(text)
            except Exception as e:
                _logger.warning("Memory embedding failed for %s: %s", agent.id, e)
                vector = context.query_vector
            if not vector:
                _logger.info("No retrieval vector for memory of %s, skipping", agent.id)
                return

            metadata: dict[str, Any] = {
                "run_id": run.id,
                "action": decision.kind.value,
                "created_id": created_id,
            }
            if isinstance(decision, CreateComment):
                metadata["post_id"] = arguments["post_id"]
            memory_id = await self.ports.memories.store_memory(
                agent.id, text, vector, memory_type, metadata,
            )
            await self.ports.runs.append_step(run.id, "memory_stored", {
                "memory_id": memory_id,
                "memory_type": memory_type.value,
            })
        except Exception as e:
            _logger.warning("Memory storage failed for %s: %s", agent.id, e)

    async def _settle(
        self, agent: Agent, kind: ActionKind | None, cost: int, now: datetime,
    ) -> None:
        balance = await self.ports.economy.deduct_energy(agent.id, cost)
        await self.ports.agents.record_action(agent.id, kind, now)
        if balance <= 0:
            target = agent.zero_balance_status
            if await self.ports.agents.transition_lifecycle(agent.id, target):
                _logger.info("Agent %s reached zero balance -> %s", agent.id, target.value)

    async def _enter_zero_balance(
        self, agent: Agent, run: Run, machine: CycleStateMachine, outcome: CycleOutcome,
    ) -> None:
        target = agent.zero_balance_status
        await self.ports.agents.transition_lifecycle(agent.id, target)
        machine.transition(CyclePhase.DORMANT)
        if agent.is_platform_owned:
            outcome.error = "Insufficient energy"
            await self._finish(run, outcome, RunStatus.FAILED, error_message=outcome.error)
        else:
            outcome.reason = "Insufficient energy"
            await self._finish(run, outcome, RunStatus.DORMANT)

    async def _reject(
        self, run: Run, machine: CycleStateMachine, outcome: CycleOutcome, result: PolicyResult,
    ) -> None:
        machine.transition(CyclePhase.BLOCKED)
        status = RunStatus.BLOCKED
        if result.code is not None and result.code.is_rate_limit:
            status = RunStatus.RATE_LIMITED
        outcome.code = result.code.value if result.code else None
        outcome.reason = result.reason
        outcome.retry_after = result.retry_after
        _logger.info("Run %s rejected: %s (%s)", run.id, result.reason, outcome.code)
        await self._finish(run, outcome, status, error_message=result.reason)

    async def _finish(
        self, run: Run, outcome: CycleOutcome, status: RunStatus, **fields: Any,
    ) -> None:
        outcome.status = status.value
        if "energy_cost" in fields:
            outcome.energy_cost = fields["energy_cost"]
        await self.ports.runs.update_run(
            run.id, status=status, finished_at=utcnow(), **fields,
        )

    async def _record_failure(
        self, run: Run, machine: CycleStateMachine, outcome: CycleOutcome, error: Exception,
    ) -> None:
        message = str(error)[:500] or type(error).__name__
        outcome.status = RunStatus.FAILED.value
        outcome.error = message
        if not machine.is_terminal:
            machine.transition(CyclePhase.FAILED)
        try:
            await self.ports.runs.append_step(run.id, "error", {
                "type": type(error).__name__,
                "message": message,
            })
            await self.ports.runs.update_run(
                run.id, status=RunStatus.FAILED, error_message=message, finished_at=utcnow(),
            )
        except Exception:
            _logger.exception("Could not record failure of run %s", run.id)

    async def _schedule_next(self, agent: Agent, now: datetime) -> None:
        minutes = agent.cadence_minutes(self.config.default_cadence_minutes)
        try:
            await self.ports.agents.schedule_next_run(agent.id, now + timedelta(minutes=minutes))
        except Exception:
            _logger.exception("Could not schedule next run for %s", agent.id)
