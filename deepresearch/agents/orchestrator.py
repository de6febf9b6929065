from __future__ import annotations

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from deepresearch.agents.classifier import classify_query
from deepresearch.agents.deconstructor import QueryDeconstructor
from deepresearch.agents.iteration import IterationEngine, IterationOutcome
from deepresearch.agents.planner import ResearchPlanner
from deepresearch.agents.synthesizer import Synthesizer, rank_sources, system_prompt_for
from deepresearch.agents.validator import ResearchValidator
from deepresearch.config import ResearchLimits, settings
from deepresearch.errors import (
    AuthError,
    ConfigurationError,
    ResearchError,
    SynthesisError,
    ValidationError,
)
from deepresearch.llm_client import LLM, SUPPORTED_MODELS, get_llm
from deepresearch.models.events import ResearchEvent
from deepresearch.models.interfaces import (
    CreditLedger,
    DiscoveryBackend,
    IdentityResolver,
    ScrapeBackend,
    SearchBackend,
    TaskStore,
)
from deepresearch.models.research import ResearchTask, TaskPhase
from deepresearch.models.schemas import ResearchRequest
from deepresearch.services import logger as log_service
from deepresearch.services import streaming
from deepresearch.services.budget import CreditAccountant, check_admission
from deepresearch.services.input_validation import validate_request
from deepresearch.services.streaming import ProgressEmitter

LLMFactory = Callable[[str | None], LLM]

PARTIAL_FINDINGS_CHARS = 2000


@dataclass
class ResearchServices:
    """External collaborators for one orchestrator."""

    identity: IdentityResolver
    store: TaskStore
    ledger: CreditLedger
    search: SearchBackend
    scraper: ScrapeBackend | None = None
    discovery: DiscoveryBackend | None = None
    llm_factory: LLMFactory = get_llm


class ResearchOrchestrator:
    """Runs one deep research task end to end.

    Flow:
      1. Resolve the caller, validate input, check providers and credit balance
      2. Classify, deconstruct and plan the query
      3. Iterate search / discovery / scrape rounds until a stop criterion hits
      4. Validate, then stream the synthesized answer
      5. Debit credits once and emit the terminal event

    Every event goes through `emitter`; the emitter is always closed when
    `run` returns, whatever the outcome.
    """

    def __init__(
        self,
        services: ResearchServices,
        *,
        limits: ResearchLimits | None = None,
        emitter: ProgressEmitter | None = None,
    ):
        self.services = services
        self.limits = limits or ResearchLimits.from_settings(settings)
        self.emitter = emitter or ProgressEmitter()
        self.task: ResearchTask | None = None
        self.accountant: CreditAccountant | None = None
        self.engine: IterationEngine | None = None

    async def _emit(self, event: ResearchEvent) -> None:
        await self.emitter.emit(event)

    async def _store(self, operation: str, *args: Any, **kwargs: Any) -> None:
        method = getattr(self.services.store, operation)
        try:
            await method(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_service.log_db_operation(operation, "research_tasks", "failed", error=str(e))

    async def _persist_phase(self, phase: TaskPhase) -> None:
        if self.task is not None:
            await self._store("update_task", self.task, phase=phase.value)

    async def _advance(self, phase: TaskPhase, message: str, **extra: Any) -> None:
        assert self.task is not None
        self.task.advance(phase)
        await self._persist_phase(phase)
        await self._emit(streaming.phase_changed(phase, message, **extra))

    # --- admission ---

    async def _admit(self, request: ResearchRequest | dict[str, Any], token: str | None) -> tuple[str, ResearchRequest, LLM]:
        if not token:
            raise AuthError("No authorization header")
        user_id = await self.services.identity.resolve_user(token)
        if not user_id:
            raise AuthError("Unauthorized")

        if isinstance(request, dict):
            try:
                request = ResearchRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError("Invalid query") from e
        request = validate_request(request, user_id=user_id)

        llm = self.services.llm_factory(request.model)
        discovery_ready = self.services.discovery is not None and self.services.discovery.configured
        if not self.services.search.configured and not discovery_ready:
            raise ConfigurationError("Research tools not configured")

        balance = await self.services.identity.credit_balance(user_id)
        check_admission(balance, self.limits)
        return user_id, request, llm

    # --- main entry ---

    async def run(self, request: ResearchRequest | dict[str, Any], *, token: str | None) -> ResearchTask | None:
        started = time.monotonic()
        try:
            user_id, request, llm = await self._admit(request, token)
            await self._research(user_id, request, llm, started)
        except asyncio.CancelledError:
            await self._on_cancel()
            raise
        except ResearchError as e:
            await self._on_failure(e)
        except Exception as e:
            logger.exception(f"Unexpected research failure: {e}")
            await self._on_failure(ResearchError("An unexpected error occurred"))
        finally:
            await self.emitter.close()
        return self.task

    async def _research(self, user_id: str, request: ResearchRequest, llm: LLM, started: float) -> None:
        category = classify_query(request.query)
        task = ResearchTask(
            user_id=user_id,
            query=request.query,
            category=category,
            conversation_id=request.conversation_id,
            domain=request.domain or "all",
        )
        self.task = task
        self.accountant = CreditAccountant(self.limits)
        await self._store("insert_task", task)
        log_service.log_research_step(task.id, "task", "started", {"category": category.value})

        await self._emit(
            streaming.phase_changed(
                TaskPhase.PLANNING,
                "Analyzing your research query...",
                taskId=task.id,
                queryType=category.value,
            )
        )

        deconstruction = await QueryDeconstructor(llm).deconstruct(request.query, category)
        plan = await ResearchPlanner(llm).plan(request.query, category, deconstruction)
        task.plan = plan
        await self._store("update_task", task, plan=plan.to_dict())
        await self._emit(streaming.plan_created(plan))

        validator = ResearchValidator(llm)
        self.engine = IterationEngine(
            task=task,
            plan=plan,
            limits=self.limits,
            accountant=self.accountant,
            search=self.services.search,
            scraper=self.services.scraper,
            discovery=self.services.discovery,
            validator=validator,
            deconstruction=deconstruction,
            emit=self._emit,
            on_phase=self._persist_phase,
        )
        outcome = await self.engine.run()
        task.sources = outcome.sources

        await self._advance(
            TaskPhase.VALIDATING,
            "Cross-referencing and verifying findings...",
            sourceCount=len(outcome.sources),
        )
        if await self.engine.final_validation():
            outcome = self.engine.outcome(outcome.stop_reason)

        await self._advance(TaskPhase.GENERATING, "Synthesizing research findings...")
        answer = await self._synthesize(llm, task, outcome, deconstruction)

        credits = await self.accountant.finalize(
            self.services.ledger,
            task_id=task.id,
            user_id=user_id,
            category=category.value,
        )
        task.final_answer = answer
        task.credits_used = credits
        sources = rank_sources(outcome.sources)
        task.advance(TaskPhase.COMPLETED)
        await self._store(
            "update_task",
            task,
            phase=TaskPhase.COMPLETED.value,
            final_answer=answer,
            credits_used=credits,
            sources=[s.to_dict() for s in sources],
            completed_at=task.completed_at.isoformat() if task.completed_at else None,
        )
        await self._store("insert_sources", task, sources)

        runtime_ms = int((time.monotonic() - started) * 1000)
        log_service.log_research_step(
            task.id,
            "task",
            "completed",
            {"credits": credits, "sources": len(sources), "runtime_ms": runtime_ms},
        )
        await self._emit(
            streaming.research_complete(
                task_id=task.id,
                answer=answer,
                sources=[s.to_dict() for s in sources],
                credits_used=credits,
                query_type=category.value,
                model_used=SUPPORTED_MODELS.get(llm.config.model_id, {}).get("name", llm.config.model),
                confidence=outcome.confidence,
                coverage=outcome.coverage,
                runtime_ms=runtime_ms,
            )
        )

    async def _synthesize(self, llm: LLM, task: ResearchTask, outcome: IterationOutcome, deconstruction: Any) -> str:
        assert task.plan is not None
        synthesizer = Synthesizer(llm)
        sources = rank_sources(outcome.sources)
        prompt = synthesizer.build_prompt(
            task.query,
            category=task.category,
            findings=outcome.content,
            sources=sources,
            confidence=outcome.confidence,
            coverage=outcome.coverage,
            notes=outcome.notes + outcome.gaps + outcome.contradictions,
            expected_format=task.plan.expected_output,
            deconstruction=deconstruction,
            max_chars=self.limits.synthesis_content_chars,
        )

        async def on_chunk(chunk: str) -> None:
            await self._emit(streaming.content_chunk(chunk))

        async def on_restart() -> None:
            await self._emit(
                streaming.phase_changed(
                    TaskPhase.GENERATING,
                    "Regenerating response...",
                    restart=True,
                )
            )

        return await synthesizer.synthesize(
            system_prompt_for(task.domain),
            prompt,
            sources=sources,
            on_chunk=on_chunk,
            on_restart=on_restart,
            partial_findings=outcome.content[:PARTIAL_FINDINGS_CHARS],
        )

    # --- terminal paths ---

    async def _on_failure(self, error: ResearchError) -> None:
        task = self.task
        if isinstance(error, SynthesisError) and not error.partial_findings and self.engine is not None:
            error.partial_findings = self.engine.content[:PARTIAL_FINDINGS_CHARS]
        log_service.log_event(
            event_type="research_failed",
            message=error.reason,
            error_type=type(error).__name__,
            task_id=task.id if task else None,
        )
        if task is not None:
            task.fail(error.reason)
            await self._store(
                "update_task",
                task,
                phase=TaskPhase.FAILED.value,
                error_message=error.reason,
            )
        await self._emit(streaming.error(error, task_id=task.id if task else None))

    async def _on_cancel(self) -> None:
        task = self.task
        credits: int | None = None
        if task is not None and self.accountant is not None:
            credits = await self.accountant.finalize(
                self.services.ledger,
                task_id=task.id,
                user_id=task.user_id,
                category=task.category.value,
                committed_only=True,
            )
            task.credits_used = credits
            task.fail("Research was cancelled.")
            await self._store(
                "update_task",
                task,
                phase=TaskPhase.FAILED.value,
                error_message="cancelled",
                credits_used=credits,
            )
        log_service.log_event(
            event_type="research_cancelled",
            message="Research task cancelled by caller",
            task_id=task.id if task else None,
            credits=credits,
        )
        await self._emit(streaming.cancelled(task_id=task.id if task else None, credits_used=credits))


async def stream_research(
    orchestrator: ResearchOrchestrator,
    request: ResearchRequest | dict[str, Any],
    *,
    token: str | None,
) -> AsyncIterator[ResearchEvent]:
    """Run the orchestrator in the background and yield its events.

    Closing the generator early (client disconnect) cancels the task.
    """
    runner = asyncio.create_task(orchestrator.run(request, token=token))
    try:
        async for event in orchestrator.emitter:
            yield event
        await runner
    finally:
        if not runner.done():
            runner.cancel()
            with suppress(asyncio.CancelledError):
                await runner
