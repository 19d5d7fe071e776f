"""Automation execution engine.

This module provides the state machine that advances one workflow instance
node by node against its bound execution plan. :meth:`AutomationEngine.step`
computes the next state without touching the store;
:meth:`AutomationEngine.run_instance` drives a claimed instance by stepping,
persisting and auditing until the instance leaves ``RUNNING``.

Actions take two steps. The first persists the intent to act
(``dispatching``), the second invokes the action and records its outcome. A
worker that crashes in between leaves the intent behind, which
:meth:`AutomationEngine.recover` resolves when the instance is claimed again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from litestar_automations.config import EngineConfig
from litestar_automations.core.models import AuditEntry
from litestar_automations.core.params import is_idempotent_safe
from litestar_automations.core.protocols import ActionFailure, ActionSuccess
from litestar_automations.core.templating import render_params
from litestar_automations.core.types import AuditOutcome, BranchLabel, InstanceStatus, NodeKind
from litestar_automations.engine.scheduler import Scheduler
from litestar_automations.exceptions import (
    GraphNotFoundError,
    InstanceTerminalError,
    PermanentActionError,
    PlanContractError,
    PlanNotFoundError,
    StoreConflictError,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from litestar_automations.core.models import WorkflowInstance
    from litestar_automations.core.protocols import ActionInvoker, ActionResult, AuditRecorder, InstanceStore
    from litestar_automations.engine.plan import ExecutionPlan, PlanNode
    from litestar_automations.engine.registry import PlanRegistry

__all__ = ["AutomationEngine", "StepResult"]

logger = logging.getLogger(__name__)

OUTCOME_UNKNOWN = "ActionOutcomeUnknown"


@dataclass(frozen=True)
class StepResult:
    """Outcome of a single step.

    Attributes:
        instance: The next state of the instance. Not persisted yet.
        audit: The audit entry describing the step.
        wake_at: Set when the instance must be suspended until this time.
        invoked: True when the step called the action invoker.
    """

    instance: WorkflowInstance
    audit: AuditEntry
    wake_at: datetime | None = None
    invoked: bool = False


class AutomationEngine:
    """Advances workflow instances through their execution plans.

    Attributes:
        registry: Registry used to resolve an instance's bound plan.
        store: The instance store.
        recorder: The audit recorder.
        invoker: Performs the side effects of action nodes.
        scheduler: Persists wake-ups and cancellations.
        config: Engine configuration.

    Example:
        >>> engine = AutomationEngine(registry, store, recorder, router)
        >>> for instance_id in await engine.scheduler.poll_ready(worker_id="w1"):
        ...     await engine.run_instance(instance_id, "w1")
    """

    def __init__(
        self,
        registry: PlanRegistry,
        store: InstanceStore,
        recorder: AuditRecorder,
        invoker: ActionInvoker,
        scheduler: Scheduler | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Registry used to resolve an instance's bound plan.
            store: The instance store.
            recorder: The audit recorder.
            invoker: Performs the side effects of action nodes.
            scheduler: Scheduler over the same store; created if omitted.
            config: Engine configuration; defaults to the registry's.
            clock: Returns the current time; defaults to the UTC wall clock.
        """
        self.registry = registry
        self.store = store
        self.recorder = recorder
        self.invoker = invoker
        self.config = config or registry.config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.scheduler = scheduler or Scheduler(store, self.config, clock=self._clock)

    def now(self) -> datetime:
        return self._clock()

    def _plan_node(self, instance: WorkflowInstance, node_id: str | None) -> tuple[ExecutionPlan, PlanNode]:
        plan = self.registry.get_plan(instance.graph_id, instance.plan_version)
        try:
            return plan, plan.node(node_id)
        except PlanContractError:
            logger.critical(
                "Instance %s refers to node %r which is not part of plan %s",
                instance.id,
                node_id,
                instance.plan_version,
            )
            raise

    async def step(self, instance: WorkflowInstance, *, now: datetime | None = None) -> StepResult:
        """Compute the next state of a running instance.

        The store is not touched: the caller persists the returned state and
        then appends the audit entry. Exactly one audit entry is produced per
        step.

        Args:
            instance: The current state, claimed by the caller.
            now: Reference time; defaults to the clock.

        Returns:
            The next state, its audit entry and an optional wake-up time.

        Raises:
            InstanceTerminalError: If the instance already finished.
            PlanContractError: If the cursor is not a node of the bound plan.
        """
        if instance.is_terminal:
            raise InstanceTerminalError(instance.id, instance.status)
        now = now or self.now()
        _, node = self._plan_node(instance, instance.current_node_id)
        logger.debug("Instance %s visiting %s node %s", instance.id, node.kind, node.id)

        if node.kind == NodeKind.TRIGGER:
            detail = {"trigger": str(node.trigger_kind)}
            return self._advance(instance, node, node.next, now, AuditOutcome.TRIGGERED, detail)

        if node.kind == NodeKind.CONDITION:
            return self._evaluate_condition(instance, node, now)

        if node.kind == NodeKind.ACTION:
            if instance.dispatching != node.id:
                return self._dispatch_intent(instance, node, now)
            return await self._invoke_action(instance, node, now)

        return self._suspend_for_delay(instance, node, now)

    async def recover(self, instance: WorkflowInstance, *, now: datetime | None = None) -> StepResult | None:
        """Resolve an action intent left behind by a crashed worker.

        Args:
            instance: A freshly claimed instance.
            now: Reference time; defaults to the clock.

        Returns:
            ``None`` when there is nothing to recover. Otherwise a step that
            either keeps the intent so the action is invoked again (for
            idempotent-safe kinds) or fails the instance with
            ``ActionOutcomeUnknown`` (for idempotent-unsafe kinds).
        """
        if instance.dispatching is None:
            return None
        now = now or self.now()
        _, node = self._plan_node(instance, instance.dispatching)
        detail: dict[str, Any] = {"action": str(node.action_kind), "attempt": instance.attempts_for(node.id)}

        if node.action_kind is not None and is_idempotent_safe(node.action_kind):
            logger.warning("Instance %s: re-invoking interrupted %s action %s", instance.id, node.action_kind, node.id)
            recovered = instance.evolve(current_node_id=node.id)
            return StepResult(recovered, self._entry(instance, node.id, AuditOutcome.RECOVERED, now, detail))

        logger.error("Instance %s: outcome of %s action %s is unknown", instance.id, node.action_kind, node.id)
        reason = f"{OUTCOME_UNKNOWN}: '{node.id}' may or may not have run"
        failed = instance.evolve(
            status=InstanceStatus.FAILED,
            dispatching=None,
            owner=None,
            error=reason,
            completed_at=now,
        )
        detail["reason"] = OUTCOME_UNKNOWN
        return StepResult(failed, self._entry(instance, node.id, AuditOutcome.FAILED, now, detail))

    async def run_instance(self, instance_id: UUID, worker_id: str) -> WorkflowInstance:
        """Drive a claimed instance until it suspends or finishes.

        Every step is persisted with a compare-and-swap before its audit entry
        is appended. When the save is rejected the step is discarded and the
        stored state wins. A discarded step that already invoked its action is
        still audited: as ``CANCELLED_POST_HOC`` when the instance was
        cancelled meanwhile, otherwise with its own outcome flagged as
        ``discarded``.

        An instance whose bound plan is gone or does not contain its cursor
        can never make progress. It is failed before the error is re-raised,
        so it leaves the due set.

        Args:
            instance_id: The instance to run.
            worker_id: The worker holding the claim.

        Returns:
            The last stored state of the instance.

        Raises:
            GraphNotFoundError: If the instance's graph is not registered.
            PlanNotFoundError: If the instance's plan version is not registered.
            PlanContractError: If the instance refers to a node outside its plan.
        """
        instance = await self.store.load(instance_id)
        if instance.status != InstanceStatus.RUNNING or instance.owner != worker_id:
            logger.debug("Instance %s is not claimed by %s, skipping", instance_id, worker_id)
            return instance

        try:
            pending = await self.recover(instance)
            while instance.status == InstanceStatus.RUNNING:
                result = pending or await self.step(instance)
                pending = None
                try:
                    if result.wake_at is not None:
                        stored = await self.scheduler.schedule_at(result.instance, result.wake_at)
                    else:
                        stored = await self.store.save(result.instance, instance.version)
                except StoreConflictError:
                    return await self._discard(instance, result)
                await self._record(result.audit)
                instance = stored
        except (GraphNotFoundError, PlanNotFoundError, PlanContractError) as e:
            await self._fail_unrunnable(instance, e)
            raise

        if instance.is_terminal:
            logger.info("Instance %s finished with status %s", instance.id, instance.status)
        return instance

    async def cancel(self, instance_id: UUID, reason: str | None = None) -> WorkflowInstance:
        """Cancel an instance and audit the cancellation.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            InstanceTerminalError: If the instance already finished.
        """
        cancelled, previous = await self.scheduler.cancel(instance_id, reason)
        detail: dict[str, Any] = {"previous_status": str(previous)}
        if reason:
            detail["reason"] = reason
        await self._record(
            self._entry(cancelled, cancelled.current_node_id, AuditOutcome.CANCELLED, self.now(), detail)
        )
        return cancelled

    def _entry(
        self,
        instance: WorkflowInstance,
        node_id: str | None,
        outcome: AuditOutcome,
        now: datetime,
        detail: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return AuditEntry(instance_id=instance.id, node_id=node_id, outcome=outcome, detail=detail or {}, timestamp=now)

    def _advance(
        self,
        instance: WorkflowInstance,
        node: PlanNode,
        next_id: str | None,
        now: datetime,
        outcome: AuditOutcome,
        detail: dict[str, Any],
        **changes: Any,
    ) -> StepResult:
        if next_id is None:
            finished = instance.evolve(
                status=InstanceStatus.SUCCEEDED,
                owner=None,
                resume_at=None,
                completed_at=now,
                **changes,
            )
            detail = {**detail, "terminal": True}
            return StepResult(finished, self._entry(instance, node.id, outcome, now, detail))
        moved = instance.evolve(current_node_id=next_id, **changes)
        return StepResult(moved, self._entry(instance, node.id, outcome, now, {**detail, "next": next_id}))

    def _evaluate_condition(self, instance: WorkflowInstance, node: PlanNode, now: datetime) -> StepResult:
        result = node.predicate.evaluate(instance.event_context)  # type: ignore[union-attr]
        branch = BranchLabel.from_outcome(result.matched)
        if not result.resolved:
            logger.warning("Instance %s: condition %s unresolved (%s)", instance.id, node.id, result.detail)
        outcome = AuditOutcome.CONDITION_TRUE if result.matched else AuditOutcome.CONDITION_FALSE
        next_id = node.on_true if result.matched else node.on_false
        return self._advance(instance, node, next_id, now, outcome, {"branch": str(branch), **result.detail})

    def _dispatch_intent(self, instance: WorkflowInstance, node: PlanNode, now: datetime) -> StepResult:
        intent = instance.evolve(dispatching=node.id, resume_at=None)
        detail = {"action": str(node.action_kind), "attempt": instance.attempts_for(node.id) + 1}
        return StepResult(intent, self._entry(instance, node.id, AuditOutcome.ACTION_DISPATCHED, now, detail))

    async def _invoke_action(self, instance: WorkflowInstance, node: PlanNode, now: datetime) -> StepResult:
        attempt = instance.attempts_for(node.id) + 1
        attempts = {**instance.attempts, node.id: attempt}
        raw_params = node.params.model_dump(exclude_none=True)  # type: ignore[union-attr]
        params = render_params(raw_params, instance.event_context, now)

        outcome = await self._call_invoker(instance, node, params)
        detail: dict[str, Any] = {"action": str(node.action_kind), "attempt": attempt}

        if isinstance(outcome, ActionSuccess):
            detail["result"] = outcome.result
            result = self._advance(
                instance,
                node,
                node.next,
                now,
                AuditOutcome.ACTION_SUCCEEDED,
                detail,
                attempts=attempts,
                dispatching=None,
            )
            return StepResult(result.instance, result.audit, invoked=True)

        detail.update(reason=outcome.reason, permanent=outcome.permanent)
        if outcome.permanent or attempt >= self.config.max_attempts:
            logger.error("Instance %s: action %s failed for good: %s", instance.id, node.id, outcome.reason)
            failed = instance.evolve(
                status=InstanceStatus.FAILED,
                attempts=attempts,
                dispatching=None,
                owner=None,
                error=outcome.reason,
                completed_at=now,
            )
            detail["final"] = True
            entry = self._entry(instance, node.id, AuditOutcome.ACTION_FAILED, now, detail)
            return StepResult(failed, entry, invoked=True)

        wake_at = now + self.config.backoff(attempt)
        logger.warning(
            "Instance %s: action %s failed (attempt %d/%d), retrying at %s: %s",
            instance.id,
            node.id,
            attempt,
            self.config.max_attempts,
            wake_at.isoformat(),
            outcome.reason,
        )
        retrying = instance.evolve(
            status=InstanceStatus.WAITING_DELAY,
            attempts=attempts,
            dispatching=None,
            owner=None,
            resume_at=wake_at,
        )
        detail.update(retry_scheduled=True, retry_at=wake_at.isoformat())
        return StepResult(
            retrying,
            self._entry(instance, node.id, AuditOutcome.ACTION_FAILED, now, detail),
            wake_at=wake_at,
            invoked=True,
        )

    async def _call_invoker(self, instance: WorkflowInstance, node: PlanNode, params: dict[str, Any]) -> ActionResult:
        try:
            return await self.invoker.invoke(node.action_kind, params, instance.event_context)  # type: ignore[arg-type]
        except PermanentActionError as e:
            return ActionFailure(str(e), permanent=True)
        except Exception as e:  # noqa: BLE001
            logger.warning("Instance %s: invoker raised for action %s", instance.id, node.id, exc_info=True)
            return ActionFailure(f"{type(e).__name__}: {e}")

    def _suspend_for_delay(self, instance: WorkflowInstance, node: PlanNode, now: datetime) -> StepResult:
        wake_at = now + node.delay  # type: ignore[operator]
        waiting = instance.evolve(
            current_node_id=node.next,
            status=InstanceStatus.WAITING_DELAY,
            owner=None,
            resume_at=wake_at,
        )
        seconds = int(node.delay.total_seconds())  # type: ignore[union-attr]
        detail = {"resume_at": wake_at.isoformat(), "seconds": seconds, "next": node.next}
        return StepResult(waiting, self._entry(instance, node.id, AuditOutcome.DELAYED, now, detail), wake_at=wake_at)

    async def _discard(self, instance: WorkflowInstance, result: StepResult) -> WorkflowInstance:
        current = await self.store.load(instance.id)
        logger.warning(
            "Instance %s changed while node %s was running (now %s), discarding step",
            instance.id,
            result.audit.node_id,
            current.status,
        )
        if not result.invoked:
            return current
        # The action ran even though its outcome can no longer be applied.
        if current.status == InstanceStatus.CANCELLED:
            outcome = AuditOutcome.CANCELLED_POST_HOC
            detail: dict[str, Any] = {"discarded": str(result.audit.outcome), **result.audit.detail}
        else:
            outcome = result.audit.outcome
            detail = {**result.audit.detail, "discarded": True, "stored_status": str(current.status)}
        await self._record(self._entry(current, result.audit.node_id, outcome, self.now(), detail))
        return current

    async def _fail_unrunnable(self, instance: WorkflowInstance, error: Exception) -> None:
        now = self.now()
        reason = type(error).__name__
        failed = instance.evolve(
            status=InstanceStatus.FAILED,
            dispatching=None,
            owner=None,
            resume_at=None,
            error=f"{reason}: {error}",
            completed_at=now,
        )
        try:
            await self.store.save(failed, instance.version)
        except StoreConflictError:
            logger.warning("Instance %s changed before it could be failed", instance.id)
            return
        await self._record(
            self._entry(instance, instance.current_node_id, AuditOutcome.FAILED, now, {"reason": reason})
        )

    async def _record(self, entry: AuditEntry) -> None:
        try:
            await self.recorder.append(entry)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record audit entry %s for instance %s", entry.outcome, entry.instance_id)
