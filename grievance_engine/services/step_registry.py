"""
Step Template Registry

Read-only view of each collective agreement's grievance procedure.

Templates for an (agreement, grievance type) pair are loaded once into an
arena: a list indexed by ``step_number - 1``. Missing step numbers leave a
``None`` hole. A procedure configured as 1, 2, 4 still loads, but step 2 is
its final step: ``next_template(2)`` looks only at step 3. After the first
load every lookup is a list index.

Template resolution:
    - rows whose ``grievance_type`` matches the grievance's type, if any exist
    - otherwise the agreement's default procedure (``grievance_type IS NULL``)

Arenas are cached per process and dropped automatically when a template row
is inserted, updated or deleted (see ``register_invalidation_listeners``).

Usage:
    from grievance_engine.services.step_registry import step_registry

    first = step_registry.first_template(agreement_id, "GROUP")
    nxt = step_registry.next_template(agreement_id, 2, "GROUP")
"""

import logging
from dataclasses import dataclass
from threading import Lock

from sqlalchemy import event

from grievance_engine.core.exceptions import NotFoundError, ValidationError
from grievance_engine.models.agreement import AgreementStepTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepTemplate:
    step_number: int
    name: str
    stage: str
    description: str
    time_limit_days: int
    is_calendar_days: bool
    required_participants: frozenset[str]
    required_documents: frozenset[str]

    @property
    def has_deadline(self) -> bool:
        return self.time_limit_days > 0

    @classmethod
    def from_row(cls, row: AgreementStepTemplate) -> "StepTemplate":
        return cls(
            step_number=row.step_number,
            name=row.name,
            stage=row.stage,
            description=row.description or "",
            time_limit_days=row.time_limit_days or 0,
            is_calendar_days=bool(row.is_calendar_days),
            required_participants=frozenset(row.required_participants or []),
            required_documents=frozenset(row.required_documents or []),
        )

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "name": self.name,
            "stage": self.stage,
            "description": self.description,
            "time_limit_days": self.time_limit_days,
            "is_calendar_days": self.is_calendar_days,
            "required_participants": sorted(self.required_participants),
            "required_documents": sorted(self.required_documents),
        }


Arena = list[StepTemplate | None]


class StepTemplateRegistry:
    """Per-process cache of agreement procedures, keyed by (agreement_id, grievance_type)."""

    def __init__(self):
        self._arenas: dict[tuple[int, str | None], Arena] = {}
        self._lock = Lock()

    # ── Loading ──────────────────────────────────────────────────────────

    def _load(self, agreement_id: int, grievance_type: str | None) -> Arena:
        rows = []
        if grievance_type:
            rows = (
                AgreementStepTemplate.query
                .filter_by(agreement_id=agreement_id, grievance_type=grievance_type)
                .order_by(AgreementStepTemplate.step_number)
                .all()
            )
        if not rows:
            rows = (
                AgreementStepTemplate.query
                .filter(
                    AgreementStepTemplate.agreement_id == agreement_id,
                    AgreementStepTemplate.grievance_type.is_(None),
                )
                .order_by(AgreementStepTemplate.step_number)
                .all()
            )

        if not rows:
            return []

        arena: Arena = [None] * max(r.step_number for r in rows)
        for row in rows:
            if row.step_number < 1:
                raise ValidationError(
                    f"Agreement {agreement_id} has a step template numbered {row.step_number}",
                    details={"agreement_id": agreement_id, "step_number": row.step_number},
                )
            slot = row.step_number - 1
            if arena[slot] is not None:
                raise ValidationError(
                    f"Agreement {agreement_id} defines step {row.step_number} more than once",
                    details={"agreement_id": agreement_id, "step_number": row.step_number},
                )
            arena[slot] = StepTemplate.from_row(row)

        logger.debug(
            "Loaded %d step templates for agreement %s (type=%s)",
            len(rows), agreement_id, grievance_type or "default",
        )
        return arena

    def _arena(self, agreement_id: int, grievance_type: str | None = None) -> Arena:
        key = (agreement_id, grievance_type)
        with self._lock:
            arena = self._arenas.get(key)
            if arena is None:
                arena = self._load(agreement_id, grievance_type)
                self._arenas[key] = arena
            return arena

    # ── Lookups ──────────────────────────────────────────────────────────

    def steps_for(self, agreement_id: int, grievance_type: str | None = None) -> list[StepTemplate]:
        """All configured steps, ordered by step number."""
        return [t for t in self._arena(agreement_id, grievance_type) if t is not None]

    def template_at(
        self, agreement_id: int, step_number: int, grievance_type: str | None = None,
    ) -> StepTemplate:
        arena = self._arena(agreement_id, grievance_type)
        if step_number is None or step_number < 1 or step_number > len(arena) or arena[step_number - 1] is None:
            raise NotFoundError(resource="StepTemplate", resource_id=f"{agreement_id}/{step_number}")
        return arena[step_number - 1]

    def next_template(
        self, agreement_id: int, step_number: int, grievance_type: str | None = None,
    ) -> StepTemplate | None:
        """Template for ``step_number + 1``; None when that step is not configured."""
        arena = self._arena(agreement_id, grievance_type)
        if step_number is None or step_number < 0 or step_number >= len(arena):
            return None
        return arena[step_number]

    def first_template(self, agreement_id: int, grievance_type: str | None = None) -> StepTemplate:
        """Step 1 of the procedure, used when a grievance is created."""
        arena = self._arena(agreement_id, grievance_type)
        if not arena or arena[0] is None:
            raise ValidationError(
                f"Agreement {agreement_id} has no step 1 configured",
                details={"agreement_id": agreement_id},
            )
        return arena[0]

    def invalidate(self, agreement_id: int | None = None) -> None:
        """Drop cached arenas for one agreement, or all of them."""
        with self._lock:
            if agreement_id is None:
                self._arenas.clear()
                return
            for key in [k for k in self._arenas if k[0] == agreement_id]:
                del self._arenas[key]


step_registry = StepTemplateRegistry()


def _invalidate_on_change(mapper, connection, target):
    step_registry.invalidate(target.agreement_id)


def register_invalidation_listeners():
    """Drop an agreement's arenas whenever one of its template rows changes."""
    for identifier in ("after_insert", "after_update", "after_delete"):
        if not event.contains(AgreementStepTemplate, identifier, _invalidate_on_change):
            event.listen(AgreementStepTemplate, identifier, _invalidate_on_change)
