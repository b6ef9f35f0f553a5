"""
Grievance domain models.

Models:
    - Grievance: one grievance instance (status, current stage/step, case facts)
    - GrievanceStep: append-only history, one row per step entered
    - GrievanceEvent: append-only transition log consumed by calendar,
      reporting and notification views

Runtime state:
    ``Grievance.state`` returns either ``ActiveState`` or ``ResolvedState``.
    Callers branch on the type rather than on nullable resolution columns.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from grievance_engine.models import db
from grievance_engine.models.base import OrganizationModel
from grievance_engine.utils.helpers import as_utc, iso, utcnow


class GrievanceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SETTLED = "SETTLED"
    WITHDRAWN = "WITHDRAWN"
    RESOLVED_ARBITRATION = "RESOLVED_ARBITRATION"


class ResolutionType(str, Enum):
    SETTLEMENT = "SETTLEMENT"
    WITHDRAWAL = "WITHDRAWAL"
    ARBITRATION_AWARD = "ARBITRATION_AWARD"


class GrievanceEventType(str, Enum):
    FILED = "FILED"
    ELEVATED = "ELEVATED"
    ADVANCED = "ADVANCED"
    SETTLED = "SETTLED"
    WITHDRAWN = "WITHDRAWN"
    RESOLVED = "RESOLVED"
    FACTS_UPDATED = "FACTS_UPDATED"


# Resolution type → terminal status
RESOLUTION_STATUS = {
    ResolutionType.SETTLEMENT: GrievanceStatus.SETTLED,
    ResolutionType.WITHDRAWAL: GrievanceStatus.WITHDRAWN,
    ResolutionType.ARBITRATION_AWARD: GrievanceStatus.RESOLVED_ARBITRATION,
}


# ── Runtime state (tagged union) ─────────────────────────────────────────────

@dataclass(frozen=True)
class ActiveState:
    stage: str
    step_number: int


@dataclass(frozen=True)
class ResolvedState:
    kind: ResolutionType
    details: str
    resolution_date: datetime
    resolved_by: str | None = None
    # Stage/step at the moment of resolution; read-only history.
    final_stage: str | None = None
    final_step_number: int | None = None


GrievanceState = ActiveState | ResolvedState


# ── Grievance ────────────────────────────────────────────────────────────────

class Grievance(OrganizationModel):
    """
    One grievance instance.

    ``version`` is an optimistic-lock counter: SQLAlchemy adds it to the
    UPDATE's WHERE clause, so two concurrent transitions on the same row
    cannot both commit.
    """

    __tablename__ = "grievances"
    __table_args__ = (
        db.Index("ix_grievances_org_status", "organization_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agreement_id = db.Column(
        db.Integer,
        db.ForeignKey("collective_agreements.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    source_complaint_id = db.Column(
        db.String(36),
        db.ForeignKey("complaints.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
        comment="Idempotency key for complaint elevation",
    )
    type = db.Column(db.String(20), nullable=False, default="INDIVIDUAL")
    category = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(30), nullable=False, default=GrievanceStatus.ACTIVE.value)
    current_stage = db.Column(db.String(20), nullable=True)
    current_step_number = db.Column(db.Integer, nullable=True)

    # Case facts
    statement = db.Column(db.Text, default="")
    settlement_desired = db.Column(db.Text, default="")
    articles_violated = db.Column(db.JSON, default=list)
    grievors = db.Column(db.JSON, default=list)
    work_information = db.Column(db.JSON, default=dict)

    # Resolution (NULL while ACTIVE)
    resolution_type = db.Column(db.String(30), nullable=True)
    resolution_details = db.Column(db.Text, nullable=True)
    resolution_date = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.String(150), nullable=True)

    created_by = db.Column(db.String(150), default="system")
    filed_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    steps = db.relationship(
        "GrievanceStep",
        back_populates="grievance",
        order_by="GrievanceStep.step_number",
        lazy="select",
    )

    @property
    def state(self) -> GrievanceState:
        if self.status == GrievanceStatus.ACTIVE.value:
            return ActiveState(stage=self.current_stage, step_number=self.current_step_number)
        return ResolvedState(
            kind=ResolutionType(self.resolution_type),
            details=self.resolution_details or "",
            resolution_date=as_utc(self.resolution_date),
            resolved_by=self.resolved_by,
            final_stage=self.current_stage,
            final_step_number=self.current_step_number,
        )

    @property
    def is_active(self) -> bool:
        return self.status == GrievanceStatus.ACTIVE.value

    def current_step(self):
        """History row for the step the grievance is currently at."""
        return (
            GrievanceStep.query
            .filter_by(grievance_id=self.id, step_number=self.current_step_number)
            .order_by(GrievanceStep.created_at.desc())
            .first()
        )

    def resolution_dict(self) -> dict | None:
        if self.is_active:
            return None
        return {
            "resolution_type": self.resolution_type,
            "details": self.resolution_details,
            "resolution_date": iso(as_utc(self.resolution_date)),
            "resolved_by": self.resolved_by,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "agreement_id": self.agreement_id,
            "source_complaint_id": self.source_complaint_id,
            "type": self.type,
            "category": self.category,
            "status": self.status,
            "current_stage": self.current_stage,
            "current_step_number": self.current_step_number,
            "statement": self.statement or "",
            "settlement_desired": self.settlement_desired or "",
            "articles_violated": list(self.articles_violated or []),
            "grievors": list(self.grievors or []),
            "work_information": dict(self.work_information or {}),
            "resolution_details": self.resolution_dict(),
            "filed_at": iso(as_utc(self.filed_at)),
            "created_at": iso(as_utc(self.created_at)),
            "updated_at": iso(as_utc(self.updated_at)),
            "version": self.version,
        }

    def __repr__(self):
        return f"<Grievance {self.id} {self.status} step={self.current_step_number}>"


# ── GrievanceStep ────────────────────────────────────────────────────────────

class GrievanceStep(db.Model):
    """
    Append-only history record, one per step entered.

    ``created_at`` of the current step anchors its deadline; ``due_date`` is
    stored for reporting and is NULL when the step has no time limit.
    """

    __tablename__ = "grievance_steps"
    __table_args__ = (
        db.Index("ix_grievance_steps_grievance_number", "grievance_id", "step_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    grievance_id = db.Column(
        db.String(36),
        db.ForeignKey("grievances.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_number = db.Column(db.Integer, nullable=False)
    stage = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    remaining_issues_note = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), default="system")

    grievance = db.relationship("Grievance", back_populates="steps")

    def to_dict(self):
        return {
            "id": self.id,
            "grievance_id": self.grievance_id,
            "step_number": self.step_number,
            "stage": self.stage,
            "created_at": iso(as_utc(self.created_at)),
            "due_date": iso(as_utc(self.due_date)),
            "remaining_issues_note": self.remaining_issues_note,
            "created_by": self.created_by,
        }


# ── GrievanceEvent ───────────────────────────────────────────────────────────

class GrievanceEvent(db.Model):
    """Immutable transition log. One row per state change."""

    __tablename__ = "grievance_events"
    __table_args__ = (
        db.Index("ix_grievance_events_grievance_ts", "grievance_id", "timestamp"),
        db.Index("ix_grievance_events_org_type", "organization_id", "event_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    grievance_id = db.Column(
        db.String(36),
        db.ForeignKey("grievances.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type = db.Column(db.String(30), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")
    payload = db.Column(db.JSON, default=dict)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "grievance_id": self.grievance_id,
            "organization_id": self.organization_id,
            "type": self.event_type,
            "actor": self.actor,
            "payload": dict(self.payload or {}),
            "timestamp": iso(as_utc(self.timestamp)),
        }

    def __repr__(self):
        return f"<GrievanceEvent {self.id}: {self.event_type} on {self.grievance_id}>"
