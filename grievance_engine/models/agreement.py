"""
Collective agreement configuration models.

Models:
    - CollectiveAgreement: the agreement a grievance is filed under
    - AgreementStepTemplate: one numbered step of the agreement's grievance
      procedure (time limit, stage, required participants/documents)

Step templates are configuration data: the engine only ever reads them,
through ``grievance_engine.services.step_registry``.
"""

from datetime import datetime, timezone
from enum import Enum

from grievance_engine.models import db
from grievance_engine.models.base import OrganizationModel


class GrievanceStage(str, Enum):
    """Coarse phase of the grievance procedure attached to a step template."""

    INFORMAL = "INFORMAL"
    FORMAL = "FORMAL"
    MEDIATION = "MEDIATION"
    ARBITRATION = "ARBITRATION"


GRIEVANCE_TYPES = {"INDIVIDUAL", "GROUP", "POLICY"}


class CollectiveAgreement(OrganizationModel):
    __tablename__ = "collective_agreements"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    effective_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    step_templates = db.relationship(
        "AgreementStepTemplate",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="AgreementStepTemplate.step_number",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }


class AgreementStepTemplate(db.Model):
    """
    A single step of an agreement's grievance procedure.

    ``grievance_type`` is NULL for the agreement's default procedure; rows
    with a type override the default for grievances of that type.
    """

    __tablename__ = "agreement_step_templates"
    __table_args__ = (
        db.UniqueConstraint(
            "agreement_id", "grievance_type", "step_number",
            name="uq_step_template_agreement_type_number",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    agreement_id = db.Column(
        db.Integer,
        db.ForeignKey("collective_agreements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    grievance_type = db.Column(db.String(20), nullable=True, comment="INDIVIDUAL | GROUP | POLICY | NULL = default")
    step_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    stage = db.Column(db.String(20), nullable=False, default=GrievanceStage.INFORMAL.value)
    description = db.Column(db.Text, default="")
    time_limit_days = db.Column(db.Integer, nullable=False, default=0)
    is_calendar_days = db.Column(db.Boolean, nullable=False, default=False)
    required_participants = db.Column(db.JSON, default=list)
    required_documents = db.Column(db.JSON, default=list)

    agreement = db.relationship("CollectiveAgreement", back_populates="step_templates")

    def to_dict(self):
        return {
            "id": self.id,
            "agreement_id": self.agreement_id,
            "grievance_type": self.grievance_type,
            "step_number": self.step_number,
            "name": self.name,
            "stage": self.stage,
            "description": self.description or "",
            "time_limit_days": self.time_limit_days,
            "is_calendar_days": self.is_calendar_days,
            "required_participants": list(self.required_participants or []),
            "required_documents": list(self.required_documents or []),
        }
