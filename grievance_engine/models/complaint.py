"""
Complaint model.

Complaints are managed by the complaint-management collaborator; the engine
reads them when a complaint is elevated to a grievance and flips their
status to GRIEVED in the same transaction.
"""

import uuid
from datetime import datetime, timezone

from grievance_engine.models import db
from grievance_engine.models.base import OrganizationModel

COMPLAINT_STATUSES = {"OPEN", "IN_PROGRESS", "CLOSED", "GRIEVED"}
COMPLAINT_TYPES = {"INDIVIDUAL", "GROUP", "POLICY"}


class Complaint(OrganizationModel):
    __tablename__ = "complaints"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agreement_id = db.Column(
        db.Integer,
        db.ForeignKey("collective_agreements.id", ondelete="SET NULL"),
        nullable=True,
    )
    complaint_number = db.Column(db.String(30), nullable=True)
    type = db.Column(db.String(20), nullable=False, default="INDIVIDUAL")
    status = db.Column(db.String(20), nullable=False, default="OPEN")
    category = db.Column(db.String(100), nullable=True)

    issue = db.Column(db.Text, default="")
    settlement_desired = db.Column(db.Text, default="")
    articles_violated = db.Column(db.JSON, default=list)

    complainant_first_name = db.Column(db.String(100))
    complainant_last_name = db.Column(db.String(100))
    complainant_email = db.Column(db.String(200))
    complainant_phone = db.Column(db.String(50))
    complainant_position = db.Column(db.String(150))
    complainant_department = db.Column(db.String(150))
    complainant_supervisor = db.Column(db.String(150))
    employees = db.Column(db.JSON, default=list, comment="GROUP complaints: [{firstName, lastName, email, phoneNumber}]")

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "agreement_id": self.agreement_id,
            "complaint_number": self.complaint_number,
            "type": self.type,
            "status": self.status,
            "category": self.category,
            "issue": self.issue or "",
            "settlement_desired": self.settlement_desired or "",
            "articles_violated": list(self.articles_violated or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
