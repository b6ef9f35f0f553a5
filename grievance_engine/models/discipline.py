"""
Discipline-guidance models.

Models:
    - GrievanceDisciplineCache: per-grievance cache of AI-extracted reference
      material with a fixed expiry (unique on grievance_id)
    - ReferenceSection: reference text (arbitral jurisprudence, discipline
      chapters) the default retriever draws from
"""

from grievance_engine.models import db
from grievance_engine.utils.helpers import as_utc, iso, utcnow


class GrievanceDisciplineCache(db.Model):
    """
    One cached extraction per grievance.

    Written only through the atomic upsert in
    ``grievance_engine.ai.discipline_cache``; never served once expired.
    """

    __tablename__ = "grievance_discipline_cache"

    id = db.Column(db.Integer, primary_key=True)
    grievance_id = db.Column(
        db.String(36),
        db.ForeignKey("grievances.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    relevant_sections = db.Column(db.Text, nullable=False)
    topics = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def is_expired(self, now=None):
        now = now or utcnow()
        return as_utc(self.expires_at) <= now

    def to_dict(self):
        return {
            "grievance_id": self.grievance_id,
            "relevant_sections": self.relevant_sections,
            "topics": list(self.topics or []),
            "created_at": iso(as_utc(self.created_at)),
            "expires_at": iso(as_utc(self.expires_at)),
        }


class ReferenceSection(db.Model):
    """A titled section of reference material with search keywords."""

    __tablename__ = "reference_sections"

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.String(200), nullable=False, comment="e.g. 'Canadian Labour Arbitration, ch. 7'")
    heading = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, nullable=False)
    keywords = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def render(self) -> str:
        return f"## {self.heading}\n({self.source})\n\n{self.body}"
