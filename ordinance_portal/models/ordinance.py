from datetime import datetime, timezone

from sqlalchemy import event

from ..extensions import db


class Ordinance(db.Model):
    """Municipal ordinance reference row."""
    __tablename__ = 'ordinance'

    id = db.Column(db.Integer, primary_key=True)
    municipality_name = db.Column(db.String(128), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=True)
    first_line = db.Column(db.Text, nullable=True)
    survey_group = db.Column(db.Text, nullable=True)  # reduced content shown to free viewers
    content = db.Column(db.Text, nullable=True)
    department = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f'<Ordinance {self.id} {self.municipality_name}>'


def _invalidate_catalog_cache():
    from ..services.ordinance_catalog_service import OrdinanceCatalogService

    OrdinanceCatalogService.invalidate()


@event.listens_for(Ordinance, "after_insert")
def _ordinance_after_insert(mapper, connection, target):
    _invalidate_catalog_cache()


@event.listens_for(Ordinance, "after_update")
def _ordinance_after_update(mapper, connection, target):
    _invalidate_catalog_cache()


@event.listens_for(Ordinance, "after_delete")
def _ordinance_after_delete(mapper, connection, target):
    _invalidate_catalog_cache()
