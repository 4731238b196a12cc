from __future__ import annotations

from ..extensions import db
from cafepos.money import cents_to_decimal
from cafepos.time_utils import to_utc_z


class Promotion(db.Model):
    """
    Discount code.

    type=percent: value in basis points (1000 == 10%)
    type=fixed:   value in cents

    Codes are matched case-insensitively; uniqueness among live promotions is
    enforced by promotions_service.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.Index("ix_promotions_code", "code"),
        db.Index("ix_promotions_status_window", "status", "start_at", "end_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)

    type = db.Column(db.String(16), nullable=False)  # percent, fixed
    value = db.Column(db.Integer, nullable=False, default=0)

    min_spend_cents = db.Column(db.Integer, nullable=True)

    start_at = db.Column(db.DateTime(timezone=True), nullable=True)
    end_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # active | inactive
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "min_spend_cents": self.min_spend_cents,
            "min_spend": cents_to_decimal(self.min_spend_cents),
            "start_at": to_utc_z(self.start_at),
            "end_at": to_utc_z(self.end_at),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
