# models.py
import sqlalchemy
from bam_booking.database import metadata

#'users' table
users = sqlalchemy.Table(
    "users",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("username", sqlalchemy.String, unique=True, index=True),
    sqlalchemy.Column("full_name", sqlalchemy.String),
    sqlalchemy.Column("role", sqlalchemy.String, default="student"),
)

#'resources' table (microscopes). Administered outside the engine.
resources = sqlalchemy.Table(
    "resources",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(50), primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("location", sqlalchemy.String, nullable=True),
    sqlalchemy.Column("status", sqlalchemy.String(20), nullable=False, default="available"),
)

reservations = sqlalchemy.Table(
    "reservations",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column("resource_id", sqlalchemy.String(50), sqlalchemy.ForeignKey("resources.id"), nullable=False),
    sqlalchemy.Column("date", sqlalchemy.Date, nullable=False),

    # Minutes from midnight, half-open [slot_start, slot_end)
    sqlalchemy.Column("slot_start", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("slot_end", sqlalchemy.Integer, nullable=False),

    sqlalchemy.Column("title", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("group_name", sqlalchemy.String, nullable=True),
    sqlalchemy.Column("attendees", sqlalchemy.Integer, nullable=True),
    sqlalchemy.Column("requester_id", sqlalchemy.String, nullable=False, index=True),
    sqlalchemy.Column("requester_name", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String(20), nullable=False, default="pending", index=True),
    sqlalchemy.Column("decided_by", sqlalchemy.String, nullable=True),
    sqlalchemy.Column("decided_at", sqlalchemy.DateTime(timezone=True), nullable=True),
    sqlalchemy.Column("rejection_reason", sqlalchemy.Text, nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.CheckConstraint("slot_end > slot_start", name="reservation_time_valid"),
    sqlalchemy.Index("idx_reservations_partition", "resource_id", "date"),
)
