"""events, entrants and notifications

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("organizer_id", sa.String(length=128), nullable=True),
        sa.Column("organizer_name", sa.String(length=255), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("waiting_list_limit", sa.Integer(), nullable=True),
        sa.Column("geolocation_required", sa.Boolean(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "open",
                "finalized",
                "cancelled",
                name="event_status",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("registration_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("registration_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_events")),
    )
    op.create_index(op.f("ix_events_organizer_id"), "events", ["organizer_id"])

    op.create_table(
        "entrants",
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("user_name", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "waiting",
                "invited",
                "accepted",
                "declined",
                "cancelled",
                name="entrant_status",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("date_registered", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["event_id"],
            ["events.id"],
            name=op.f("fk_entrants_event_id_events"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("event_id", "user_id", name=op.f("pk_entrants")),
    )
    op.create_index("ix_entrants_event_id_status", "entrants", ["event_id", "status"])
    op.create_index("ix_entrants_user_id", "entrants", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("recipient_id", sa.String(length=128), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=True),
        sa.Column("event_name", sa.String(length=255), nullable=True),
        sa.Column(
            "type",
            sa.Enum(
                "invite",
                "withdrawal",
                "custom",
                name="notification_type",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("sender_id", sa.String(length=128), nullable=True),
        sa.Column("seen", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["event_id"],
            ["events.id"],
            name=op.f("fk_notifications_event_id_events"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index(
        op.f("ix_notifications_event_id"), "notifications", ["event_id"]
    )
    op.create_index(
        "ix_notifications_recipient_id_seen", "notifications", ["recipient_id", "seen"]
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_recipient_id_seen", table_name="notifications")
    op.drop_index(op.f("ix_notifications_event_id"), table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_entrants_user_id", table_name="entrants")
    op.drop_index("ix_entrants_event_id_status", table_name="entrants")
    op.drop_table("entrants")
    op.drop_index(op.f("ix_events_organizer_id"), table_name="events")
    op.drop_table("events")
