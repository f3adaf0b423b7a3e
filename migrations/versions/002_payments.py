"""Payments, webhook receipts and reconciliation issues.

Adds the partial unique indexes that back payment idempotency: one completed
charge per order and one refund per original payment.

Revision ID: 002_payments
Revises: 001_initial_schema
Create Date: 2026-10-02
"""

from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_payments"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_payments.sql"


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
