"""Append-only audit log and undeletable imprests (Postgres only)

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18

Rejects UPDATE/DELETE on imprest_audit_log and DELETE on imprest_requests.
Other dialects are skipped.
"""
from alembic import op

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name != "postgresql":
        return

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_imprest_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION '%: % not allowed', TG_TABLE_NAME, TG_OP;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        DROP TRIGGER IF EXISTS trg_imprest_audit_no_update ON imprest_audit_log;
        CREATE TRIGGER trg_imprest_audit_no_update
        BEFORE UPDATE ON imprest_audit_log
        FOR EACH ROW EXECUTE FUNCTION prevent_imprest_mutation();
    """)

    op.execute("""
        DROP TRIGGER IF EXISTS trg_imprest_audit_no_delete ON imprest_audit_log;
        CREATE TRIGGER trg_imprest_audit_no_delete
        BEFORE DELETE ON imprest_audit_log
        FOR EACH ROW EXECUTE FUNCTION prevent_imprest_mutation();
    """)

    op.execute("""
        DROP TRIGGER IF EXISTS trg_imprest_requests_no_delete ON imprest_requests;
        CREATE TRIGGER trg_imprest_requests_no_delete
        BEFORE DELETE ON imprest_requests
        FOR EACH ROW EXECUTE FUNCTION prevent_imprest_mutation();
    """)


def downgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name != "postgresql":
        return

    op.execute("DROP TRIGGER IF EXISTS trg_imprest_requests_no_delete ON imprest_requests;")
    op.execute("DROP TRIGGER IF EXISTS trg_imprest_audit_no_delete ON imprest_audit_log;")
    op.execute("DROP TRIGGER IF EXISTS trg_imprest_audit_no_update ON imprest_audit_log;")
    op.execute("DROP FUNCTION IF EXISTS prevent_imprest_mutation();")
