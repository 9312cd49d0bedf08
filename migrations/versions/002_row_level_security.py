"""Row-level security on tenant-owned tables

Every tenant-owned table gets a policy keyed on the ``app.current_tenant_id``
session variable, which the storage driver sets per transaction. An unset or
empty variable is platform scope and sees every row; this is what
maintenance jobs and tenant resolution run under.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op

# revision identifiers
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None

TENANT_TABLES = ["users", "products", "skus", "carts", "cart_items"]


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION current_tenant_id() RETURNS TEXT AS $$
          SELECT current_setting('app.current_tenant_id', true);
        $$ LANGUAGE sql STABLE
        """
    )

    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY {table}_tenant_isolation ON {table} "
            f"USING (coalesce(current_tenant_id(), '') = '' OR tenant_id = current_tenant_id()) "
            f"WITH CHECK (coalesce(current_tenant_id(), '') = '' OR tenant_id = current_tenant_id())"
        )


def downgrade() -> None:
    for table in reversed(TENANT_TABLES):
        op.execute(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")

    op.execute("DROP FUNCTION IF EXISTS current_tenant_id()")
