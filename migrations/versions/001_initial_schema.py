"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _tenant_id() -> sa.Column:
    return sa.Column(
        "tenant_id",
        sa.String(36),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def upgrade() -> None:
    # Shared tables
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("domain", sa.String(255), nullable=True, index=True),
        sa.Column("subdomain", sa.String(100), nullable=True, unique=True),
        sa.Column("custom_domain", sa.String(255), nullable=True, unique=True),
        sa.Column("plan", sa.String(20), nullable=False, server_default="BASIC"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("suspension_reason", sa.Text, nullable=True),
        sa.Column("db_url", sa.String(512), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        # Not a foreign key: audit history outlives the tenant
        sa.Column("tenant_id", sa.String(36), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_audit_tenant_created", "audit_logs", ["tenant_id", "created_at"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])

    # Tenant-owned tables
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_id(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True, index=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True, index=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_product_tenant_slug"),
    )

    op.create_table(
        "skus",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_id(),
        sa.Column(
            "product_id", sa.String(36), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=True, index=True
        ),
        sa.Column("sku_code", sa.String(100), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("sale_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("stock", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.CheckConstraint("stock >= 0", name="ck_sku_stock_non_negative"),
        sa.UniqueConstraint("tenant_id", "sku_code", name="uq_sku_tenant_code"),
    )

    op.create_table(
        "carts",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_id(),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_cart_user_tenant"),
    )
    # Abandoned-cart pruning scans by last activity
    op.create_index("idx_cart_updated", "carts", ["updated_at"])

    op.create_table(
        "cart_items",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_id(),
        sa.Column("cart_id", sa.String(36), sa.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("sku_id", sa.String(36), sa.ForeignKey("skus.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("cart_id", "sku_id", name="uq_cart_item_cart_sku"),
        sa.CheckConstraint("quantity > 0", name="ck_cart_item_quantity_positive"),
    )


def downgrade() -> None:
    op.drop_table("cart_items")
    op.drop_index("idx_cart_updated", table_name="carts")
    op.drop_table("carts")
    op.drop_table("skus")
    op.drop_table("products")
    op.drop_table("users")
    op.drop_index("idx_audit_action", table_name="audit_logs")
    op.drop_index("idx_audit_tenant_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("roles")
    op.drop_table("tenants")
