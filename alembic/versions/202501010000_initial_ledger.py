"""initial ledger schema

Revision ID: 202501010000
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "202501010000"
down_revision = None
branch_labels = None
depends_on = None

# The transactions table reuses the type created with categories.
transaction_type = sa.Enum("income", "expense", name="transactiontype")
existing_transaction_type = sa.Enum(
    "income", "expense", name="transactiontype"
).with_variant(
    postgresql.ENUM("income", "expense", name="transactiontype", create_type=False),
    "postgresql",
)
audit_action = sa.Enum("created", "updated", "deleted", name="auditaction")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=50), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=100)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "name", "type", name="uq_category_user_name_type"
        ),
        sa.CheckConstraint(
            "parent_id IS NULL OR parent_id <> id", name="ck_category_not_own_parent"
        ),
    )
    op.create_index(
        "ix_categories_user_parent", "categories", ["user_id", "parent_id"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", existing_transaction_type, nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "transaction_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("old_amount_cents", sa.Integer()),
        sa.Column("new_amount_cents", sa.Integer()),
        sa.Column("old_category_id", sa.Integer()),
        sa.Column("new_category_id", sa.Integer()),
        sa.Column("changed_at", sa.DateTime(), nullable=False),
        sa.Column(
            "changed_by", sa.String(length=100), nullable=False, server_default="system"
        ),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_audit_transaction_changed",
        "transaction_audit_log",
        ["transaction_id", "changed_at", "id"],
    )
    op.create_index(
        "ix_audit_user_changed", "transaction_audit_log", ["user_id", "changed_at"]
    )


def downgrade():
    op.drop_index("ix_audit_user_changed", table_name="transaction_audit_log")
    op.drop_index("ix_audit_transaction_changed", table_name="transaction_audit_log")
    op.drop_table("transaction_audit_log")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_categories_user_parent", table_name="categories")
    op.drop_table("categories")
    op.drop_table("users")
    if op.get_context().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS auditaction")
        op.execute("DROP TYPE IF EXISTS transactiontype")
