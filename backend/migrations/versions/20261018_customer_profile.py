"""Customer profile: document, delivery address, notes and active/inactive status

Revision ID: 20261018_customer_profile
Revises: 20261017_initial
Create Date: 2026-10-18

Customers were only created by storefront checkout (name, phone, email).
Admin-managed customers carry the full profile and are deactivated instead
of deleted.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_customer_profile'
down_revision = '20261017_initial'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.add_column(sa.Column('document', sa.String(length=32), nullable=True))
        batch_op.add_column(sa.Column('zip_code', sa.String(length=16), nullable=True))
        batch_op.add_column(sa.Column('address', sa.String(length=255), nullable=True))
        batch_op.add_column(sa.Column('address_number', sa.String(length=16), nullable=True))
        batch_op.add_column(sa.Column('neighborhood', sa.String(length=128), nullable=True))
        batch_op.add_column(sa.Column('city', sa.String(length=128), nullable=True))
        batch_op.add_column(sa.Column('state', sa.String(length=64), nullable=True))
        batch_op.add_column(sa.Column('notes', sa.Text(), nullable=True))
        batch_op.add_column(sa.Column('status', sa.String(length=16), nullable=False, server_default='active'))
        batch_op.add_column(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False))
        batch_op.create_index(batch_op.f('ix_customers_owner_status'), ['owner_id', 'status'], unique=False)


def downgrade():
    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_customers_owner_status'))
        batch_op.drop_column('updated_at')
        batch_op.drop_column('status')
        batch_op.drop_column('notes')
        batch_op.drop_column('state')
        batch_op.drop_column('city')
        batch_op.drop_column('neighborhood')
        batch_op.drop_column('address_number')
        batch_op.drop_column('address')
        batch_op.drop_column('zip_code')
        batch_op.drop_column('document')
