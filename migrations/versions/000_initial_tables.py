"""Create contact, segment and campaign tables

Revision ID: 000_initial_tables
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '000_initial_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('contact',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('email', sa.String(length=200), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('lifecycle_stage', sa.String(length=50), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=True),
        sa.Column('custom_fields', sa.JSON(), nullable=True),
        sa.Column('ecommerce_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('last_contacted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_contact_tenant_id', 'contact', ['tenant_id'])

    op.create_table('segment',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('rules', sa.JSON(), nullable=False),
        sa.Column('contact_ids', sa.JSON(), nullable=False),
        sa.Column('contact_count', sa.Integer(), nullable=True),
        sa.Column('last_calculated_at', sa.DateTime(), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_segment_tenant_id', 'segment', ['tenant_id'])

    op.create_table('campaign',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('primary_channel', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('content', sa.JSON(), nullable=True),
        sa.Column('targeting', sa.JSON(), nullable=True),
        sa.Column('schedule', sa.JSON(), nullable=True),
        sa.Column('throttle', sa.JSON(), nullable=True),
        sa.Column('stats', sa.JSON(), nullable=False),
        sa.Column('is_ab_test', sa.Boolean(), nullable=True),
        sa.Column('ab_test_winner_metric', sa.String(length=30), nullable=True),
        sa.Column('ab_test_sample_size', sa.Integer(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_campaign_tenant_id', 'campaign', ['tenant_id'])
    op.create_index('ix_campaign_status', 'campaign', ['status'])
    op.create_index('ix_campaign_scheduled_at', 'campaign', ['scheduled_at'])

    op.create_table('campaign_variant',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('content', sa.JSON(), nullable=True),
        sa.Column('percentage', sa.Float(), nullable=False),
        sa.Column('stats', sa.JSON(), nullable=False),
        sa.Column('is_winner', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaign.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_campaign_variant_campaign_id', 'campaign_variant', ['campaign_id'])

    op.create_table('campaign_execution',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('contact_id', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('external_message_id', sa.String(length=200), nullable=True),
        sa.Column('queued_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=True),
        sa.Column('clicked_at', sa.DateTime(), nullable=True),
        sa.Column('replied_at', sa.DateTime(), nullable=True),
        sa.Column('converted', sa.Boolean(), nullable=True),
        sa.Column('conversion_value', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('conversion_order_id', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaign.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['variant_id'], ['campaign_variant.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('campaign_id', 'contact_id', name='uq_campaign_execution_contact')
    )
    op.create_index('ix_campaign_execution_campaign_id', 'campaign_execution', ['campaign_id'])
    op.create_index('ix_campaign_execution_contact_id', 'campaign_execution', ['contact_id'])
    op.create_index('ix_campaign_execution_status', 'campaign_execution', ['status'])


def downgrade():
    op.drop_table('campaign_execution')
    op.drop_table('campaign_variant')
    op.drop_table('campaign')
    op.drop_table('segment')
    op.drop_table('contact')
