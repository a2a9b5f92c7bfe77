"""create escalation engine tables

Revision ID: escalation_engine_001
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'escalation_engine_001'
down_revision = None
branch_labels = None
depends_on = None

OUTSTANDING = "status IN ('active', 'escalated', 'acknowledged')"


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('push_token', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'emergency_contacts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('push_token', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('notification_methods', sa.JSON(), nullable=True),
        sa.Column('notification_preferences', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['patient_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_emergency_contacts_patient', 'emergency_contacts', ['patient_id', 'priority'])

    op.create_table(
        'caregiver_relationships',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('caregiver_id', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('notification_preferences', sa.JSON(), nullable=True),
        sa.Column('professional_schedule', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['patient_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['caregiver_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_caregiver_relationships_patient', 'caregiver_relationships', ['patient_id', 'status'])
    op.create_index('idx_caregiver_relationships_caregiver', 'caregiver_relationships', ['caregiver_id', 'status'])

    op.create_table(
        'emergency_alerts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('alert_type', sa.String(), nullable=False),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('escalation_level', sa.Integer(), nullable=False),
        sa.Column('bypass_escalation', sa.Boolean(), nullable=False),
        sa.Column('escalated_at', sa.DateTime(), nullable=True),
        sa.Column('vital_sign_id', sa.String(), nullable=True),
        sa.Column('medication_id', sa.String(), nullable=True),
        sa.Column('location_lat', sa.Float(), nullable=True),
        sa.Column('location_lng', sa.Float(), nullable=True),
        sa.Column('location_address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_by', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('was_false_alarm', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_emergency_alerts_patient_id', 'emergency_alerts', ['patient_id'])
    op.create_index('idx_emergency_alerts_patient_status', 'emergency_alerts', ['patient_id', 'status'])
    op.create_index('idx_emergency_alerts_escalation', 'emergency_alerts', ['status', 'escalation_level', 'escalated_at'])
    op.create_index(
        'uq_emergency_alerts_outstanding',
        'emergency_alerts',
        ['patient_id', 'alert_type'],
        unique=True,
        postgresql_where=sa.text(OUTSTANDING),
        sqlite_where=sa.text(OUTSTANDING),
    )

    op.create_table(
        'emergency_notifications',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('alert_id', sa.String(length=36), nullable=False),
        sa.Column('recipient_contact_id', sa.String(), nullable=True),
        sa.Column('recipient_type', sa.String(), nullable=False),
        sa.Column('destination', sa.String(), nullable=False),
        sa.Column('channel', sa.String(), nullable=False),
        sa.Column('purpose', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('redrive_of', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['alert_id'], ['emergency_alerts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_emergency_notifications_alert', 'emergency_notifications', ['alert_id'])
    op.create_index('idx_emergency_notifications_status', 'emergency_notifications', ['status', 'created_at'])

    op.create_table(
        'caregiver_notifications',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('chain_id', sa.String(length=36), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('caregiver_id', sa.String(), nullable=False),
        sa.Column('relationship_id', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('priority', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('escalation_level', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('response_deadline', sa.DateTime(), nullable=True),
        sa.Column('original_alert_id', sa.String(length=36), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('escalation_checked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_caregiver_notifications_caregiver', 'caregiver_notifications', ['caregiver_id', 'status'])
    op.create_index('idx_caregiver_notifications_chain', 'caregiver_notifications', ['chain_id'])
    op.create_index('idx_caregiver_notifications_expiry', 'caregiver_notifications', ['status', 'expires_at'])

    op.create_table(
        'caregiver_actions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('caregiver_id', sa.String(), nullable=False),
        sa.Column('alert_id', sa.String(length=36), nullable=True),
        sa.Column('notification_id', sa.String(length=36), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_caregiver_actions_patient', 'caregiver_actions', ['patient_id', 'created_at'])


def downgrade():
    op.drop_index('idx_caregiver_actions_patient', table_name='caregiver_actions')
    op.drop_table('caregiver_actions')
    op.drop_index('idx_caregiver_notifications_expiry', table_name='caregiver_notifications')
    op.drop_index('idx_caregiver_notifications_chain', table_name='caregiver_notifications')
    op.drop_index('idx_caregiver_notifications_caregiver', table_name='caregiver_notifications')
    op.drop_table('caregiver_notifications')
    op.drop_index('idx_emergency_notifications_status', table_name='emergency_notifications')
    op.drop_index('idx_emergency_notifications_alert', table_name='emergency_notifications')
    op.drop_table('emergency_notifications')
    op.drop_index('uq_emergency_alerts_outstanding', table_name='emergency_alerts')
    op.drop_index('idx_emergency_alerts_escalation', table_name='emergency_alerts')
    op.drop_index('idx_emergency_alerts_patient_status', table_name='emergency_alerts')
    op.drop_index('ix_emergency_alerts_patient_id', table_name='emergency_alerts')
    op.drop_table('emergency_alerts')
    op.drop_index('idx_caregiver_relationships_caregiver', table_name='caregiver_relationships')
    op.drop_index('idx_caregiver_relationships_patient', table_name='caregiver_relationships')
    op.drop_table('caregiver_relationships')
    op.drop_index('idx_emergency_contacts_patient', table_name='emergency_contacts')
    op.drop_table('emergency_contacts')
    op.drop_table('users')
