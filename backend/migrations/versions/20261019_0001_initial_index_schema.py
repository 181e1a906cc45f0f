"""Create entity, prescription, status audit and settings tables

Revision ID: a7c4e1d2b9f0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a7c4e1d2b9f0'
down_revision = None
branch_labels = None
depends_on = None

ENTITY_TABLES = ('physicians', 'patients', 'regulatory_authorities')


def _entity_columns():
    return [
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('address', sa.String(length=64), nullable=False),
        sa.Column('content_ref', sa.String(length=128), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # Entity mirror tables (uniform schema, pharmacies add name/street address)
    for table in ENTITY_TABLES:
        op.create_table(table, *_entity_columns())
        op.create_index(f'ix_{table}_address', table, ['address'], unique=True)

    op.create_table('pharmacies',
        *_entity_columns(),
        sa.Column('pharmacy_name', sa.String(length=255), nullable=True),
        sa.Column('pharmacy_address', sa.String(length=500), nullable=True),
    )
    op.create_index('ix_pharmacies_address', 'pharmacies', ['address'], unique=True)
    op.create_index('ix_pharmacies_pharmacy_name', 'pharmacies', ['pharmacy_name'])

    # Prescription index
    op.create_table('prescriptions',
        sa.Column('prescription_id', sa.String(length=64), primary_key=True),
        sa.Column('patient_address', sa.String(length=64), nullable=False),
        sa.Column('content_ref', sa.String(length=128), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('assigned_to', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_prescriptions_patient_address', 'prescriptions', ['patient_address'])
    op.create_index('ix_prescriptions_created_by', 'prescriptions', ['created_by'])
    op.create_index('ix_prescriptions_assigned_to', 'prescriptions', ['assigned_to'])

    # Append-only status timeline
    op.create_table('prescription_status_audit',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('prescription_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('timestamp', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('note', sa.Text, nullable=True),
    )
    op.create_index(
        'ix_status_audit_prescription_ts',
        'prescription_status_audit',
        ['prescription_id', 'timestamp'],
    )

    op.create_table('settings',
        sa.Column('key', sa.String(length=100), primary_key=True),
        sa.Column('value', sa.Text, nullable=True),
    )


def downgrade():
    op.drop_table('settings')

    op.drop_index('ix_status_audit_prescription_ts', table_name='prescription_status_audit')
    op.drop_table('prescription_status_audit')

    op.drop_index('ix_prescriptions_assigned_to', table_name='prescriptions')
    op.drop_index('ix_prescriptions_created_by', table_name='prescriptions')
    op.drop_index('ix_prescriptions_patient_address', table_name='prescriptions')
    op.drop_table('prescriptions')

    op.drop_index('ix_pharmacies_pharmacy_name', table_name='pharmacies')
    op.drop_index('ix_pharmacies_address', table_name='pharmacies')
    op.drop_table('pharmacies')

    for table in reversed(ENTITY_TABLES):
        op.drop_index(f'ix_{table}_address', table_name=table)
        op.drop_table(table)
