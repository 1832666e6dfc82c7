"""Create profiles, patients, visits and visit_ai_generations

Revision ID: 3b1f6c2a9d40
Revises:
Create Date: 2026-10-16 09:12:31.204118
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('preferred_ai_model', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'patients',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('therapist_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_patients_therapist', 'patients', ['therapist_id'])
    # 이름은 대소문자 구분 없이 중복 금지
    op.create_index(
        'uq_patients_name_dob',
        'patients',
        ['therapist_id', sa.text('lower(first_name)'), sa.text('lower(last_name)'), 'date_of_birth'],
        unique=True,
    )

    op.create_table(
        'visits',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('patient_id', sa.Uuid(), sa.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False),
        sa.Column('visit_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('interview', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('recommendations', sa.Text(), nullable=True),
        sa.Column('recommendations_generated_by_ai', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recommendations_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_visits_patient_date', 'visits', ['patient_id', 'visit_date'])

    op.create_table(
        'visit_ai_generations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('visit_id', sa.Uuid(), sa.ForeignKey('visits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('therapist_id', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('ai_response', sa.Text(), nullable=False),
        sa.Column('model_used', sa.String(length=200), nullable=False),
        sa.Column('temperature', sa.Numeric(3, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_visit_ai_generations_visit', 'visit_ai_generations', ['visit_id', 'created_at'])
    op.create_index('idx_visit_ai_generations_therapist', 'visit_ai_generations', ['therapist_id'])


def downgrade() -> None:
    op.drop_index('idx_visit_ai_generations_therapist', table_name='visit_ai_generations')
    op.drop_index('idx_visit_ai_generations_visit', table_name='visit_ai_generations')
    op.drop_table('visit_ai_generations')
    op.drop_index('idx_visits_patient_date', table_name='visits')
    op.drop_table('visits')
    op.drop_index('uq_patients_name_dob', table_name='patients')
    op.drop_index('idx_patients_therapist', table_name='patients')
    op.drop_table('patients')
    op.drop_table('profiles')
