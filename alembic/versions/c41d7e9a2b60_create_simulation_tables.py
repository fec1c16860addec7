"""create simulation tables

Revision ID: c41d7e9a2b60
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c41d7e9a2b60'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'simulation_inputs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('country', sa.String(100), nullable=False),
        sa.Column('parameters', sa.JSON(), nullable=False),
        sa.Column('iterations', sa.Integer(), nullable=False),
        sa.Column('seed', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'simulation_outputs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('input_id', sa.String(36), sa.ForeignKey('simulation_inputs.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('progress_percentage', sa.Float(), server_default='0'),
        sa.Column('results', sa.JSON(), nullable=True),
        sa.Column('analysis', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('from_cache', sa.Boolean(), server_default='false'),
        sa.Column('compute_time_ms', sa.Float(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
    )

    # Append-only audit trail
    op.create_table(
        'parameter_changes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('simulation_id', sa.String(36), sa.ForeignKey('simulation_inputs.id'), nullable=False),
        sa.Column('parameter_id', sa.String(100), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('changed_by', sa.String(100), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'simulation_comparisons',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('simulation_ids', sa.JSON(), nullable=False),
        sa.Column('difference_matrix', sa.JSON(), nullable=False),
        sa.Column('outcome_comparison', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_index('idx_sim_input_country', 'simulation_inputs', ['country'])
    op.create_index('idx_sim_input_created_by', 'simulation_inputs', ['created_by', 'created_at'])
    op.create_index('idx_sim_output_input', 'simulation_outputs', ['input_id', 'start_time'])
    op.create_index('idx_sim_output_status', 'simulation_outputs', ['status'])
    op.create_index('idx_param_change_simulation', 'parameter_changes', ['simulation_id', 'timestamp'])
    op.create_index('idx_comparison_created', 'simulation_comparisons', ['created_at'])


def downgrade() -> None:
    op.drop_index('idx_comparison_created', table_name='simulation_comparisons')
    op.drop_index('idx_param_change_simulation', table_name='parameter_changes')
    op.drop_index('idx_sim_output_status', table_name='simulation_outputs')
    op.drop_index('idx_sim_output_input', table_name='simulation_outputs')
    op.drop_index('idx_sim_input_created_by', table_name='simulation_inputs')
    op.drop_index('idx_sim_input_country', table_name='simulation_inputs')

    op.drop_table('simulation_comparisons')
    op.drop_table('parameter_changes')
    op.drop_table('simulation_outputs')
    op.drop_table('simulation_inputs')
