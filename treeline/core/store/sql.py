"""SQL constants for the PostgreSQL job-tree store and backend."""

from __future__ import annotations

from sqlalchemy import text

SUBJOB_COLUMNS = """
    id, workflow_id, kind, parent_id, next_id, position, status,
    descendants_are_complete, job_handle, arguments, execution_metadata
"""

WORKFLOW_COLUMNS = 'id, name, status, error, created_at, completed_at'

# -- workflows --

INSERT_WORKFLOW_SQL = text("""
    INSERT INTO treeline_workflows (id, name, status, error, created_at, updated_at)
    VALUES (:id, :name, :status, :error, :created_at, NOW())
""")
GET_WORKFLOW_SQL = text(f"""
    SELECT {WORKFLOW_COLUMNS} FROM treeline_workflows WHERE id = :wf_id
""")
TRANSITION_WORKFLOW_SQL = text(f"""
    UPDATE treeline_workflows
    SET status = :to_status,
        error = COALESCE(:error, error),
        completed_at = CASE WHEN :terminal THEN NOW() ELSE completed_at END,
        updated_at = NOW()
    WHERE id = :wf_id
      AND status = ANY(:from_statuses)
    RETURNING {WORKFLOW_COLUMNS}
""")

# -- subjobs --

INSERT_SUBJOB_SQL = text("""
    INSERT INTO treeline_subjobs
    (id, workflow_id, kind, parent_id, next_id, position, status,
     descendants_are_complete, job_handle, arguments, execution_metadata,
     created_at, updated_at)
    VALUES (:id, :wf_id, :kind, :parent_id, :next_id, :position, :status,
            :dac, :job_handle, CAST(:arguments AS JSONB), CAST(:metadata AS JSONB),
            NOW(), NOW())
""")
GET_SUBJOB_SQL = text(f"""
    SELECT {SUBJOB_COLUMNS} FROM treeline_subjobs WHERE id = :id
""")
GET_SUBJOB_BY_HANDLE_SQL = text(f"""
    SELECT {SUBJOB_COLUMNS} FROM treeline_subjobs WHERE job_handle = :handle
""")
GET_CHILDREN_SQL = text(f"""
    SELECT {SUBJOB_COLUMNS} FROM treeline_subjobs
    WHERE parent_id = :id
    ORDER BY position
""")
GET_ROOT_CHAIN_SQL = text(f"""
    SELECT {SUBJOB_COLUMNS} FROM treeline_subjobs
    WHERE workflow_id = :wf_id AND parent_id IS NULL
    ORDER BY position
""")

# Atomic CAS: only the caller that observes a source status performs the write
TRANSITION_SUBJOB_SQL = text(f"""
    UPDATE treeline_subjobs
    SET status = :to_status,
        job_handle = COALESCE(:handle, job_handle),
        updated_at = NOW()
    WHERE id = :id
      AND status = ANY(:from_statuses)
    RETURNING {SUBJOB_COLUMNS}
""")
MARK_DESCENDANTS_COMPLETE_SQL = text("""
    UPDATE treeline_subjobs
    SET descendants_are_complete = TRUE, updated_at = NOW()
    WHERE id = :id AND descendants_are_complete = FALSE
    RETURNING id
""")
DELETE_SUBJOBS_SQL = text("""
    DELETE FROM treeline_subjobs WHERE workflow_id = :wf_id
""")

# -- backend invocations --

RELEASE_EXPIRED_UNIQUE_KEY_SQL = text("""
    UPDATE treeline_tasks
    SET unique_key = NULL, updated_at = NOW()
    WHERE unique_key = :unique_key
      AND unique_expires_at IS NOT NULL
      AND unique_expires_at <= NOW()
""")
INSERT_TASK_SQL = text("""
    INSERT INTO treeline_tasks
    (id, worker_name, queue_name, priority, arguments, execution_metadata, status,
     unique_key, unique_expires_at, created_at, updated_at)
    VALUES (:id, :worker_name, :queue, :priority, CAST(:arguments AS JSONB),
            CAST(:metadata AS JSONB), 'PENDING', :unique_key, :unique_expires_at,
            NOW(), NOW())
    ON CONFLICT (unique_key)
        WHERE unique_key IS NOT NULL AND status IN ('PENDING', 'RUNNING')
        DO NOTHING
    RETURNING id
""")
NOTIFY_TASK_NEW_SQL = text("""SELECT pg_notify('treeline_task_new', :id)""")
