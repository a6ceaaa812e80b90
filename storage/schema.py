"""
Database schema for the Contribot tables.

Creates the schema through a direct PostgreSQL connection (DATABASE_URL),
since the Supabase REST client cannot run DDL.

Usage:
    python main.py setup-db           # Create schema
    python main.py setup-db --verify  # Verify existing schema
    python main.py setup-db --drop    # Drop and recreate (DANGEROUS)
"""

import psycopg2

from utils.logger import setup_logger

logger = setup_logger(name=__name__)


CREATE_REPOS_SQL = """
CREATE TABLE IF NOT EXISTS repos (
    id BIGSERIAL PRIMARY KEY,
    owner TEXT NOT NULL,
    name TEXT NOT NULL,
    github_url TEXT NOT NULL,
    languages_ordered JSONB,
    languages_raw JSONB,
    good_first_issue_tag TEXT NOT NULL,
    data_source_id TEXT NOT NULL,
    metadata_hash TEXT,
    open_issues_count INTEGER,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(owner, name)
);
"""

CREATE_ISSUES_SQL = """
CREATE TABLE IF NOT EXISTS issues (
    id BIGSERIAL PRIMARY KEY,
    repo_id BIGINT NOT NULL REFERENCES repos(id) ON DELETE CASCADE,
    github_issue_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    body TEXT,
    state TEXT NOT NULL DEFAULT 'open' CHECK (state IN ('open', 'closed')),
    comment_count INTEGER NOT NULL DEFAULT 0,
    assignee_status JSONB,
    github_url TEXT NOT NULL,
    metadata_hash TEXT,
    created_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ,
    scraped_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(repo_id, github_issue_number)
);
"""

CREATE_SUMMARIES_SQL = """
CREATE TABLE IF NOT EXISTS ai_summaries (
    id BIGSERIAL PRIMARY KEY,
    entity_type TEXT NOT NULL CHECK (entity_type IN ('repo', 'issue')),
    entity_id BIGINT NOT NULL,
    repo_summary TEXT,
    issue_intro TEXT,
    difficulty_score INTEGER CHECK (difficulty_score BETWEEN 1 AND 5),
    first_steps TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(entity_type, entity_id)
);
"""

CREATE_QUEUE_SQL = """
CREATE TABLE IF NOT EXISTS ai_summary_queue (
    id BIGSERIAL PRIMARY KEY,
    entity_type TEXT NOT NULL CHECK (entity_type IN ('repo', 'issue')),
    entity_id BIGINT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    priority INTEGER NOT NULL DEFAULT 0,
    attempts INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    processed_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(entity_type, entity_id)
);
"""

CREATE_CONTINUATIONS_SQL = """
CREATE TABLE IF NOT EXISTS scraper_continuations (
    id BIGSERIAL PRIMARY KEY,
    run_id TEXT,
    phase TEXT NOT NULL DEFAULT 'repos' CHECK (phase IN ('repos', 'issues')),
    source_id TEXT,
    last_index INTEGER NOT NULL DEFAULT 0,
    priority INTEGER NOT NULL DEFAULT 1000,
    consumed BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

TABLES = [
    ("repos", CREATE_REPOS_SQL),
    ("issues", CREATE_ISSUES_SQL),
    ("ai_summaries", CREATE_SUMMARIES_SQL),
    ("ai_summary_queue", CREATE_QUEUE_SQL),
    ("scraper_continuations", CREATE_CONTINUATIONS_SQL),
]

CREATE_INDEXES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_issues_repo_state ON issues(repo_id, state);",
    "CREATE INDEX IF NOT EXISTS idx_queue_pending ON ai_summary_queue(status, priority DESC, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_continuations_unconsumed ON scraper_continuations(consumed, priority DESC);",
]

DROP_TABLES_SQL = (
    "DROP TABLE IF EXISTS scraper_continuations CASCADE; "
    "DROP TABLE IF EXISTS ai_summary_queue CASCADE; "
    "DROP TABLE IF EXISTS ai_summaries CASCADE; "
    "DROP TABLE IF EXISTS issues CASCADE; "
    "DROP TABLE IF EXISTS repos CASCADE;"
)


def create_connection(database_url: str):
    """Create a PostgreSQL database connection."""
    conn = psycopg2.connect(database_url)
    logger.info("✓ Connected to PostgreSQL database")
    return conn


def execute_sql(conn, sql_statement: str, description: str) -> bool:
    """Execute a SQL statement, rolling back on failure."""
    try:
        cursor = conn.cursor()
        cursor.execute(sql_statement)
        conn.commit()
        cursor.close()
        logger.info(f"✓ {description}")
        return True
    except psycopg2.Error as e:
        logger.error(f"✗ {description} failed: {e}")
        conn.rollback()
        return False


def create_schema(conn) -> bool:
    """Create all tables and indexes (idempotent)."""
    logger.info("=" * 80)
    logger.info("CREATING SCHEMA")
    logger.info("=" * 80)

    for table_name, ddl in TABLES:
        if not execute_sql(conn, ddl, f"Created table '{table_name}'"):
            return False

    for idx_sql in CREATE_INDEXES_SQL:
        idx_name = idx_sql.split("INDEX IF NOT EXISTS ")[1].split(" ON")[0]
        if not execute_sql(conn, idx_sql, f"Created index '{idx_name}'"):
            return False

    logger.info("✓ Database schema created successfully!")
    return True


def drop_schema(conn) -> bool:
    """Drop every Contribot table. Deletes all data."""
    logger.warning("⚠️  Dropping all Contribot tables")
    return execute_sql(conn, DROP_TABLES_SQL, "Dropped tables")


def verify_schema(conn) -> bool:
    """Check that every table exists."""
    cursor = conn.cursor()
    missing = []
    try:
        for table_name, _ in TABLES:
            cursor.execute(
                "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = %s);",
                (table_name,),
            )
            if cursor.fetchone()[0]:
                logger.info(f"✓ Table '{table_name}' exists")
            else:
                logger.error(f"✗ Table '{table_name}' does not exist")
                missing.append(table_name)
    finally:
        cursor.close()

    return not missing
