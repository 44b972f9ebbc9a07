"""
PostgreSQL schema for plans, policy documents and embedded chunks.

Deleting a plan cascades to its documents, and deleting a document cascades
to its chunks.
"""

SCHEMA_SQL = """
-- Enable required extensions
CREATE EXTENSION IF NOT EXISTS vector;
CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

-- Create schema
CREATE SCHEMA IF NOT EXISTS {schema_name};

CREATE TABLE IF NOT EXISTS {schema_name}.insurance_plans (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    company_name VARCHAR(200) NOT NULL,
    plan_name VARCHAR(200) NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    categories TEXT[] NOT NULL DEFAULT '{{}}',
    yearly_price_in_cents INTEGER,
    two_yearly_price_in_cents INTEGER,
    coverage_percentage INTEGER NOT NULL CHECK (coverage_percentage BETWEEN 0 AND 100),
    deductible_in_cents INTEGER NOT NULL DEFAULT 0 CHECK (deductible_in_cents >= 0),
    coverage_description TEXT,
    right_of_withdrawal TEXT,
    generated_summary TEXT,
    top_reasons TEXT[],
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS {schema_name}.policy_documents (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    plan_id UUID NOT NULL REFERENCES {schema_name}.insurance_plans (id) ON DELETE CASCADE,
    file_name VARCHAR(300) NOT NULL,
    storage_key TEXT NOT NULL,
    storage_url TEXT NOT NULL,
    file_size_in_bytes INTEGER NOT NULL DEFAULT 0,
    mime_type VARCHAR(100) NOT NULL DEFAULT 'application/pdf',
    is_processed BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS {schema_name}.policy_chunks (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    document_id UUID NOT NULL REFERENCES {schema_name}.policy_documents (id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL CHECK (chunk_index >= 0),
    chunk_text TEXT NOT NULL,
    embedding VECTOR({dimensions}) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (document_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_policy_documents_plan_id ON {schema_name}.policy_documents (plan_id);
CREATE INDEX IF NOT EXISTS idx_policy_chunks_document_id ON {schema_name}.policy_chunks (document_id);
CREATE INDEX IF NOT EXISTS idx_insurance_plans_active ON {schema_name}.insurance_plans (is_active);
"""


def render_schema_sql(schema_name: str = "policyrag", dimensions: int = 1536) -> str:
    return SCHEMA_SQL.format(schema_name=schema_name, dimensions=dimensions)
