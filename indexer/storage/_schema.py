SCHEMA_VERSION = 2

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Blocks: one document per produced block, immutable once written
CREATE TABLE IF NOT EXISTS blocks (
    id          TEXT NOT NULL,
    parent_id   TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    block_time  TEXT NOT NULL,
    producer    TEXT NOT NULL,
    doc         TEXT NOT NULL
);

-- Transactions: bulk-inserted together with their block
CREATE TABLE IF NOT EXISTS transactions (
    id          TEXT NOT NULL,
    idx         INTEGER NOT NULL,
    block_id    TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    block_time  TEXT NOT NULL,
    status      TEXT NOT NULL,
    doc         TEXT NOT NULL
);

-- Accounts created on chain
CREATE TABLE IF NOT EXISTS accounts (
    id          TEXT NOT NULL,
    block_id    TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    block_time  TEXT NOT NULL,
    creator     TEXT NOT NULL DEFAULT '',
    username    TEXT,
    keys_json   TEXT NOT NULL DEFAULT '{}'
);

-- Learned account paths (from setabi)
CREATE TABLE IF NOT EXISTS account_paths (
    account     TEXT NOT NULL,
    action      TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    paths_json  TEXT NOT NULL DEFAULT '[]'
);

-- Token balances, one row per (account, symbol) change block
CREATE TABLE IF NOT EXISTS token_balances (
    account     TEXT NOT NULL,
    symbol      TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    balance     TEXT NOT NULL,
    payments    TEXT
);

-- Stake agents parameters, one row per (account, symbol) change block
CREATE TABLE IF NOT EXISTS stake_agents (
    account     TEXT NOT NULL,
    symbol      TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    fee         INTEGER,
    proxy_level INTEGER,
    min_stake   INTEGER
);

-- Multisig proposals (written on irreversible blocks only)
CREATE TABLE IF NOT EXISTS proposals (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    proposer     TEXT NOT NULL,
    name         TEXT NOT NULL,
    block_num    INTEGER NOT NULL,
    final_status TEXT,
    doc          TEXT NOT NULL
);

-- Per-month per-account produced/missed counters
CREATE TABLE IF NOT EXISTS account_buckets (
    bucket       TEXT NOT NULL,
    account      TEXT NOT NULL,
    blocks_count INTEGER NOT NULL DEFAULT 0,
    misses_count INTEGER NOT NULL DEFAULT 0
);

-- Missed production slots
CREATE TABLE IF NOT EXISTS missed_blocks (
    block_time  TEXT NOT NULL,
    block_num   INTEGER NOT NULL,
    producer    TEXT NOT NULL
);

-- Schedule tracker recovery state (singleton)
CREATE TABLE IF NOT EXISTS schedule_state (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    doc         TEXT NOT NULL,
    updated_at  REAL NOT NULL
);

-- Ingestion checkpoint (singleton)
CREATE TABLE IF NOT EXISTS service_meta (
    id                       INTEGER PRIMARY KEY CHECK (id = 1),
    last_processed_block_num INTEGER,
    last_processed_sequence  INTEGER,
    irreversible_block_num   INTEGER,
    updated_at               REAL NOT NULL
);

-- Diagnostic trail
CREATE TABLE IF NOT EXISTS logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    block_num   INTEGER NOT NULL,
    module      TEXT NOT NULL DEFAULT '',
    text        TEXT NOT NULL,
    created_at  REAL NOT NULL
);

-- Natural keys
CREATE UNIQUE INDEX IF NOT EXISTS idx_blocks_id ON blocks(id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_id ON transactions(id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_id_block ON accounts(id, block_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_account_paths_key ON account_paths(account, action, block_num);
CREATE UNIQUE INDEX IF NOT EXISTS idx_token_balances_key ON token_balances(account, symbol, block_num);
CREATE UNIQUE INDEX IF NOT EXISTS idx_stake_agents_key ON stake_agents(account, symbol, block_num);
CREATE UNIQUE INDEX IF NOT EXISTS idx_account_buckets_key ON account_buckets(bucket, account);
CREATE UNIQUE INDEX IF NOT EXISTS idx_missed_blocks_time ON missed_blocks(block_time);

-- Indexes for common queries and fork rollback
CREATE INDEX IF NOT EXISTS idx_blocks_num ON blocks(block_num);
CREATE INDEX IF NOT EXISTS idx_blocks_producer ON blocks(producer);
CREATE INDEX IF NOT EXISTS idx_transactions_num ON transactions(block_num, idx);
CREATE INDEX IF NOT EXISTS idx_transactions_block ON transactions(block_id);
CREATE INDEX IF NOT EXISTS idx_accounts_num ON accounts(block_num);
CREATE INDEX IF NOT EXISTS idx_account_paths_num ON account_paths(block_num);
CREATE INDEX IF NOT EXISTS idx_token_balances_num ON token_balances(block_num);
CREATE INDEX IF NOT EXISTS idx_stake_agents_num ON stake_agents(block_num);
DROP INDEX IF EXISTS idx_proposals_key;
CREATE UNIQUE INDEX IF NOT EXISTS uq_proposals_key ON proposals(proposer, name, block_num);
CREATE INDEX IF NOT EXISTS idx_proposals_num ON proposals(block_num);
CREATE INDEX IF NOT EXISTS idx_account_buckets_account ON account_buckets(account, bucket);
CREATE INDEX IF NOT EXISTS idx_missed_blocks_num ON missed_blocks(block_num);
CREATE INDEX IF NOT EXISTS idx_missed_blocks_producer ON missed_blocks(producer);
CREATE INDEX IF NOT EXISTS idx_logs_num ON logs(block_num);
"""
