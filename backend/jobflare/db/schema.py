import sqlite3

BASE_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
  id TEXT PRIMARY KEY,
  source TEXT NOT NULL,
  position INTEGER NOT NULL,
  payload_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_source ON jobs(source);

CREATE TABLE IF NOT EXISTS boards (
  id TEXT PRIMARY KEY,
  url TEXT NOT NULL UNIQUE,
  position INTEGER NOT NULL,
  payload_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS job_flags (
  job_id TEXT NOT NULL,
  flag TEXT NOT NULL CHECK(flag IN ('starred','applied')),
  created_at TEXT NOT NULL,
  PRIMARY KEY(job_id, flag)
);

CREATE TABLE IF NOT EXISTS seen_ids (
  job_id TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS settings (
  user_id TEXT PRIMARY KEY,
  settings_json TEXT NOT NULL
);
"""


def init_db(con: sqlite3.Connection) -> None:
    con.executescript(BASE_SCHEMA)
    con.commit()
