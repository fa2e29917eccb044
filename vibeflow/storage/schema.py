from __future__ import annotations

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS profiles (
  user_id INTEGER PRIMARY KEY,
  username TEXT,
  gemini_api_key TEXT,
  persona TEXT,
  xp INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  CHECK (gemini_api_key IS NULL OR length(gemini_api_key) <= 255)
);

CREATE TABLE IF NOT EXISTS quotas (
  user_id INTEGER PRIMARY KEY,
  request_count INTEGER NOT NULL DEFAULT 0,
  quota_limit INTEGER NOT NULL,
  last_reset_at TEXT NOT NULL,
  created_at TEXT NOT NULL,
  FOREIGN KEY(user_id) REFERENCES profiles(user_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS summaries (
  user_id INTEGER PRIMARY KEY,
  source TEXT NOT NULL,
  summary TEXT NOT NULL,
  created_at TEXT NOT NULL,
  FOREIGN KEY(user_id) REFERENCES profiles(user_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS drafts (
  user_id INTEGER NOT NULL,
  platform TEXT NOT NULL,
  content TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  PRIMARY KEY (user_id, platform),
  FOREIGN KEY(user_id) REFERENCES profiles(user_id) ON DELETE CASCADE
);
"""
