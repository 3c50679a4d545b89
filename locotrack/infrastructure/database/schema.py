"""SQLite database schema for location records."""

LOCATIONS_SCHEMA = """
-- ============================================
-- locotrack Location Database Schema
-- Version: 1.0.0
-- ============================================

-- Accepted location fixes (append-only, except the synced flag)
CREATE TABLE IF NOT EXISTS locations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    timestampMs INTEGER NOT NULL,

    -- Reserved for remote sync
    synced INTEGER NOT NULL DEFAULT 0
);

-- Ascending range scans by capture time
CREATE INDEX IF NOT EXISTS idx_locations_timestamp ON locations(timestampMs);
"""
