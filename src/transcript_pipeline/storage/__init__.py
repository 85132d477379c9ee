"""SQLite persistence: schema, migrations and engine policy."""
