"""SQLite storage for jobs and the step ledger."""
