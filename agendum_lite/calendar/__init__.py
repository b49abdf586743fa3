"""ICS parsing, date/time helpers and parser diagnostics."""
