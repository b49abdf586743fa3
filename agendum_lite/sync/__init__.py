"""Remote calendar fetching, background parsing, persistence and synchronization."""
