"""HTTP interface for starting, polling and triaging background jobs."""
