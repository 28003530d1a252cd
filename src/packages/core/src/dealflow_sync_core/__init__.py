"""Background reconciliation subsystem: CRM sync, URL health and enrichment jobs."""
