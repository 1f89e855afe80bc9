"""time_manager — leave ledger, absence accounting and attendance KPIs."""
