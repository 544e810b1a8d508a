"""Order reconciliation: state machine, enrichment, downstream dispatch, item drift."""
