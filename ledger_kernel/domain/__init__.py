"""Pure domain logic for the ledger kernel (no I/O)."""
