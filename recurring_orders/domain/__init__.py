"""Pure domain layer for recurring orders. ZERO I/O."""
