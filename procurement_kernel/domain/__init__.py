"""Pure domain primitives shared across subsystems."""
