"""
recurring_orders -- Recurring order scheduling and execution engine.

Turns a supplier's standing order template into periodic purchase orders:
calendar scheduling, template resolution against pricing and inventory,
approval gating, order placement, bounded retry with backoff and
notification dispatch.

Architecture:
    recurring_orders/ is a top-level package built on procurement_kernel/.
    Nothing in procurement_kernel/ imports from recurring_orders.

    domain/     pure types and functions (schedule, approval, retry backoff,
                notification intent building, upcoming-execution analysis)
    models/     SQLAlchemy ORM rows
    services/   repository, resolver, pipeline, retry manager, dispatcher,
                management service, execution coordinator, scheduler
    collaborators.py   Protocols for pricing, inventory, placement, transport
    orchestrator.py    dependency-injection container

Invariants:
    RO-1  Schedule calculation is pure and clock-injected
    RO-2  next_execution_date only moves after a completed attempt
    RO-3  retry_count <= max_retries; terminal executions are never mutated
    RO-4  Waiting for approval is not a failure and consumes no cycle
    RO-5  One execution in flight per recurring order (lease)
    RO-6  Notifications are idempotent per (subject, event)
    RO-7  Collaborator failures become issues, never exceptions to the caller
"""
