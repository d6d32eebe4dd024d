"""
Idempotency key generation utilities.

Keys make repeated work safe: the order-creation service receives the same
placement key on every retry of an execution, and notification intents are
deduplicated on their key.
"""

from uuid import UUID


def generate_idempotency_key(
    producer: str,
    event_type: str,
    subject_id: UUID | str,
    *qualifiers: object,
) -> str:
    """
    Generate an idempotency key.

    Format: producer:event_type:subject_id[:qualifier...]

    Example:
        >>> generate_idempotency_key("recurring_orders", "order.place", uuid)
        "recurring_orders:order.place:550e8400-e29b-41d4-a716-446655440000"
    """
    parts = [producer, event_type, str(subject_id)]
    parts.extend(str(q) for q in qualifiers)
    return ":".join(parts)

