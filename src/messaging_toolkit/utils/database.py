import uuid


def generate_uid() -> str:
    return str(uuid.uuid4())


def generate_temp_id() -> str:
    """Identifier for a locally-synthesized record that the store has not confirmed yet."""
    return f"pending-{uuid.uuid4().hex}"
