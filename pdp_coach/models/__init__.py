"""ORM models and shared enumerations."""
