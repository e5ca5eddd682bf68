"""SQLAlchemy models."""
from identity_broker.models.customer import Customer

__all__ = [
    "Customer",
]
