# Checkout Gateway database package
from .db import DatabaseConnection, create_indexes

__all__ = ["DatabaseConnection", "create_indexes"]
