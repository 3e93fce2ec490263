from .migrations import apply_migrations, connect_db
from .repository import SalestrackRepository, from_db_time, to_db_time

__all__ = ["connect_db", "apply_migrations", "SalestrackRepository", "to_db_time", "from_db_time"]
