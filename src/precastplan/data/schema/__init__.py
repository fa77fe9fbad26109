from __future__ import annotations

from precastplan.data.schema.catalog_schema import ensure_schema as ensure_catalog_schema
from precastplan.data.schema.schedule_schema import ensure_schema as ensure_schedule_schema

__all__ = ["ensure_catalog_schema", "ensure_schedule_schema"]
