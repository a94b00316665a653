"""Custom SQLAlchemy column types for cytogate."""

import json

from typing import Any

from sqlalchemy import Text, TypeDecorator


class JSONMapping(TypeDecorator[dict[str, Any]]):
    """
    JSON column holding a mapping (metadata, aggregator values, gate params).

    NaN and infinities are stored as JSON ``NaN``/``Infinity`` literals so
    undefined statistics survive a round trip. A NULL column reads as ``{}``.

    Example:
        class MyModel(Base):
            values = mapped_column(JSONMapping, default=dict)
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        """
        Serialize a mapping before storing.

        Raises:
            ValueError: If the value cannot be serialized to JSON
        """
        if value is None:
            return None

        try:
            return json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"Cannot serialize value to JSON: {e}. Value type: {type(value).__name__}"
            ) from e

    def process_result_value(self, value: str | None, dialect: Any) -> Any:
        """
        Deserialize a stored mapping, returning {} for NULL.

        Raises:
            ValueError: If the stored value is not valid JSON
        """
        if value is None:
            return {}

        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Stored value is not valid JSON: {e}. Value: {value[:100]}..."
            ) from e
