import enum
from typing import Type

from sqlalchemy import Enum as SAEnum


def enum_column_type(enum_cls: Type[enum.Enum]) -> SAEnum:
    """Stores the enum *value* as text and loads it back as the member."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )
