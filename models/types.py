from enum import Enum as PyEnum
from typing import Type

from sqlalchemy import Enum, Numeric

# Currency amounts: fixed-point, two decimal places
Money = Numeric(12, 2, asdecimal=True)


def enum_column(enum_cls: Type[PyEnum]) -> Enum:
    """Store an enum by its value in a plain VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=30,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )
