"""
Module: mentorship_kernel.db.types
Responsibility: Annotated column types shared by the models, so every fee
    column and currency code is declared with the same precision.
Architecture position: Kernel > DB.  MUST NOT import from models/ or services/.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import Numeric, String, Text
from sqlalchemy.orm import mapped_column

# Fee amount in major units, two decimal places
Money = Annotated[Decimal, mapped_column(Numeric(18, 2))]

# ISO 4217 currency code
Currency = Annotated[str, mapped_column(String(3))]

# Titles, references and reasons
MediumText = Annotated[str, mapped_column(String(255))]

# Free-form descriptions and notes
LongText = Annotated[str, mapped_column(Text)]
