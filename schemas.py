from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import CategoryKind, TransactionKind


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    current_value: Decimal = Field(
        default=Decimal("0.00"), max_digits=12, decimal_places=2
    )


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class CreditCardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    current_value: Decimal = Field(
        default=Decimal("0.00"), max_digits=12, decimal_places=2
    )
    limit_value: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    due_date: date
    closing_date: date
    paid: bool = False


class CreditCardUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    limit_value: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    due_date: Optional[date] = None
    closing_date: Optional[date] = None
    paid: Optional[bool] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: CategoryKind
    display_at_home: bool = False


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    kind: Optional[CategoryKind] = None
    display_at_home: Optional[bool] = None


class TransactionIn(BaseModel):
    kind: TransactionKind
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    occurred_at: Optional[datetime] = None
    settled: bool = False
    note: Optional[str] = Field(default=None, max_length=500)
    account_id: Optional[int] = Field(default=None, ge=1)
    credit_card_id: Optional[int] = Field(default=None, ge=1)
    category_id: Optional[int] = Field(default=None, ge=1)
    transfer_account_id: Optional[int] = Field(default=None, ge=1)
    transfer_credit_card_id: Optional[int] = Field(default=None, ge=1)


class TransactionPatch(BaseModel):
    """Partial update of a transaction.

    A field left out of the payload keeps its stored value; a reference
    field explicitly sent as ``null`` clears it. ``model_fields_set`` tells
    the two apart.
    """

    model_config = ConfigDict(extra="forbid")

    kind: Optional[TransactionKind] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    occurred_at: Optional[datetime] = None
    settled: Optional[bool] = None
    note: Optional[str] = Field(default=None, max_length=500)
    account_id: Optional[int] = Field(default=None, ge=1)
    credit_card_id: Optional[int] = Field(default=None, ge=1)
    category_id: Optional[int] = Field(default=None, ge=1)
    transfer_account_id: Optional[int] = Field(default=None, ge=1)
    transfer_credit_card_id: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "TransactionPatch":
        for name in ("kind", "amount", "occurred_at", "settled"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}
