"""Typed outcome of a cart submission."""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from .models import Cart, CartUserError, CartWarning

ErrorKind = Literal["invalid_action", "transport", "backend"]


class Ok(BaseModel):
    """The mutation applied. Warnings describe parts that only partially applied."""

    ok: Literal[True] = True
    cart: Optional[Cart] = None
    warnings: list[CartWarning] = Field(default_factory=list)
    submission_id: Optional[str] = None


class Err(BaseModel):
    """The mutation did not apply."""

    ok: Literal[False] = False
    kind: ErrorKind
    detail: str
    errors: list[CartUserError] = Field(default_factory=list)
    submission_id: Optional[str] = None


MutationResult = Union[Ok, Err]
