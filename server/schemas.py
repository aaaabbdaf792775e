"""Request models for escrow operations (pydantic).

Every public service operation validates its payload with validate_request()
before touching a store.
"""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from protocol import SQLITE_INT_MAX, EscrowType

# Stored ids and ratio weights must fit a SQLite INTEGER
RowId = Annotated[int, Field(ge=0, le=SQLITE_INT_MAX)]
Weight = Annotated[int, Field(strict=True, ge=0, le=SQLITE_INT_MAX)]


class EscrowRatioRequest(BaseModel):
    buyer: Weight
    seller: Weight


class EscrowCreateRequest(BaseModel):
    payment_information_id: RowId
    type: EscrowType
    ratio: EscrowRatioRequest


class EscrowUpdateRequest(BaseModel):
    type: EscrowType
    ratio: EscrowRatioRequest
    payment_information_id: RowId | None = None  # informational, never rewritten


class _ActionRequest(BaseModel):
    """Action payloads arrive camelCased from the wire."""
    model_config = ConfigDict(populate_by_name=True)

    escrow_id: RowId = Field(alias="escrowId")
    item_hash: str = Field(alias="itemHash", min_length=1)
    memo: str = ""


class EscrowLockRequest(_ActionRequest):
    address_id: RowId = Field(alias="addressId")
    nonce: str = Field(min_length=1)


class EscrowRefundRequest(_ActionRequest):
    accepted: bool


class EscrowReleaseRequest(_ActionRequest):
    pass


def validate_request(model: type[BaseModel], data) -> tuple[BaseModel | None, list]:
    """Validate data against a request model.

    Returns (instance, []) on success, or (None, errors) on failure.
    An instance of the model itself is accepted as-is.
    """
    if isinstance(data, model):
        return data, []
    if not isinstance(data, dict):
        return None, [{"loc": (), "msg": f"expected an object, got {type(data).__name__}"}]
    try:
        return model.model_validate(data), []
    except ValidationError as e:
        return None, e.errors()
