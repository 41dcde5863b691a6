"""
Wire contracts: pydantic models for stage API and validator payloads.
"""
from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Secrets(BaseModel):
    """Per-stage API keys needed to check prices."""

    model_config = ConfigDict(populate_by_name=True)

    # "blockfrostApiKey" is the legacy wire name
    external_data_provider_api_key: str = Field(
        ...,
        validation_alias=AliasChoices("externalDataProviderApiKey", "blockfrostApiKey"),
        serialization_alias="externalDataProviderApiKey",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class FeedResponse(BaseModel):
    """GET /feed body; a missing tx means nothing is pending."""

    tx: Optional[str] = None


class SubscribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription: str
    is_primary: bool = Field(False, alias="isPrimary")
    schnorr_public_key: str = Field(..., alias="schnorrPublicKey")
    ecdsa_public_key: str = Field(..., alias="ecdsaPublicKey")


class ValidatorRequest(BaseModel):
    kind: str
    tx: str
    stage: str = "Mainnet"

    @field_validator("tx")
    @classmethod
    def tx_is_hex(cls, v: str) -> str:
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError("tx must be hex encoded") from None
        return v
