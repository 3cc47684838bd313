"""
BTC Staking - Staking Parameter Models

Pydantic models for the protocol-wide staking parameters. Fields accept both
snake_case names and the camelCase keys used by governance parameter feeds.
Instances are immutable and always satisfy the static invariants checked by
validate_staking_params.
"""

from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .validation import validate_staking_params


class SlashingParams(BaseModel):
    """Parameters of the slashing transactions."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    slashing_rate: float = Field(..., description="Fraction of the stake that is slashed")
    slashing_pk_script_hex: str = Field(..., description="Output script receiving slashed funds (hex)")
    min_slashing_tx_fee_sat: int = Field(..., description="Fee paid by a slashing transaction")

    @field_validator('slashing_pk_script_hex')
    @classmethod
    def normalize_script_hex(cls, v):
        """Lowercase the script and drop a 0x prefix."""
        if v.startswith('0x'):
            v = v[2:]
        return v.lower()

    @property
    def slashing_pk_script(self) -> bytes:
        return bytes.fromhex(self.slashing_pk_script_hex)


class StakingParams(BaseModel):
    """Protocol-wide staking parameters."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    covenant_no_coord_pks: Tuple[str, ...] = Field(..., description="Covenant committee x-only keys (hex)")
    covenant_quorum: int = Field(..., description="Covenant signatures required")
    unbonding_time: int = Field(..., description="Unbonding timelock in blocks")
    unbonding_fee_sat: int = Field(..., description="Fee of the unbonding transaction")
    min_staking_amount_sat: int
    max_staking_amount_sat: int
    min_staking_time_blocks: int
    max_staking_time_blocks: int
    slashing: Optional[SlashingParams] = Field(None, description="Slashing parameters")

    @field_validator('covenant_no_coord_pks')
    @classmethod
    def normalize_covenant_keys(cls, v):
        """Lowercase keys and drop 0x prefixes."""
        return tuple(k[2:].lower() if k.startswith('0x') else k.lower() for k in v)

    @model_validator(mode='after')
    def validate_invariants(self):
        """Validate the joint parameter invariants."""
        validate_staking_params(self)
        return self

    def to_json_dict(self) -> dict:
        """Serialize with the camelCase keys of parameter feeds."""
        return self.model_dump(by_alias=True, mode='json')
