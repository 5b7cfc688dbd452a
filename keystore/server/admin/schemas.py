"""Pydantic request and response schemas for the admin API.

Every response uses one of two envelopes so clients parse errors and
successes identically::

    {"status": 200, "data": {...}}
    {"status": 400, "message": "..."}
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from keystore.errors import ValidationError

# ── Envelopes ────────────────────────────────────────────────────────────


class ErrorResponse(BaseModel):
    status: int
    message: str


class DataResponse(BaseModel):
    status: int = 200
    data: Dict[str, Any] = Field(default_factory=dict)


# ── POST /admin/keys ─────────────────────────────────────────────────────


class SetKeyRequest(BaseModel):
    """Body of ``POST /admin/keys``.  Both fields are stripped and must be non-empty."""

    model_config = ConfigDict(extra="ignore", hide_input_in_errors=True)

    provider: StrictStr
    secret: StrictStr = Field(repr=False)

    @field_validator("provider", "secret")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value


class SetKeyData(BaseModel):
    provider: str
    updated_at: str


# ── GET /admin/keys, GET /admin/providers ────────────────────────────────


class ProvidersData(BaseModel):
    providers: List[str] = Field(default_factory=list)


# ── DELETE /admin/keys/{provider} ────────────────────────────────────────


class DeleteKeyData(BaseModel):
    deleted: bool


# ── POST /admin/test ─────────────────────────────────────────────────────


class ProbeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", hide_input_in_errors=True)

    provider: StrictStr


class ProbeDetails(BaseModel):
    """Outcome of a provider connectivity probe.

    ``status`` is one of ``ok``, ``http-error``, ``missing-key`` or
    ``network-error``.  Field names match what the admin UI reads.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: str
    provider_latency_ms: Optional[int] = Field(default=None, alias="providerLatencyMs")
    http_status: Optional[int] = Field(default=None, alias="httpStatus")
    message: Optional[str] = None


class ProbeResult(BaseModel):
    ok: bool
    details: ProbeDetails

    def to_payload(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "details": self.details.model_dump(by_alias=True, exclude_none=True),
        }


# ── Parsing ──────────────────────────────────────────────────────────────


def parse_body(model: type, body: Any) -> Any:
    """Validate *body* against *model*, raising :class:`ValidationError`.

    The message names the first offending field only; submitted values
    (which may be secrets) are never included.
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        errors = exc.errors(include_input=False, include_url=False)
        field = str(errors[0]["loc"][0]) if errors and errors[0].get("loc") else "body"
        raise ValidationError(f"{field} must be a non-empty string") from None
