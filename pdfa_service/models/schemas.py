from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

from pdfa_service.core.config import get_settings
from pdfa_service.services.converter import decode_base64


class ConversionRequest(BaseModel):
    """Request body; the camelCase names are the ones existing clients send."""

    model_config = ConfigDict(populate_by_name=True)

    base64_pdf: StrictStr = Field(..., alias="base64Pdf", description="Base64-encoded source PDF.")

    @field_validator("base64_pdf")
    @classmethod
    def _check_base64_pdf(cls, value: str) -> str:
        if not value:
            raise ValueError("Base64 PDF string is required")
        max_bytes = get_settings().max_input_bytes
        limit_message = f"Input PDF size exceeds maximum allowed size ({max_bytes // 1024 // 1024} MB)"
        # base64 is ~4/3 of the payload; reject before decoding anything huge
        estimated = len(value) * 3 // 4
        if estimated > max_bytes:
            # line breaks do not count towards the payload
            estimated = len("".join(value.split())) * 3 // 4
        if estimated > max_bytes:
            raise ValueError(limit_message)
        decoded = decode_base64(value)
        if not decoded:
            raise ValueError("invalid base64 format")
        if len(decoded) > max_bytes:
            raise ValueError(limit_message)
        return value


class ConversionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: StrictBool
    base64_pdfa: StrictStr = Field("", alias="base64PdfA")
    error_message: StrictStr = Field("", alias="errorMessage")
