# quotedoc/models/schemas.py
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from quotedoc.services.serializer import DOCX_MIME

# ---------- Input record ----------
#
# The record is deliberately loose: callers send whatever keys their template
# uses (`{{Company Name}}`, `company`, `users_cost` ...) and the resolver folds
# the spellings together. Only the two repeated-block collections are typed.
#

class ExhibitRow(BaseModel):
    # One exhibit line; repeated once per element in an exhibits table row.
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    exhibit_type: Optional[str] = Field(None, alias="exhibitType")
    exhibit_desc: Optional[str] = Field(None, alias="exhibitDesc")
    exhibit_plan: Optional[str] = Field(None, alias="exhibitPlan")
    exhibit_price: Optional[str] = Field(None, alias="exhibitPrice")


class ServerRow(BaseModel):
    # One priced server / combination line. Extra columns pass straight through.
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    description: Optional[str] = None
    cost: Optional[str] = None


class TemplateDataRecord(BaseModel):
    """
    Data for one render. Any scalar key is accepted as-is (extra="allow");
    `exhibits` and `servers` expand repeated blocks.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    exhibits: List[ExhibitRow] = Field(default_factory=list)
    servers: List[ServerRow] = Field(default_factory=list)

    def to_mapping(self) -> Dict[str, Any]:
        """Plain dict with the original (alias) spellings, ready for the resolver."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------- Results ----------

class RenderResult(BaseModel):
    # Returned once per render call. `processed_docx` never goes into JSON;
    # the HTTP layer streams it as the response body instead.
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    success: bool
    processed_docx: Optional[bytes] = Field(None, alias="processedDocx", exclude=True)
    error: Optional[str] = None

    # milliseconds
    processing_time: float = Field(0.0, alias="processingTime")
    tokens_replaced: int = Field(0, alias="tokensReplaced")
    original_size: int = Field(0, alias="originalSize")
    final_size: int = Field(0, alias="finalSize")

    fallback_used: bool = Field(False, alias="fallbackUsed")
    fallback_reason: Optional[str] = Field(None, alias="fallbackReason")
    content_type: str = Field(DOCX_MIME, alias="contentType")


class TokenExtractionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int
    tokens: List[str]
