from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

EnergyRating = Literal["A", "B", "C", "D", "E", "F", "G"]
FuelType = Literal["mains gas (not community)", "electricity", "oil", "LPG", "solid fuel"]
FloorAreaRange = Literal["unknown", "1-55m²", "55-70m²", "70-85m²", "85-110m²", "110m+"]

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
DEFAULT_EXPORT_LIMIT = 100
MAX_EXPORT_LIMIT = 10000


class SearchFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    postcode: Optional[str] = Field(default=None, max_length=10)
    rating: Optional[EnergyRating] = None
    fuel: Optional[FuelType] = None
    property_type: Optional[List[str]] = Field(default=None, alias="propertyType")
    local_authority: Optional[str] = Field(default=None, alias="localAuthority")
    constituency: Optional[str] = None
    floor_area: Optional[FloorAreaRange] = Field(default=None, alias="floorArea")
    uprn: Optional[str] = Field(default=None, max_length=20)
    cursor: Optional[str] = None

    @field_validator("uprn", mode="before")
    @classmethod
    def _uprn_as_text(cls, v: Union[str, int, None]):
        # UPRNs arrive as numbers from some clients
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class SearchLeadsRequest(SearchFilter):
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, alias="pageSize")


class CertificateSearchRequest(SearchLeadsRequest):
    postcode: str = Field(..., min_length=1, max_length=10)

    @field_validator("postcode")
    @classmethod
    def _postcode_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Postcode is required")
        return v


class ExportLeadsRequest(SearchFilter):
    limit: int = Field(default=DEFAULT_EXPORT_LIMIT, ge=1)

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, v: int) -> int:
        return min(v, MAX_EXPORT_LIMIT)


class LeadScoreRequest(BaseModel):
    lmk_key: str = Field(..., min_length=1)
