from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List

class LeadRecord(BaseModel):
    lmk_key: str
    postcode: str
    current_energy_rating: Optional[str] = None
    main_fuel: Optional[str] = None

class CertificateRecord(LeadRecord):
    property_type: Optional[str] = None
    total_floor_area: Optional[float] = None
    number_habitable_rooms: Optional[float] = None
    construction_age_band: Optional[str] = None
    current_energy_efficiency: Optional[int] = None

class SearchLeadsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    results: List[LeadRecord]
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")

class CertificatesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    certificates: List[CertificateRecord]
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")

class MarketStat(BaseModel):
    postcode_prefix: Optional[str] = None
    current_energy_rating: Optional[str] = None
    count: int

class PropertyScoreResponse(BaseModel):
    lmk_key: str
    score: int
    current_energy_rating: Optional[str] = None
    main_fuel: Optional[str] = None

class FilterOptionsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    property_types: List[str] = Field(alias="propertyTypes")
    local_authorities: List[str] = Field(alias="localAuthorities")
    constituencies: List[str]
    floor_area_ranges: List[str] = Field(alias="floorAreaRanges")

class HealthResponse(BaseModel):
    status: str
    uptime: float
