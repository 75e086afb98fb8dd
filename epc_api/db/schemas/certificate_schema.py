from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Numeric, Integer, Index

class Base(DeclarativeBase): pass

class Certificate(Base):
    __tablename__ = "certificates_stg"
    lmk_key: Mapped[str] = mapped_column(String(64), nullable=False, primary_key=True)
    postcode: Mapped[str] = mapped_column(String(10), nullable=False)
    current_energy_rating: Mapped[str | None] = mapped_column(String(1))
    main_fuel: Mapped[str | None] = mapped_column(String(100))
    property_type: Mapped[str | None] = mapped_column(String(50))
    total_floor_area: Mapped[float | None] = mapped_column(Numeric(8, 2))
    number_habitable_rooms: Mapped[float | None] = mapped_column(Numeric(4, 0))
    construction_age_band: Mapped[str | None] = mapped_column(String(50))
    current_energy_efficiency: Mapped[int | None] = mapped_column(Integer)
    local_authority: Mapped[str | None] = mapped_column(String(20))
    constituency: Mapped[str | None] = mapped_column(String(20))
    uprn: Mapped[str | None] = mapped_column(String(20))

    __table_args__ = (
        Index("ix_certificates_stg_postcode", "postcode"),
        Index("ix_certificates_stg_rating", "current_energy_rating"),
        Index("ix_certificates_stg_local_authority", "local_authority"),
    )


LEAD_COLUMNS = ["lmk_key", "postcode", "current_energy_rating", "main_fuel"]
CERTIFICATE_COLUMNS = LEAD_COLUMNS + [
    "property_type",
    "total_floor_area",
    "number_habitable_rooms",
    "construction_age_band",
    "current_energy_efficiency",
]
