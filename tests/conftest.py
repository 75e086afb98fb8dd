"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from epc_api.db.db_session import make_session_factory
from epc_api.db.schemas.certificate_schema import Base, Certificate
from epc_api.services.search import SearchService

GAS = "mains gas (not community)"


def _cert(lmk_key, postcode, rating, fuel, ptype, area, rooms=None, age=None, eff=None,
          la=None, con=None, uprn=None):
    return {
        "lmk_key": lmk_key,
        "postcode": postcode,
        "current_energy_rating": rating,
        "main_fuel": fuel,
        "property_type": ptype,
        "total_floor_area": area,
        "number_habitable_rooms": rooms,
        "construction_age_band": age,
        "current_energy_efficiency": eff,
        "local_authority": la,
        "constituency": con,
        "uprn": uprn,
    }


SEED_ROWS = [
    _cert("K001", "SW1A 1AA", "F", GAS, "Flat", 45, 2, "1900-1929", 30, "E09000033", "E14000639", "100001"),
    _cert("K002", "SW1A 2BB", "D", "oil", "House", 60, 4, "1950-1966", 60, "E09000033", "E14000639", "100002"),
    _cert("K003", "SW1B 2BB", "E", GAS, "House", 0, 3, "1930-1949", 45, "E09000033", "E14000640", "100003"),
    _cert("K004", "SW2 3CC", "C", "electricity", "Flat", 72, 3, "2003-2006", 72, "E09000022", "E14000641", "100004"),
    _cert("K005", "SE1 1AA", "G", "solid fuel", "Bungalow", None, None, "before 1900", 10, "E09000028", "E14000642", "100005"),
    _cert("K006", "SW1A 0AA", "A", "Mains Gas (community)", "House", 120, 6, "after 2012", 95, "E09000033", "E14000639", "100006"),
    _cert("K007", "M1 1AE", "D", GAS, "Maisonette", 88, 4, "1967-1975", 58, "E08000003", "E14000807", "100007"),
    _cert("K008", "M1 2AB", "E", "bottled lpg", "House", 100, 5, "1983-1990", 50, "E08000003", "E14000807", "100008"),
    _cert("K009", "SW1A 1AB", None, None, None, None, None, None, None, None, None, None),
    _cert("K010", "SW1A 9ZZ", "F", GAS, "Flat", 55, 2, "1900-1929", 35, "E09000033", "E14000639", "100010"),
    _cert("K011", "B1 1AA", "A", "electricity", "Flat", 40, 1, "2019", 92, "E08000025", "E14000564", "100011"),
    _cert("K012", "sw1a 5xx", "E", GAS, "Flat", 50, 2, "1950-1966", 40, "E09000033", "E14000639", "100012"),
]


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    with Session(eng) as s:
        s.add_all([Certificate(**row) for row in SEED_ROWS])
        s.commit()
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def service(session_factory) -> SearchService:
    return SearchService(session_factory)


@pytest.fixture
def app_settings():
    from epc_api.app import Settings

    return Settings(rate_limit_points=1000, rate_limit_window_sec=900)


@pytest.fixture
def client(engine, app_settings):
    from fastapi.testclient import TestClient

    from epc_api.app import create_app

    app = create_app(app_settings, engine=engine)
    with TestClient(app) as c:
        yield c
