from pathlib import Path
import json
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from unittest.mock import patch
import pytest
import requests

from station_utils import (
    InvalidStationRow,
    ResourceFetchFailure,
    fetch_resource,
    load_boundaries,
    load_stations,
    parse_boundaries,
    parse_stations,
)

CSV = "ID,lat,lon,address\nA1,10,20,Somewhere\nA2,-5,33,Elsewhere\n"

GEOJSON = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "properties": {},
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]],
            },
        },
        {
            "type": "Feature",
            "properties": {"name": "B"},
            "geometry": {
                "type": "MultiPolygon",
                "coordinates": [[[[3, 3], [4, 3], [4, 4], [3, 3]]]],
            },
        },
    ],
}


def test_parse_stations_coerces_numbers():
    df = parse_stations(CSV)
    assert list(df.columns) == ["id", "lat", "lon"]
    assert df["id"].tolist() == ["A1", "A2"]
    assert df["lat"].tolist() == [10.0, -5.0]
    assert df["lon"].tolist() == [20.0, 33.0]


def test_parse_stations_custom_columns():
    text = "name,latitude,longitude\nX,\"1.5\",2\n"
    df = parse_stations(text, id_column="name", lat_column="latitude", lon_column="longitude")
    assert df.iloc[0].tolist() == ["X", 1.5, 2.0]


def test_parse_stations_skips_invalid_rows():
    text = "ID,lat,lon\nA1,10,20\nA2,,33\nA3,north,1\n"
    with patch("station_utils.console") as console:
        df = parse_stations(text)
    assert df["id"].tolist() == ["A1"]
    assert "Skipping 2 station row(s)" in console.log.call_args[0][0]


def test_parse_stations_raise_on_invalid():
    text = "ID,lat,lon\nA1,10,20\nA2,,33\n"
    with pytest.raises(InvalidStationRow):
        parse_stations(text, on_invalid_row="raise")


def test_parse_stations_missing_column():
    with pytest.raises(ValueError):
        parse_stations("ID,lat\nA1,10\n")


def test_fetch_resource_local_file(tmp_path: Path):
    p = tmp_path / "stations.csv"
    p.write_text(CSV)
    assert fetch_resource(p, "station CSV") == CSV


def test_fetch_resource_missing_file(tmp_path: Path):
    with pytest.raises(ResourceFetchFailure) as info:
        fetch_resource(tmp_path / "nope.csv", "station CSV")
    assert info.value.resource == "station CSV"


def test_fetch_resource_http():
    with patch("station_utils.requests.get") as get:
        get.return_value.text = CSV
        get.return_value.raise_for_status.return_value = None
        assert fetch_resource("https://example.org/s.csv", "station CSV", timeout=5) == CSV
        args, kwargs = get.call_args
        assert args[0] == "https://example.org/s.csv"
        assert kwargs["timeout"] == 5


def test_fetch_resource_http_error():
    with patch("station_utils.requests.get") as get:
        get.return_value.raise_for_status.side_effect = requests.HTTPError("404")
        with pytest.raises(ResourceFetchFailure):
            fetch_resource("https://example.org/s.csv", "station CSV")


def test_load_stations_unreachable_logs_and_returns_empty():
    with patch("station_utils.requests.get") as get, patch("station_utils.error_console") as err:
        get.side_effect = requests.ConnectionError("unreachable")
        df = load_stations("http://example.invalid/stations.csv")
    assert df.empty
    assert "Error fetching the CSV file" in err.log.call_args[0][0]


def test_load_stations_local(tmp_path: Path):
    p = tmp_path / "stations.csv"
    p.write_text(CSV)
    df = load_stations(p)
    assert len(df) == 2


def test_load_boundaries(tmp_path: Path):
    p = tmp_path / "countries.geojson"
    p.write_text(json.dumps(GEOJSON))
    gdf = load_boundaries(p)
    assert gdf is not None
    assert len(gdf) == 2
    assert gdf.crs.to_epsg() == 4326


def test_load_boundaries_bad_json(tmp_path: Path):
    p = tmp_path / "countries.geojson"
    p.write_text("{not json")
    with patch("station_utils.error_console") as err:
        assert load_boundaries(p) is None
    assert "Error loading GeoJSON" in err.log.call_args[0][0]


def test_load_boundaries_missing(tmp_path: Path):
    with patch("station_utils.error_console") as err:
        assert load_boundaries(tmp_path / "missing.geojson") is None
    assert "Error loading GeoJSON" in err.log.call_args[0][0]


def test_parse_stations_keeps_ids_as_text():
    with patch("station_utils.console"):
        df = parse_stations("ID,lat,lon\n1,10,20\n,3,4\n")
    assert df["id"].tolist() == ["1"]
    assert df["lat"].tolist() == [10.0]


def test_parse_stations_leading_zero_ids():
    df = parse_stations("ID,lat,lon\n007,1,2\n12.50,3,4\n")
    assert df["id"].tolist() == ["007", "12.50"]


def test_parse_stations_missing_id_raises_when_asked():
    with pytest.raises(InvalidStationRow):
        parse_stations("ID,lat,lon\n1,10,20\n,3,4\n", on_invalid_row="raise")


def test_parse_boundaries_bare_geometry():
    geom = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]}
    gdf = parse_boundaries(json.dumps(geom))
    assert len(gdf) == 1
    assert gdf.geometry.iloc[0].geom_type == "Polygon"


def test_parse_boundaries_geometry_collection():
    collection = {
        "type": "GeometryCollection",
        "geometries": [
            {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]},
            {"type": "Polygon", "coordinates": [[[2, 2], [3, 2], [3, 3], [2, 2]]]},
        ],
    }
    gdf = parse_boundaries(json.dumps(collection))
    assert len(gdf) == 1
    assert gdf.geometry.iloc[0].geom_type == "GeometryCollection"
