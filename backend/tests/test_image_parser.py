"""
Tests for the image metadata batch parser.
"""

import json

import pytest

from app.config import GimbalData
from app.errors import ParseError
from app.services.image_parser import (
    ImageMetadata,
    ImageMetadataAdapter,
    ImageMetadataParser,
    is_thermal_image,
    parse_dms_coordinate,
    parse_exif_text,
)


class TestHelpers:
    @pytest.mark.parametrize("name,expected", [
        ("DJI_20250206215415_0240_T.JPG", True),
        ("dji_20250206215415_0240_t.jpg", True),
        ("DJI_20250206215415_0240_W.JPG", False),
        ("DJI_20250206215415_0240_T.MP4", False),
    ])
    def test_is_thermal_image(self, name, expected):
        assert is_thermal_image(name) == expected

    def test_dms_south(self):
        assert parse_dms_coordinate("43 deg 30' 36.00\" S") == pytest.approx(-43.51)

    def test_dms_east(self):
        assert parse_dms_coordinate("175 deg 36' 20.81\" E") == pytest.approx(175.6057806, abs=1e-6)

    def test_dms_rejects_decimal(self):
        with pytest.raises(ValueError):
            parse_dms_coordinate("-43.5")

    def test_parse_exif_text_keeps_first_value(self):
        values = parse_exif_text("Create Date : 2025:02:06 21:54:15\nCreate Date : 1999:01:01 00:00:00\nOther : x")

        assert values == {"Create Date": "2025:02:06 21:54:15"}


class TestImageMetadata:
    def test_lrf_target_preferred_over_gps(self):
        item = ImageMetadata.from_values("a_T.JPG", {
            "Create Date": "2025:02:06 21:54:15",
            "LRF Target Lat": "-43.6",
            "LRF Target Lon": "172.6",
            "GPS Latitude": "43 deg 30' 0.00\" S",
            "GPS Longitude": "172 deg 30' 0.00\" E",
        })

        assert item.latitude == -43.6
        assert item.longitude == 172.6

    def test_zero_lrf_target_ignored(self):
        item = ImageMetadata.from_values("a_T.JPG", {
            "Create Date": "2025:02:06 21:54:15",
            "LRF Target Lat": "0",
            "LRF Target Lon": "0",
            "GPS Latitude": "43 deg 30' 0.00\" S",
            "GPS Longitude": "172 deg 30' 0.00\" E",
        })

        assert item.latitude == pytest.approx(-43.5)

    def test_bad_create_date(self):
        assert ImageMetadata.from_values("a_T.JPG", {"Create Date": "yesterday"}) is None

    def test_bad_raw_heat_keeps_image(self):
        item = ImageMetadata.from_values("a_T.JPG", {
            "Create Date": "2025:02:06 21:54:15",
            "Min Raw Heat": "cold",
        })

        assert item is not None
        assert item.min_raw_heat is None


class TestImageMetadataParser:
    """Tests for ImageMetadataParser."""

    def test_parse_folder_sorted_by_time(self, image_folder):
        raw = ImageMetadataParser().parse_folder(image_folder)

        assert len(raw) == 3
        assert raw.image_file_names[0] == "DJI_20250206215415_0001_T.JPG"
        assert list(raw.time_ms) == [0, 1000, 2000]
        assert not raw.input_is_video

    def test_values(self, image_folder):
        raw = ImageMetadataParser().parse_folder(image_folder)

        assert raw.latitude[0] == pytest.approx(-43.5)
        assert raw.altitude[0] == 120.5
        assert raw.pitch[0] == -90.0
        assert raw.yaw[0] == 44.0
        assert raw.min_raw_heat[0] == 21000
        assert raw.gimbal_data == GimbalData.AUTO_YES

    def test_camera_from_first_image(self, image_folder):
        raw = ImageMetadataParser().parse_folder(image_folder)

        assert raw.camera.image_width == 640
        assert raw.camera.image_height == 512
        assert raw.camera.hfov_deg == 61.0
        assert raw.camera.duration_ms == 2000

    def test_metadata_json(self, tmp_path):
        folder = tmp_path / "json_images"
        folder.mkdir()
        entries = [
            {
                "SourceFile": "./DJI_20250206215415_0001_T.JPG",
                "CreateDate": "2025:02:06 21:54:15",
                "GPSLatitude": -43.5,
                "GPSLongitude": 172.5,
                "AbsoluteAltitude": "+100.0",
                "FlightYawDegree": 12.5,
            },
            {
                "SourceFile": "./DJI_20250206215420_0002_T.JPG",
                "CreateDate": "2025:02:06 21:54:20",
                "GPSLatitude": -43.4999,
                "GPSLongitude": 172.5,
            },
        ]
        (folder / "metadata.json").write_text(json.dumps(entries))

        raw = ImageMetadataParser().parse_folder(folder)

        assert list(raw.time_ms) == [0, 5000]
        assert raw.yaw[0] == 12.5
        assert raw.altitude[0] == 100.0

    def test_sidecar_text_files(self, tmp_path):
        folder = tmp_path / "sidecars"
        folder.mkdir()
        (folder / "DJI_20250206215415_0001_T.JPG").write_bytes(b"")
        (folder / "DJI_20250206215415_0001_T.txt").write_text(
            "Create Date : 2025:02:06 21:54:15\nGPS Latitude : 43 deg 30' 0.00\" S\n"
            "GPS Longitude : 172 deg 30' 0.00\" E\n"
        )

        raw = ImageMetadataParser().parse_folder(folder)

        assert len(raw) == 1

    def test_empty_folder(self, tmp_path):
        with pytest.raises(ParseError):
            ImageMetadataParser().parse_folder(tmp_path)

    def test_adapter_only_parses_folders(self, image_folder):
        adapter = ImageMetadataAdapter()

        assert adapter.can_parse(image_folder)
        assert not adapter.can_parse(image_folder / "metadata.txt")
