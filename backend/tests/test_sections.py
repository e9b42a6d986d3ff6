"""
Tests for the adapter chain and flight section assembly.
"""

import numpy as np
import pytest

from app.errors import InvariantViolation, NoFlightDataError, ParseError
from app.models.flight import FlightSection, id_to_letter, ms_to_rough_section_id
from app.services.parsers import ADAPTERS, applicable_adapters, parse_flight_log
from app.services.sections import build_sections, normalize_yaw_deg, valid_location_mask


class TestAdapterChain:
    """Tests for parse_flight_log."""

    def test_adapter_order(self):
        assert [a.name for a in ADAPTERS] == ["dji_srt", "dji_csv", "image_metadata"]

    def test_srt_preferred_over_csv(self, srt_content, csv_content, tmp_path):
        video = tmp_path / "DJI_0001.MP4"
        video.write_bytes(b"")
        (tmp_path / "DJI_0001.SRT").write_text(srt_content)
        (tmp_path / "DJI_0001.csv").write_text(csv_content)

        raw = parse_flight_log(video)

        assert raw.source == "dji_srt"

    def test_falls_back_when_srt_unusable(self, csv_content, tmp_path):
        video = tmp_path / "DJI_0001.MP4"
        video.write_bytes(b"")
        (tmp_path / "DJI_0001.SRT").write_text("garbage\n")
        (tmp_path / "DJI_0001.csv").write_text(csv_content)

        raw = parse_flight_log(video)

        assert raw.source == "dji_csv"

    def test_image_folder(self, image_folder):
        assert [a.name for a in applicable_adapters(image_folder)] == ["image_metadata"]
        assert parse_flight_log(image_folder).source == "image_metadata"

    def test_no_flight_data(self, tmp_path):
        video = tmp_path / "DJI_0001.MP4"
        video.write_bytes(b"")

        with pytest.raises(NoFlightDataError):
            parse_flight_log(video)

    def test_no_flight_data_is_a_parse_error(self, tmp_path):
        with pytest.raises(ParseError):
            parse_flight_log(tmp_path / "missing.MP4")


class TestBuildSections:
    """Tests for build_sections."""

    def test_origin_is_south_west_corner(self, make_raw):
        sections = build_sections(make_raw(n_rows=20, length_m=40.0))

        first = sections.sections[0].core
        assert first.location.northing_m == pytest.approx(0.0)
        assert first.location.easting_m == pytest.approx(0.0)
        assert sections.summary.max_location.easting_m == pytest.approx(40.0, rel=1e-6)

    def test_time_and_lineal(self, make_raw):
        sections = build_sections(make_raw(n_rows=20, length_m=38.0))

        first = sections.sections[0].core
        second = sections.sections[1].core
        assert first.time_ms == first.start_time_ms == 0
        assert second.time_ms == 250
        assert second.lineal_m == pytest.approx(2.0, rel=1e-6)
        assert sections.last_sum_lineal_m == pytest.approx(38.0, rel=1e-6)

    def test_delta_yaw(self, make_raw):
        sections = build_sections(make_raw(n_rows=5, yaw_deg=90.0, yaw_jitter_deg=0.5))

        assert sections.sections[0].core.delta_yaw_deg == 0.0
        assert sections.sections[1].core.delta_yaw_deg == pytest.approx(-1.0)
        assert sections.has_yaw_data()
        assert not sections.has_pitch_data()

    def test_invalid_locations_dropped(self, make_raw):
        raw = make_raw(n_rows=10)
        raw.latitude[3] = np.nan
        raw.latitude[4] = 0.0
        raw.longitude[4] = 0.0
        raw.latitude[5] = 95.0

        assert list(valid_location_mask(raw)).count(False) == 3
        sections = build_sections(raw)
        assert len(sections) == 7
        assert sorted(sections.sections) == [0, 1, 2, 3, 4, 5, 6]

    def test_bucketed_ids_kept(self, make_raw):
        raw = make_raw(n_rows=4)
        raw.section_ids = np.array([0, 1, 5, 6], dtype=np.int64)

        sections = build_sections(raw)

        assert sorted(sections.sections) == [0, 1, 5, 6]
        assert sections.min_tardis_id == 0
        assert sections.max_tardis_id == 6

    def test_no_valid_location(self, make_raw):
        raw = make_raw(n_rows=3)
        raw.latitude[:] = np.nan

        with pytest.raises(ParseError):
            build_sections(raw)

    def test_yaw_normalized(self):
        assert normalize_yaw_deg(190.0) == pytest.approx(-170.0)
        assert normalize_yaw_deg(180.0) == pytest.approx(-180.0)
        assert normalize_yaw_deg(-45.0) == pytest.approx(-45.0)

    def test_from_srt(self, srt_content, tmp_path):
        srt_file = tmp_path / "DJI_0001.SRT"
        srt_file.write_text(srt_content)

        sections = build_sections(parse_flight_log(srt_file))

        assert len(sections) == 12
        assert sections.input_is_video
        assert sections.describe_path().startswith("3")

    def test_country_location(self, make_raw):
        sections = build_sections(make_raw(n_rows=5), country_crs="EPSG:2193")

        assert sections.min_country_location.northing_m == pytest.approx(5180000, abs=20000)

    def test_settings_round_trip(self, make_raw):
        sections = build_sections(make_raw(n_rows=5))
        section = sections.sections[2]

        loaded = FlightSection.from_settings([value for _, value in section.get_settings()])

        assert loaded.section_id == 2
        assert loaded.global_location.latitude == pytest.approx(section.global_location.latitude)

    def test_assert_good_rejects_backwards_time(self, make_raw):
        sections = build_sections(make_raw(n_rows=5))
        sections.sections[3].core.start_time_ms = 0

        with pytest.raises(InvariantViolation):
            sections.assert_good()


class TestIds:
    def test_rough_section_id(self):
        assert ms_to_rough_section_id(0) == 0
        assert ms_to_rough_section_id(249) == 0
        assert ms_to_rough_section_id(250) == 1

    @pytest.mark.parametrize("leg_id,letter", [(0, ""), (1, "A"), (26, "Z"), (27, "AA"), (28, "AB")])
    def test_id_to_letter(self, leg_id, letter):
        assert id_to_letter(leg_id) == letter
