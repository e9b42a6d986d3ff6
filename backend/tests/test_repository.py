"""
Tests for the flight repository.
"""

import pytest

from app.config import OnGroundAt
from app.services.elevation import ConstantElevationModel
from app.services.repository import FlightRepository, get_repository, init_repository, is_image_folder


@pytest.fixture
def data_folder(srt_content, csv_content, image_folder, tmp_path):
    """Flights: a video with its SRT, a stand-alone CSV log and a thermal image folder."""
    (tmp_path / "DJI_0001.MP4").write_bytes(b"")
    (tmp_path / "DJI_0001.SRT").write_text(srt_content)
    (tmp_path / "DJI_0002.csv").write_text(csv_content)
    (tmp_path / "notes.txt").write_text("not a flight")
    (tmp_path / "empty").mkdir()
    return tmp_path


class TestScanFolder:
    """Tests for FlightRepository.scan_folder."""

    def test_scan(self, data_folder):
        repo = FlightRepository(data_folder)

        assert repo.flight_count == 3
        assert repo.data_folder == data_folder

    def test_log_beside_video_not_a_separate_flight(self, data_folder):
        repo = FlightRepository(data_folder)

        sources = sorted(summary.source_file for summary in repo.list_flights())

        assert not any(source.endswith("DJI_0001.SRT") for source in sources)
        assert any(source.endswith("DJI_0001.MP4") for source in sources)

    def test_missing_folder(self, tmp_path):
        repo = FlightRepository()

        assert repo.scan_folder(tmp_path / "missing") == 0
        assert repo.flight_count == 0

    def test_image_folder_detection(self, image_folder, tmp_path):
        assert is_image_folder(image_folder)
        assert not is_image_folder(tmp_path / "missing")
        assert not is_image_folder(image_folder / "metadata.txt")

    def test_set_data_folder_replaces_index(self, data_folder, tmp_path_factory, csv_content):
        repo = FlightRepository(data_folder)
        other = tmp_path_factory.mktemp("other")
        (other / "DJI_0009.csv").write_text(csv_content)

        assert repo.set_data_folder(other) == 1
        assert repo.flight_count == 1


class TestFlights:
    """Tests for flight loading and caching."""

    def test_list_flights(self, data_folder):
        repo = FlightRepository(data_folder)

        summaries = repo.list_flights()

        assert len(summaries) == 3
        assert all(summary.has_flight_data for summary in summaries)
        assert sorted(summary.input_is_video for summary in summaries) == [False, True, True]

    def test_list_sorted_newest_first(self, data_folder):
        repo = FlightRepository(data_folder)

        dates = [summary.recorded_at or "" for summary in repo.list_flights()]

        assert dates == sorted(dates, reverse=True)

    def test_get_drone_is_cached(self, data_folder):
        repo = FlightRepository(data_folder)
        flight_id = repo.list_flights()[0].id

        assert repo.get_drone(flight_id) is repo.get_drone(flight_id)

    def test_get_unknown_drone(self, data_folder):
        repo = FlightRepository(data_folder)

        assert repo.get_drone("nonexistent") is None
        assert repo.update_config("nonexistent", {}) is None

    def test_clear_cache_reloads(self, data_folder):
        repo = FlightRepository(data_folder)
        flight_id = repo.list_flights()[0].id
        drone = repo.get_drone(flight_id)

        repo.clear_cache()

        assert repo.get_drone(flight_id) is not drone

    def test_update_config(self, data_folder):
        repo = FlightRepository(data_folder, ConstantElevationModel(40.0))
        flight_id = next(s.id for s in repo.list_flights() if s.source_file.endswith("DJI_0002.csv"))

        drone = repo.update_config(flight_id, {"on_ground_at": OnGroundAt.BOTH, "smooth_section_radius": 0})

        assert drone.config.on_ground_at == OnGroundAt.BOTH
        assert drone.steps.on_ground_at_fix_start_m == pytest.approx(-80.0)
        assert drone.steps.steps[drone.steps.min_step_id].fixed_altitude_m == pytest.approx(40.0)

    def test_ids_are_stable(self, data_folder):
        first = {s.source_file: s.id for s in FlightRepository(data_folder).list_flights()}
        second = {s.source_file: s.id for s in FlightRepository(data_folder).list_flights()}

        assert first == second


class TestGlobalRepository:
    def test_init_repository(self, data_folder):
        repo = init_repository(data_folder)

        assert get_repository() is repo
        assert repo.flight_count == 3
