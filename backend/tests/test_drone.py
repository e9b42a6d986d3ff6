"""
Tests for the Drone facade.
"""

import numpy as np
import pytest

from app.config import DroneConfig, GimbalData, OnGroundAt
from app.models.flight import CameraModel
from app.services.drone import Drone, load_drone
from app.services.elevation import ConstantElevationModel, GridElevationModel
from app.services.legs import NO_FLIGHT_DATA


def processed_drone(raw, config, elevation_model=None) -> Drone:
    drone = Drone(config=config, elevation_model=elevation_model)
    drone.load_raw(raw)
    drone.calculate_settings()
    return drone


def hill_model() -> GridElevationModel:
    """Flat ground at 0m with a 30m hill between 15m and 35m east."""
    dem = np.zeros((10, 60))
    dem[:, 15:35] = 30.0
    return GridElevationModel(dem, dem.copy(), min_northing_m=-5.0, min_easting_m=0.0, cell_size_m=1.0)


class TestNoFlightData:
    """A video without a usable flight log still loads."""

    def test_video_without_log(self, tmp_path):
        video = tmp_path / "DJI_0001.MP4"
        video.write_bytes(b"")
        drone = Drone(config=DroneConfig(run_video_from_s=5.0, run_video_to_s=10.0))

        assert not drone.load_flight_log(video)
        drone.calculate_settings()

        assert drone.load_error is not None
        assert not drone.has_flight_sections
        assert not drone.has_flight_steps
        assert len(drone.legs) == 1
        assert drone.legs.legs[0].why_leg_ended == NO_FLIGHT_DATA
        assert drone.nearest_step_at_time_ms(1000) is None
        assert drone.run_steps() == []
        assert drone.name == "DJI_0001"

    def test_video_duration_sets_run_range(self, tmp_path):
        video = tmp_path / "DJI_0001.MP4"
        video.write_bytes(b"")
        drone = Drone(camera=CameraModel(camera_type="test", duration_ms=30_000))

        drone.load_flight_log(video)
        drone.calculate_settings()

        assert drone.config.run_from_ms == 0
        assert drone.config.run_to_ms == 30_000
        assert drone.duration_ms() == 30_000

    def test_config_change_without_data(self, tmp_path):
        drone = Drone()
        drone.load_flight_log(tmp_path / "missing.MP4")
        drone.calculate_settings()

        drone.config.set_run_from_to(1000, 2000)
        drone.config_has_changed()

        assert drone.legs.legs[0].max_sum_time_ms == 2000


class TestPipeline:
    """Tests for calculate_settings on synthetic flights."""

    def test_products(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=500), leg_config)

        assert drone.has_flight_sections
        assert len(drone.steps) == 500
        assert drone.has_flight_legs
        assert len(drone.legs) == 1
        assert drone.has_drone_altitude
        assert drone.has_drone_yaw
        assert not drone.has_drone_pitch
        assert not drone.use_flight_legs

    def test_default_run_range_is_whole_flight(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=500), leg_config)

        assert drone.config.run_from_ms == 0
        assert drone.config.run_to_ms == 499 * 250
        assert len(drone.run_steps()) == 500

    def test_set_run_range_by_steps(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=100), leg_config)

        drone.set_run_range_by_steps(10, 19)

        assert drone.config.run_from_ms == 2500
        assert drone.config.run_to_ms == 4750
        assert [step.step_id for step in drone.run_steps()] == list(range(10, 20))

    def test_load_flight_log_from_srt(self, srt_content, tmp_path):
        srt_file = tmp_path / "DJI_0001.SRT"
        srt_file.write_text(srt_content)

        drone = load_drone(srt_file, config=DroneConfig(on_ground_at=OnGroundAt.NEITHER))

        assert drone.load_error is None
        assert len(drone.sections) == 12
        assert drone.config.gimbal_data_avail == GimbalData.AUTO_YES
        assert drone.flight_overview()[0] == ("Date", "2023-01-15")

    def test_gimbal_data_promoted(self, make_raw, leg_config):
        raw = make_raw(n_rows=20)
        raw.gimbal_data = GimbalData.AUTO_YES

        drone = processed_drone(raw, leg_config)

        assert drone.config.gimbal_data_avail == GimbalData.AUTO_YES
        assert drone.config.max_leg_step_pitch_deg == 95.0

    def test_manual_gimbal_setting_kept(self, make_raw):
        raw = make_raw(n_rows=20)
        raw.gimbal_data = GimbalData.AUTO_YES
        config = DroneConfig(gimbal_data_avail=GimbalData.MANUAL_YES, on_ground_at=OnGroundAt.NEITHER)

        drone = processed_drone(raw, config)

        assert drone.config.gimbal_data_avail == GimbalData.MANUAL_YES

    def test_camera_down_scope(self, make_raw):
        config = DroneConfig(
            gimbal_data_avail=GimbalData.MANUAL_YES,
            on_ground_at=OnGroundAt.NEITHER,
            smooth_section_radius=0,
        )
        raw = make_raw(n_rows=20, pitch_deg=-90.0)
        raw.pitch[5] = -5.0

        drone = processed_drone(raw, config)

        assert not drone.is_step_in_run_scope(drone.steps.steps[5])
        assert drone.is_step_in_run_scope(drone.steps.steps[6])


class TestNearestStep:
    def test_nearest_step(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=100), leg_config)

        assert drone.nearest_step_at_time_ms(1010).step_id == 4
        assert drone.nearest_step_at_time_ms(1130).step_id == 5

    def test_snaps_to_leg_boundary(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=100), leg_config)
        last_ms = drone.legs.legs[0].max_sum_time_ms

        assert drone.nearest_step_at_time_ms(last_ms + 60).step_id == 99
        assert drone.nearest_step_at_time_ms(-50).step_id == 0

    def test_past_the_end(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=100), leg_config)

        assert drone.nearest_step_at_time_ms(10_000_000).step_id == 99


class TestConfigChange:
    """Tests for config_has_changed."""

    def test_new_radius_rederives_steps(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=40, yaw_jitter_deg=0.5), leg_config)
        assert drone.steps.steps[20].core.yaw_deg == pytest.approx(90.5)

        drone.config.smooth_section_radius = 2
        drone.config_has_changed()

        assert drone.steps.steps[20].core.yaw_deg == pytest.approx(90.0, abs=0.2)

    def test_on_ground_at_change(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=40, altitude_m=100.0), leg_config, ConstantElevationModel(40.0))
        assert drone.steps.steps[0].fixed_altitude_m == 100.0

        drone.config.on_ground_at = OnGroundAt.BOTH
        drone.config_has_changed()

        assert drone.steps.steps[0].fixed_altitude_m == pytest.approx(40.0)
        assert drone.steps.steps[0].core.altitude_m == 100.0

    def test_camera_angle_clamped(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=20), leg_config)

        drone.config.fixed_camera_down_deg = 5
        drone.config_has_changed()

        assert drone.config.fixed_camera_down_deg == 25


class TestOnGroundAtValid:
    def test_neither_always_valid(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=20, length_m=50.0), leg_config, hill_model())

        assert drone.on_ground_at_is_valid()

    def test_flat_ground_valid(self, make_raw):
        config = DroneConfig(on_ground_at=OnGroundAt.BOTH, smooth_section_radius=0)
        drone = processed_drone(make_raw(n_rows=20, altitude_m=100.0), config, ConstantElevationModel(40.0))

        assert drone.on_ground_at_is_valid()

    def test_hill_counter_indicates_both(self, make_raw):
        """Grounding both ends at 0m puts the drone inside the hill."""
        config = DroneConfig(on_ground_at=OnGroundAt.BOTH, smooth_section_radius=0)
        drone = processed_drone(make_raw(n_rows=20, length_m=50.0, altitude_m=100.0), config, hill_model())

        assert drone.steps.percent_altitude_less_than_dem() > 10
        assert not drone.on_ground_at_is_valid()

    def test_no_ground_data_valid(self, make_raw):
        config = DroneConfig(on_ground_at=OnGroundAt.BOTH, smooth_section_radius=0)
        drone = processed_drone(make_raw(n_rows=20), config)

        assert drone.on_ground_at_is_valid()


class TestSettings:
    def test_flight_overview(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=500), leg_config)

        overview = dict(drone.flight_overview())

        assert overview["Duration"] == "00:02:04.750"
        assert 395 <= int(overview["Easting M"]) <= 405
        assert overview["Google Maps"].startswith("https://www.google.com/maps?q=")

    def test_get_settings(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=20), leg_config)

        settings = dict(drone.get_settings())

        assert settings["On Ground At"] == "Neither"
        assert settings["Use Legs Active"] == "false"
        assert settings["OnGroundAt Valid"] == "true"

    def test_describe_flight_path(self, make_raw, leg_config):
        drone = processed_drone(make_raw(n_rows=500), leg_config)

        assert ", 1 legs" in drone.describe_flight_path()
