"""
Tests for the OnGroundAt altitude correction.
"""

import numpy as np
import pytest

from app.config import DroneConfig, GimbalData, OnGroundAt
from app.services.altitude import (
    altitude_less_dem_dsm,
    apply_on_ground_at,
    calculate_on_ground_at_fix,
    correct_altitude,
)
from app.services.elevation import ConstantElevationModel
from app.services.sections import build_sections
from app.services.steps import derive_steps, recalculate_after_config_change


def config_for(on_ground_at: OnGroundAt) -> DroneConfig:
    return DroneConfig(
        gimbal_data_avail=GimbalData.MANUAL_NO,
        on_ground_at=on_ground_at,
        smooth_section_radius=0,
    )


@pytest.fixture
def climbing_flight(make_raw):
    """Reported altitude 100m at the start, 110m at the end."""
    return build_sections(make_raw(n_rows=11, length_m=100.0, altitude_m=np.linspace(100.0, 110.0, 11)))


class TestOnGroundAtFix:
    """Tests for each OnGroundAt mode."""

    def test_both_flat_ground(self, make_raw):
        """Reported 100m at both ends over 40m ground gives a uniform -60m fix."""
        sections = build_sections(make_raw(n_rows=20, altitude_m=100.0))
        config = config_for(OnGroundAt.BOTH)

        steps = derive_steps(sections, ConstantElevationModel(40.0), config, None)

        assert steps.on_ground_at_fix_start_m == -60.0
        assert steps.on_ground_at_fix_end_m == -60.0
        for step in steps.steps.values():
            assert step.fix_alt_m == pytest.approx(-60.0)
        assert steps.steps[0].fixed_altitude_m == 40.0
        assert steps.steps[19].fixed_altitude_m == 40.0

    def test_both_blends_linearly(self, climbing_flight):
        steps = derive_steps(climbing_flight, ConstantElevationModel(40.0), config_for(OnGroundAt.BOTH), None)

        assert steps.on_ground_at_fix_start_m == pytest.approx(-60.0)
        assert steps.on_ground_at_fix_end_m == pytest.approx(-70.0)
        assert steps.steps[5].fix_alt_m == pytest.approx(-65.0)
        for step in steps.steps.values():
            assert step.fixed_altitude_m == pytest.approx(40.0)

    def test_start(self, climbing_flight):
        steps = derive_steps(climbing_flight, ConstantElevationModel(40.0), config_for(OnGroundAt.START), None)

        assert steps.on_ground_at_fix_start_m == pytest.approx(-60.0)
        assert steps.on_ground_at_fix_end_m == pytest.approx(-60.0)
        assert steps.steps[10].fixed_altitude_m == pytest.approx(50.0)

    def test_end(self, climbing_flight):
        steps = derive_steps(climbing_flight, ConstantElevationModel(40.0), config_for(OnGroundAt.END), None)

        assert steps.on_ground_at_fix_start_m == pytest.approx(-70.0)
        assert steps.steps[0].fixed_altitude_m == pytest.approx(30.0)

    def test_neither(self, climbing_flight):
        steps = derive_steps(climbing_flight, ConstantElevationModel(40.0), config_for(OnGroundAt.NEITHER), None)

        assert not steps.has_on_ground_at_fix
        assert steps.steps[0].fixed_altitude_m == 100.0

    def test_auto_lifts_flight_below_ground(self, make_raw):
        """Reported altitudes below the ground (e.g. launched from a beach) are lifted."""
        sections = build_sections(make_raw(n_rows=11, altitude_m=np.linspace(-5.0, 20.0, 11)))

        steps = derive_steps(sections, ConstantElevationModel(3.0), config_for(OnGroundAt.AUTO), None)

        assert steps.on_ground_at_fix_start_m == pytest.approx(8.0)
        assert steps.on_ground_at_fix_end_m == pytest.approx(8.0)
        assert steps.steps[0].fixed_altitude_m == pytest.approx(3.0)

    def test_auto_leaves_flight_above_ground(self, climbing_flight):
        steps = derive_steps(climbing_flight, ConstantElevationModel(40.0), config_for(OnGroundAt.AUTO), None)

        assert not steps.has_on_ground_at_fix

    def test_no_elevation_data(self, climbing_flight):
        steps = derive_steps(climbing_flight, None, config_for(OnGroundAt.BOTH), None)

        assert calculate_on_ground_at_fix(steps, climbing_flight, None, config_for(OnGroundAt.BOTH)) == (0.0, 0.0)
        assert steps.steps[0].fixed_altitude_m == 100.0

    def test_endpoint_within_accuracy_not_fixed(self, make_raw):
        sections = build_sections(make_raw(n_rows=10, altitude_m=40.5))

        steps = derive_steps(sections, ConstantElevationModel(40.0), config_for(OnGroundAt.BOTH), None)

        assert not steps.has_on_ground_at_fix

    def test_raw_altitude_untouched(self, climbing_flight):
        steps = derive_steps(climbing_flight, ConstantElevationModel(40.0), config_for(OnGroundAt.BOTH), None)

        assert steps.steps[0].core.altitude_m == 100.0
        assert climbing_flight.sections[0].core.altitude_m == 100.0


class TestIdempotence:
    """Recomputing the correction never compounds it."""

    def test_correct_twice(self, climbing_flight):
        model = ConstantElevationModel(40.0)
        config = config_for(OnGroundAt.BOTH)
        steps = derive_steps(climbing_flight, model, config, None)
        first = {step_id: step.fixed_altitude_m for step_id, step in steps.steps.items()}

        correct_altitude(steps, climbing_flight, model, config)
        correct_altitude(steps, climbing_flight, model, config)

        for step_id, step in steps.steps.items():
            assert step.fixed_altitude_m == pytest.approx(first[step_id])

    def test_mode_change_and_back(self, climbing_flight):
        model = ConstantElevationModel(40.0)
        config = config_for(OnGroundAt.BOTH)
        steps = derive_steps(climbing_flight, model, config, None)

        config.on_ground_at = OnGroundAt.NEITHER
        recalculate_after_config_change(steps, climbing_flight, model, config, None)
        assert steps.steps[0].fixed_altitude_m == 100.0

        config.on_ground_at = OnGroundAt.BOTH
        recalculate_after_config_change(steps, climbing_flight, model, config, None)
        assert steps.steps[0].fixed_altitude_m == pytest.approx(40.0)
        assert steps.steps[10].fixed_altitude_m == pytest.approx(40.0)


class TestHelpers:
    def test_apply_single_step_flight(self, make_raw):
        sections = build_sections(make_raw(n_rows=1))
        steps = derive_steps(sections, None, config_for(OnGroundAt.NEITHER), None)

        apply_on_ground_at(steps, -5.0, -9.0, 0)

        assert steps.steps[0].fix_alt_m == -5.0

    def test_altitude_less_dem_dsm(self, make_raw):
        sections = build_sections(make_raw(n_rows=3, altitude_m=100.0))
        steps = derive_steps(sections, ConstantElevationModel(40.0, 55.0), config_for(OnGroundAt.NEITHER), None)

        assert altitude_less_dem_dsm(100.0, steps.steps[0], 1.0) == (60.0, 45.0)
        assert altitude_less_dem_dsm(40.5, steps.steps[0], 1.0) == (None, None)
        assert altitude_less_dem_dsm(None, steps.steps[0], 1.0) == (None, None)
