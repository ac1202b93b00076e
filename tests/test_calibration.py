import pytest

from calibration import CalibrationEngine, CalibrationRecord
from core.errors import CalibrationSessionClosed


def full_range(**kw):
    params = {"min": -32767, "center": 0, "max": 32767, "deadzone": 500, "inverted": False}
    params.update(kw)
    return CalibrationRecord(**params)


def test_example_values():
    rec = full_range()
    assert rec.normalize(16000) == pytest.approx(0.488, abs=1e-3)
    assert rec.normalize(0) == 0.0
    assert rec.normalize(-500) == 0.0
    assert rec.normalize(-16000) == pytest.approx(-0.488, abs=1e-3)


def test_deadzone_boundary_is_inclusive():
    rec = full_range(center=100, deadzone=500)
    assert rec.normalize(600) == 0.0
    assert rec.normalize(-400) == 0.0
    assert rec.normalize(601) > 0.0
    assert rec.normalize(-401) < 0.0


def test_min_equals_max_always_centered():
    rec = CalibrationRecord(min=42, center=42, max=42)
    for raw in (-32767, 0, 41, 42, 43, 32767):
        assert rec.normalize(raw) == 0.0


def test_monotonic_outside_deadzone():
    rec = CalibrationRecord(min=-1000, center=200, max=3000, deadzone=50)
    values = [rec.normalize(v) for v in range(-2000, 4001, 37)]
    assert values == sorted(values)
    assert rec.normalize(200) == 0.0


def test_asymmetric_sides_scale_separately():
    rec = CalibrationRecord(min=-1000, center=0, max=4000)
    assert rec.normalize(2000) == pytest.approx(0.5)
    assert rec.normalize(-500) == pytest.approx(-0.5)


def test_values_beyond_range_are_clamped():
    rec = CalibrationRecord(min=-1000, center=0, max=1000)
    assert rec.normalize(5000) == 1.0
    assert rec.normalize(-5000) == -1.0


def test_inversion_negates():
    plain = full_range(deadzone=10)
    inv = full_range(deadzone=10, inverted=True)
    for raw in (-32767, -20000, -11, 0, 11, 1234, 32767):
        assert inv.normalize(raw) == -plain.normalize(raw)


def test_unidirectional_axis():
    # trigger resting at its minimum
    rec = CalibrationRecord(min=-32767, center=-32767, max=32767)
    assert rec.normalize(-32767) == 0.0
    assert rec.normalize(0) == pytest.approx(0.5)
    assert rec.normalize(32767) == 1.0
    assert rec.normalize(-40000) == 0.0


def test_invalid_record_rejected():
    with pytest.raises(ValueError):
        CalibrationRecord(min=10, center=0, max=20)
    with pytest.raises(ValueError):
        CalibrationRecord(deadzone=-1)


def test_engine_uses_default_for_unknown_axis():
    engine = CalibrationEngine({0: CalibrationRecord(min=-100, center=0, max=100)})
    assert engine.normalize(0, 50) == pytest.approx(0.5)
    assert engine.normalize(3, 16384) == pytest.approx(16384 / 32767)


def test_reset_restores_default():
    narrow = CalibrationRecord(min=-100, center=0, max=100)
    engine = CalibrationEngine({0: narrow, 1: narrow, 2: narrow})
    engine.reset(1)
    assert engine.records() == {0: narrow, 2: narrow}
    assert engine.normalize(1, 100) == pytest.approx(100 / 32767)
    engine.reset(5)
    engine.reset()
    assert engine.records() == {}
    assert engine.record(0) == CalibrationRecord()


def test_session_learns_range_and_center():
    engine = CalibrationEngine({1: full_range(deadzone=300, inverted=True)})
    session = engine.begin_session(1)
    for raw in (0, -20000, 25000, 3000):
        engine.normalize(1, raw)
    session.set_center(1500)
    rec = session.commit()

    assert rec == CalibrationRecord(min=-20000, center=1500, max=25000, deadzone=300, inverted=True)
    assert engine.record(1) == rec
    assert engine.active_session(1) is None


def test_session_center_defaults_to_midpoint():
    engine = CalibrationEngine()
    session = engine.begin_session(0)
    session.observe(-100)
    session.observe(300)
    assert session.commit() == CalibrationRecord(min=-100, center=100, max=300)


def test_session_without_samples_keeps_previous():
    prev = full_range()
    engine = CalibrationEngine({0: prev})
    assert engine.begin_session(0).commit() == prev
    assert engine.record(0) == prev


def test_discard_leaves_record_untouched():
    prev = full_range()
    engine = CalibrationEngine({0: prev})
    session = engine.begin_session(0)
    session.observe(10)
    session.observe(20)
    session.discard()
    assert engine.record(0) == prev
    with pytest.raises(CalibrationSessionClosed):
        session.commit()


def test_new_session_replaces_open_one():
    engine = CalibrationEngine()
    first = engine.begin_session(2)
    second = engine.begin_session(2)
    assert first.closed
    assert engine.active_session(2) is second
    with pytest.raises(CalibrationSessionClosed):
        first.commit()
    second.observe(-10)
    second.observe(10)
    assert second.commit() == CalibrationRecord(min=-10, center=0, max=10)


def test_session_does_not_change_current_normalization():
    engine = CalibrationEngine({0: CalibrationRecord(min=-100, center=0, max=100)})
    engine.begin_session(0)
    assert engine.normalize(0, 50) == pytest.approx(0.5)
