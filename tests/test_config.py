import pytest

from mswell import Config, Constants, FluidPhase, c
from mswell.errors import ValidationError


def test_default_scaling_factors():
    config = Config()
    assert config.scaling_factor(FluidPhase.OIL) == 1.0
    assert config.scaling_factor(FluidPhase.GAS) == pytest.approx(0.01)


def test_non_positive_scaling_factor_rejected():
    with pytest.raises(ValidationError):
        Config(phase_scaling_factors={FluidPhase.OIL: 1.0, FluidPhase.GAS: 0.0})


def test_invalid_tolerances_rejected():
    with pytest.raises(ValueError):
        Config(tolerance_wells=0.0)
    with pytest.raises(ValueError):
        Config(max_inner_iterations=1000)


def test_constants_context():
    config = Config(constants=Constants({"LAMINAR_REYNOLDS_LIMIT": 100.0}))
    assert c.LAMINAR_REYNOLDS_LIMIT == 200.0
    with config.constants():
        assert c.LAMINAR_REYNOLDS_LIMIT == 100.0
        assert c.TURBULENT_REYNOLDS_LIMIT == 4000.0
    assert c.LAMINAR_REYNOLDS_LIMIT == 200.0
