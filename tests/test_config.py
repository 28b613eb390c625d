import pytest
from pydantic import ValidationError

from dmma.config import OptimizerConfig


def test_config_defaults() -> None:
    config = OptimizerConfig()
    assert config.method == "mma/default"
    assert config.move_limit_fraction == 0.2
    assert config.header_interval == 10
    assert config.warm_start
    assert not config.abort_on_error
    assert config.options is None


def test_config_from_dict() -> None:
    config = OptimizerConfig.model_validate(
        {"method": " mma ", "move_limit_fraction": 0.05, "options": {"asyinit": 0.3}}
    )
    assert config.method == "mma"
    assert config.move_limit_fraction == 0.05
    assert config.options == {"asyinit": 0.3}


@pytest.mark.parametrize("fraction", [0.0, -0.1, 1.5])
def test_config_invalid_move_limit(fraction: float) -> None:
    with pytest.raises(ValidationError):
        OptimizerConfig.model_validate({"move_limit_fraction": fraction})


def test_config_full_move_limit() -> None:
    assert OptimizerConfig(move_limit_fraction=1.0).move_limit_fraction == 1.0


@pytest.mark.parametrize("interval", [0, -10])
def test_config_invalid_header_interval(interval: int) -> None:
    with pytest.raises(ValidationError):
        OptimizerConfig.model_validate({"header_interval": interval})


@pytest.mark.parametrize("method", ["/default", "mma/", "/", ""])
def test_config_malformed_method(method: str) -> None:
    with pytest.raises(ValidationError):
        OptimizerConfig.model_validate({"method": method})


def test_config_extra_field() -> None:
    with pytest.raises(ValidationError, match="Extra inputs are not permitted"):
        OptimizerConfig.model_validate({"move_limit": 0.1})


def test_config_immutable() -> None:
    config = OptimizerConfig()
    with pytest.raises(ValidationError, match="frozen"):
        config.move_limit_fraction = 0.1  # type: ignore[misc]
    assert config.move_limit_fraction == 0.2
