from pathlib import Path

import pytest

from vcinpaint.config import InpaintingConfig, load_yaml_config


def test_defaults_match_reference_configuration():
    config = InpaintingConfig()
    assert config.device.backend == "auto"
    assert config.device.pitch_alignment == 512
    assert config.tiling.block_size == 32
    assert config.tiling.iterations_per_launch == 4
    assert config.convergence.check_interval == 25
    assert not config.use_weighting


def test_from_dict_fills_missing_sections():
    config = InpaintingConfig.from_dict({"convergence": {"max_num_iterations": 12}, "use_weighting": True})
    assert config.convergence.max_num_iterations == 12
    assert config.convergence.max_change_rate_threshold == pytest.approx(0.01)
    assert config.use_weighting
    assert config.device.backend == "auto"


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(TypeError):
        InpaintingConfig.from_dict({"tiling": {"tile": 16}})


def test_load_yaml_config(tmp_path):
    path = tmp_path / "inpaint.yaml"
    path.write_text(
        "device:\n"
        "  backend: numpy\n"
        "convergence:\n"
        "  max_change_rate_threshold: 0.05\n"
        "depth_input_scaling_factor: 0.001\n",
        encoding="utf-8",
    )
    config = load_yaml_config(path)
    assert config.device.backend == "numpy"
    assert config.convergence.max_change_rate_threshold == pytest.approx(0.05)
    assert config.depth_input_scaling_factor == pytest.approx(0.001)


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_yaml_config(str(path)) == InpaintingConfig()


def test_shipped_default_config_loads():
    path = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"
    assert load_yaml_config(path) == InpaintingConfig()
