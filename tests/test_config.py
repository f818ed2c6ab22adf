"""
Unit Tests: Configuration and Logging
=====================================

Run with: pytest tests/test_config.py -v
"""

import logging

import numpy as np
import pytest

from nanograd import Config, NumericConversionError, Tensor, get_config, reset_config, set_config
from nanograd.logger import get_logger


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    for name in ('DTYPE', 'DEVICE', 'LOG_LEVEL', 'SEED'):
        monkeypatch.delenv(f'NANOGRAD_{name}', raising=False)
    reset_config()
    yield
    reset_config()


class TestConfig:

    def test_defaults(self) -> None:
        config = get_config()
        assert config == Config()
        assert config.dtype == 'float64'
        assert config.seed is None

    def test_from_env_mapping(self) -> None:
        config = Config.from_env({
            'NANOGRAD_DTYPE': 'FLOAT32',
            'NANOGRAD_LOG_LEVEL': 'debug',
            'NANOGRAD_SEED': '7',
        })
        assert config.dtype == 'float32'
        assert config.log_level == 'DEBUG'
        assert config.seed == 7
        assert config.device == 'cpu'

    def test_bad_seed(self) -> None:
        with pytest.raises(ValueError):
            Config.from_env({'NANOGRAD_SEED': 'abc'})

    def test_environment_is_read(self, monkeypatch) -> None:
        monkeypatch.setenv('NANOGRAD_DTYPE', 'float32')
        reset_config()
        assert Tensor([[1.0]]).dtype == np.float32

    def test_set_config(self) -> None:
        set_config(dtype='float32')
        assert Tensor.ones((1, 1)).dtype == np.float32
        reset_config()
        assert Tensor.ones((1, 1)).dtype == np.float64

    def test_set_config_rejects_unknown_field(self) -> None:
        with pytest.raises(TypeError):
            set_config(precision='high')

    @pytest.mark.parametrize("overrides, error", [
        ({'dtype': 'float16'}, NumericConversionError),
        ({'dtype': 'int32'}, NumericConversionError),
        ({'device': 'tpu'}, ValueError),
        ({'log_level': 'chatty'}, ValueError),
        ({'seed': '1'}, ValueError),
    ])
    def test_set_config_rejects_bad_values(self, overrides, error) -> None:
        with pytest.raises(error):
            set_config(**overrides)
        assert get_config() == Config()

    def test_set_config_normalizes_values(self) -> None:
        config = set_config(dtype=np.float32, device='CUDA:0', log_level='info', seed=3)
        assert (config.dtype, config.device, config.log_level, config.seed) == (
            'float32', 'cuda', 'INFO', 3
        )


class TestLogger:

    def test_module_loggers_share_root(self) -> None:
        assert get_logger('nanograd.graph').name == 'nanograd.graph'
        assert get_logger('elsewhere').name == 'nanograd.elsewhere'

    def test_level_follows_config(self) -> None:
        set_config(log_level='debug')
        assert logging.getLogger('nanograd').level == logging.DEBUG
        assert logging.getLogger('nanograd.graph').isEnabledFor(logging.DEBUG)

    def test_reset_restores_level(self, monkeypatch) -> None:
        set_config(log_level='ERROR')
        monkeypatch.setenv('NANOGRAD_LOG_LEVEL', 'info')
        reset_config()
        assert logging.getLogger('nanograd').level == logging.INFO

    def test_backward_logs_at_debug(self, caplog) -> None:
        x = Tensor([[1.0]], requires_grad=True)
        with caplog.at_level(logging.DEBUG, logger='nanograd'):
            x.sigmoid().backward()
        assert any('backward from node' in r.getMessage() for r in caplog.records)
