"""
Tests for configuration classes
"""

from unittest.mock import Mock, patch

import pytest

from config import (
    Config,
    ConfigurationError,
    DevelopmentConfig,
    ProductionConfig,
    TestingConfig,
    _env,
    _redis_url,
    get_config,
)


def fake_app(config_class=TestingConfig, **overrides):
    app = Mock()
    app.config = {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}
    app.config.update(overrides)
    return app


class TestConfig:

    def test_get_config(self):
        assert get_config('testing') is TestingConfig
        assert get_config('production') is ProductionConfig
        assert get_config('unknown') is DevelopmentConfig

    def test_get_config_reads_flask_env(self):
        with patch.dict('os.environ', {'FLASK_ENV': 'testing'}):
            assert get_config() is TestingConfig

    def test_testing_defaults(self):
        assert TestingConfig.SQLALCHEMY_DATABASE_URI == 'sqlite:///:memory:'
        assert TestingConfig.CELERY_TASK_ALWAYS_EAGER is True
        assert TestingConfig.IMPORT_ERROR_MODE == 'all_or_nothing'
        assert TestingConfig.INVITATION_SEND_DELAY == 0.0

    def test_upload_limit_leaves_room_for_the_import_check(self):
        assert Config.MAX_CONTENT_LENGTH > Config.IMPORT_MAX_FILE_SIZE

    def test_env_casts_values(self):
        with patch.dict('os.environ', {'IMPORT_MAX_ROWS_PER_SHEET': '200', 'INVITATION_SEND_DELAY': '1.5',
                                       'IMPORT_PREVIEW_ROWS': ''}):
            assert _env('IMPORT_MAX_ROWS_PER_SHEET', 5000, int) == 200
            assert _env('INVITATION_SEND_DELAY', 0.5, float) == 1.5
            assert _env('IMPORT_PREVIEW_ROWS', 10, int) == 10

    def test_env_rejects_bad_numbers(self):
        with patch.dict('os.environ', {'IMPORT_MAX_ROWS_PER_SHEET': 'lots'}):
            with pytest.raises(ConfigurationError, match="must be of type int"):
                _env('IMPORT_MAX_ROWS_PER_SHEET', 5000, int)

    @pytest.mark.parametrize('url,expected', [
        ('redis://cache:6379/0', 'redis://cache:6379/0'),
        ('rediss://cache:6380/0', 'rediss://cache:6380/0?ssl_cert_reqs=CERT_NONE'),
        ('rediss://cache:6380/0?db=1', 'rediss://cache:6380/0?db=1&ssl_cert_reqs=CERT_NONE'),
    ])
    def test_redis_url(self, url, expected):
        with patch.dict('os.environ', {'REDIS_URL': url}):
            assert _redis_url() == expected

    def test_redis_url_default(self):
        with patch.dict('os.environ', {}, clear=True):
            assert _redis_url('redis://localhost:6379/0') == 'redis://localhost:6379/0'

    def test_invalid_error_mode(self):
        with pytest.raises(ConfigurationError, match="IMPORT_ERROR_MODE"):
            TestingConfig.init_app(fake_app(IMPORT_ERROR_MODE='sometimes'))

    def test_non_positive_limits(self):
        with pytest.raises(ConfigurationError, match="positive"):
            TestingConfig.init_app(fake_app(IMPORT_MAX_ROWS_PER_SHEET=0))

    def test_valid_config_passes(self):
        TestingConfig.init_app(fake_app(IMPORT_ERROR_MODE='best_effort'))

    def test_production_requires_database_url(self):
        app = fake_app(ProductionConfig, SQLALCHEMY_DATABASE_URI='')

        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(ConfigurationError, match="DATABASE_URL"):
                ProductionConfig.init_app(app)

    def test_production_reads_database_url(self):
        app = fake_app(ProductionConfig, SQLALCHEMY_DATABASE_URI='')

        with patch.dict('os.environ', {'DATABASE_URL': 'postgresql://seido@db/seido'}):
            ProductionConfig.init_app(app)

        assert app.config['SQLALCHEMY_DATABASE_URI'] == 'postgresql://seido@db/seido'
