"""Tests for configuration loading and derived thresholds."""

import pytest
from pydantic import ValidationError

from leadguard.config import DEFAULT_STAGE_ORDER, Settings, get_settings
from leadguard.monitoring.models import MonitoringConfig
from leadguard.security.thresholds import ValidationThresholds


class TestSettingsDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.embeddings_backend in {"openai", "ollama", "gemini"}
        assert settings.security_max_message_length == 5000
        assert settings.security_rate_limit_max_messages == 10
        assert settings.security_rate_limit_window_seconds == 60.0
        assert settings.security_similarity_high == 0.85
        assert settings.security_similarity_medium == 0.7
        assert settings.embedding_dimension == 1536
        assert settings.monitoring_interval_seconds == 300

    def test_stage_names_default_order(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.stage_names == DEFAULT_STAGE_ORDER.split(",")

    def test_stage_names_strips_whitespace(self) -> None:
        settings = Settings(_env_file=None, security_stages=" syntactic , semantic ")
        assert settings.stage_names == ["syntactic", "semantic"]

    def test_ollama_url(self) -> None:
        settings = Settings(_env_file=None, ollama_host="localhost", ollama_port=1234)
        assert settings.ollama_url == "http://localhost:1234"

    def test_is_development(self) -> None:
        assert Settings(_env_file=None, environment="Development").is_development
        assert not Settings(_env_file=None, environment="production").is_development

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        assert get_settings() is get_settings()


class TestSettingsValidation:
    """Tests for field validators."""

    def test_unknown_stage_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown validation stages"):
            Settings(_env_file=None, security_stages="syntactic,magic")

    def test_duplicate_stage_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate"):
            Settings(_env_file=None, security_stages="syntactic,syntactic")

    def test_invalid_backend_rejected(self) -> None:
        with pytest.raises(ValidationError, match="embeddings_backend"):
            Settings(_env_file=None, embeddings_backend="cohere")

    @pytest.mark.parametrize("value", [-0.1, 1.5])
    def test_similarity_out_of_range(self, value: float) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, security_similarity_high=value)

    def test_threshold_order_enforced(self) -> None:
        with pytest.raises(ValidationError, match="security_similarity_medium"):
            Settings(
                _env_file=None,
                security_similarity_high=0.6,
                security_similarity_medium=0.8,
            )

    def test_risk_threshold_order_enforced(self) -> None:
        with pytest.raises(ValidationError, match="security_risk_medium"):
            Settings(_env_file=None, security_risk_high=0.3, security_risk_medium=0.5)

    @pytest.mark.parametrize(
        "field", ["security_sudden_suspicious_max_risk", "monitoring_conversation_alert_risk"]
    )
    def test_new_ratios_out_of_range(self, field: str) -> None:
        with pytest.raises(ValidationError, match="between 0 and 1"):
            Settings(_env_file=None, **{field: 1.2})

    @pytest.mark.parametrize(
        "field",
        [
            "security_url_encoding_min_count",
            "security_sudden_suspicious_min_indicators",
            "monitoring_max_active_alerts",
            "monitoring_event_buffer_size",
        ],
    )
    def test_counts_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError, match="at least 1"):
            Settings(_env_file=None, **{field: 0})



class TestDerivedConfig:
    """Tests for frozen config objects built from settings."""

    def test_validation_thresholds_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,
            security_max_message_length=100,
            security_progressive_min_distinct=4,
            security_similarity_high=0.9,
        )
        thresholds = ValidationThresholds.from_settings(settings)
        assert thresholds.max_message_length == 100
        assert thresholds.progressive_min_distinct == 4
        assert thresholds.similarity_high == 0.9

    def test_validation_thresholds_are_frozen(self) -> None:
        thresholds = ValidationThresholds()
        with pytest.raises(AttributeError):
            thresholds.max_message_length = 1  # type: ignore[misc]

    def test_monitoring_config_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,
            monitoring_interval_seconds=60,
            monitoring_high_events_per_hour=2,
            monitoring_failed_validations_per_hour=7,
        )
        config = MonitoringConfig.from_settings(settings)
        assert config.interval_seconds == 60
        assert config.high_events_per_hour == 2
        assert config.failed_validations_per_hour == 7
        assert config.critical_events_per_hour == 5

    def test_default_settings_reproduce_default_thresholds(self) -> None:
        settings = Settings(_env_file=None)
        assert ValidationThresholds.from_settings(settings) == ValidationThresholds()
        assert MonitoringConfig.from_settings(settings) == MonitoringConfig()

    def test_encoding_and_burst_thresholds_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,
            security_url_encoding_min_count=2,
            security_sudden_suspicious_max_risk=0.25,
            security_sudden_suspicious_min_indicators=4,
        )
        thresholds = ValidationThresholds.from_settings(settings)
        assert thresholds.url_encoding_min_count == 2
        assert thresholds.sudden_suspicious_max_risk == 0.25
        assert thresholds.sudden_suspicious_min_indicators == 4

    def test_monitoring_limits_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,
            monitoring_conversation_alert_risk=0.5,
            monitoring_max_active_alerts=3,
            monitoring_event_buffer_size=50,
        )
        config = MonitoringConfig.from_settings(settings)
        assert config.conversation_alert_risk == 0.5
        assert config.max_active_alerts == 3
        assert config.event_buffer_size == 50

