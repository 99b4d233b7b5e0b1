from datetime import timedelta

import pytest

from ndnsrouter.config import (
    ConfigError,
    RouterConfig,
    get_config,
    load_config,
    parse_duration,
    reset_config,
)

BASE_ENV = {
    "PORT": "8080",
    "APP_ENV": "dev",
    "CLOUD_RUN_URL": "https://run.example.com",
    "LAMBDA_URL": "https://lambda.example.com",
}

TOUCHED_KEYS = [
    *BASE_ENV,
    "WEIGHT_ONPREMISE",
    "WEIGHT_CLOUD_RUN",
    "WEIGHT_LAMBDA",
    "SERVERLESS_SERVERS",
]


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("100ms", timedelta(milliseconds=100)),
        ("1.5s", timedelta(seconds=1.5)),
        ("-2s", timedelta(seconds=-2)),
        ("0", timedelta(0)),
        ("250us", timedelta(microseconds=250)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "5", "1x", ".s", "-", "1h 2m"])
def test_parse_duration_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_load_config_defaults():
    config = load_config(BASE_ENV)
    assert config.port == 8080
    assert config.app_env == "dev"
    assert config.cloud_run_url == "https://run.example.com"
    assert config.prometheus_url == "http://localhost:9090"
    assert config.serverless_weight == 30
    assert config.onprem_weight == 70
    assert config.onprem_health_check_interval == timedelta(seconds=30)
    assert config.onprem_retry_delay == timedelta(seconds=1)
    assert config.failover_response_time == 5000.0
    assert config.serverless_servers == ()
    assert (config.weight_onpremise, config.weight_cloud_run, config.weight_lambda) == (70, 15, 15)


def test_load_config_splits_lists():
    env = {**BASE_ENV, "SERVERLESS_SERVERS": "a.example.com,b.example.com"}
    assert load_config(env).serverless_servers == ("a.example.com", "b.example.com")


def test_load_config_parses_durations_and_floats():
    env = {**BASE_ENV, "ONPREM_RETRY_DELAY": "250ms", "FAILOVER_CPU_USAGE": "75.5"}
    config = load_config(env)
    assert config.onprem_retry_delay == timedelta(milliseconds=250)
    assert config.failover_cpu_usage == 75.5


def test_empty_value_gives_zero():
    config = load_config({**BASE_ENV, "SERVERLESS_WEIGHT": ""})
    assert config.serverless_weight == 0


@pytest.mark.parametrize("missing", list(BASE_ENV))
def test_missing_required_variable(missing):
    env = {key: value for key, value in BASE_ENV.items() if key != missing}
    with pytest.raises(ConfigError, match=missing):
        load_config(env)


@pytest.mark.parametrize(
    ("key", "value"),
    [("PORT", "eighty"), ("ONPREM_RETRY_DELAY", "soon"), ("FAILOVER_ERROR_RATE", "lots")],
)
def test_unparsable_value(key, value):
    with pytest.raises(ConfigError, match=key):
        load_config({**BASE_ENV, key: value})


def test_weights_must_sum_to_hundred():
    with pytest.raises(ConfigError):
        load_config({**BASE_ENV, "WEIGHT_LAMBDA": "5"})


def test_custom_weights_accepted():
    env = {**BASE_ENV, "WEIGHT_ONPREMISE": "50", "WEIGHT_CLOUD_RUN": "25", "WEIGHT_LAMBDA": "25"}
    config = load_config(env)
    assert (config.weight_onpremise, config.weight_cloud_run, config.weight_lambda) == (50, 25, 25)


def test_router_config_is_frozen():
    config = load_config(BASE_ENV)
    with pytest.raises(AttributeError):
        config.port = 1  # type: ignore[misc]
    assert isinstance(config, RouterConfig) and config.port == 8080


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in TOUCHED_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield monkeypatch
    reset_config()


def test_get_config_is_cached(clean_env):
    for key, value in BASE_ENV.items():
        clean_env.setenv(key, value)
    first = get_config()
    clean_env.setenv("PORT", "9090")
    assert get_config() is first
    assert first.port == 8080


def test_reset_config_reloads(clean_env):
    for key, value in BASE_ENV.items():
        clean_env.setenv(key, value)
    get_config()
    clean_env.setenv("PORT", "9090")
    reset_config()
    assert get_config().port == 9090


def test_get_config_reads_dotenv(clean_env, tmp_path):
    lines = [f"{key}={value}" for key, value in BASE_ENV.items()]
    (tmp_path / ".env").write_text("\n".join(lines) + "\n", encoding="utf-8")
    config = get_config()
    assert config.app_env == "dev"
    assert config.lambda_url == "https://lambda.example.com"


def test_get_config_raises_when_incomplete(clean_env):
    clean_env.setenv("PORT", "8080")
    with pytest.raises(ConfigError):
        get_config()