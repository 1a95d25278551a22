import pytest
from datetime import timedelta
from pydantic import ValidationError
from fsm.config.loader import load_config
from fsm.config.models import AppConfig, CacheConfig, GeneralConfig, UiConfig


def test_config_defaults():
    config = AppConfig()
    assert config.cache.max_capacity == 32_768
    assert config.cache.ttl == timedelta(minutes=30)
    assert config.cache.tti == timedelta(minutes=10)
    assert config.cache.max_memory_mb == 256
    assert config.cache.num_shards == 64
    assert config.cache.enable_stats
    assert config.general.log_path == "/tmp/fsm/fsm.log"
    assert not config.ui.show_hidden


def test_shard_quota_rounds_up():
    assert CacheConfig(max_capacity=10, num_shards=4).shard_quota == 3
    assert CacheConfig(max_capacity=8, num_shards=4).shard_quota == 2
    assert CacheConfig(max_memory_mb=1).max_memory_bytes == 1024 * 1024


def test_invalid_capacity():
    with pytest.raises(ValidationError):
        CacheConfig(max_capacity=0)


def test_invalid_ttl():
    with pytest.raises(ValidationError):
        CacheConfig(ttl=timedelta(seconds=0))


def test_invalid_workers_and_page_size():
    with pytest.raises(ValidationError):
        GeneralConfig(task_workers=0)
    with pytest.raises(ValidationError):
        UiConfig(page_size=0)


def test_shards_may_not_exceed_capacity():
    with pytest.raises(ValidationError):
        AppConfig(cache={"max_capacity": 4, "num_shards": 8})


def test_load_config(config_yaml_path):
    config = load_config(config_yaml_path)

    assert config.general.task_workers == 4
    assert config.general.debug is True
    assert config.cache.max_capacity == 1000
    assert config.cache.ttl == timedelta(seconds=120)
    assert config.cache.tti == timedelta(seconds=60)
    assert config.cache.num_shards == 8
    assert config.ui.show_hidden is True
    assert config.ui.page_size == 10


def test_load_config_flat_cache_keys(tmp_path):
    f = tmp_path / "fsm.yaml"
    f.write_text("""
cache_max_capacity: 500
cache_num_shards: 5
ui:
  page_size: 3
""")
    config = load_config(f)
    assert config.cache.max_capacity == 500
    assert config.cache.num_shards == 5
    assert config.ui.page_size == 3


def test_load_config_empty_file_uses_defaults(tmp_path):
    f = tmp_path / "fsm.yaml"
    f.write_text("")
    assert load_config(f) == AppConfig()


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")
