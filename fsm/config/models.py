from datetime import timedelta
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

class CacheConfig(BaseModel):
    """Metadata cache sizing and expiry policy."""
    max_capacity: int = Field(default=32_768, gt=0)
    ttl: timedelta = Field(default=timedelta(minutes=30))  # age limit since insertion
    tti: timedelta = Field(default=timedelta(minutes=10))  # age limit since last access
    max_memory_mb: int = Field(default=256, gt=0)
    enable_stats: bool = True
    num_shards: int = Field(default=64, ge=1, le=4096)
    sweep_interval_s: Optional[float] = Field(default=None, gt=0)  # None = no sweeper thread

    @field_validator("ttl", "tti")
    @classmethod
    def validate_positive(cls, v: timedelta) -> timedelta:
        if v.total_seconds() <= 0:
            raise ValueError("ttl/tti must be positive durations")
        return v

    @property
    def shard_quota(self) -> int:
        """Entry quota per shard (ceil of capacity / shards)."""
        return -(-self.max_capacity // self.num_shards)

    @property
    def max_memory_bytes(self) -> int:
        return self.max_memory_mb * 1024 * 1024

class UiConfig(BaseModel):
    """Interactive UI preferences."""
    show_hidden: bool = False
    tick_interval_ms: int = Field(default=250, ge=10, le=5000)
    page_size: int = Field(default=20, ge=1, le=500)
    slow_action_ms: float = Field(default=50.0, gt=0)  # actions above this are logged as outliers
    max_search_results: int = Field(default=1000, ge=1)
    clipboard_max_items: int = Field(default=1000, ge=1)  # oldest items drop out beyond this

class GeneralConfig(BaseModel):
    task_workers: int = Field(default=8, gt=0, le=64)
    debug: bool = False
    log_path: Optional[str] = Field(default="/tmp/fsm/fsm.log")

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    ui: UiConfig = Field(default_factory=UiConfig)

    @model_validator(mode="after")
    def validate_shards_vs_capacity(self):
        if self.cache.num_shards > self.cache.max_capacity:
            raise ValueError("cache.num_shards must be <= cache.max_capacity")
        return self
