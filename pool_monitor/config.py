"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。

环境变量格式：POOL_MONITOR_<SECTION>__<FIELD>，例如
POOL_MONITOR_SYNC__INTERVAL=600。环境变量优先于 YAML。
"""

import os
from pathlib import Path
from typing import List, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """数据库配置（全部为 SQLite 文件）"""
    source_path: str = "data/local.sql"          # 本地承诺库（initial_post，只读）
    registration_path: str = "data/local.sql"    # PoET 注册记录（poet_registration，只读）
    activation_path: str = "data/state.sql"      # 链上 ATX 激活记录（atxs，只读）
    cache_path: str = "data/poolstats.db"        # 本系统自有缓存库
    timeout: int = 30


class NodeConfig(BaseModel):
    """链节点 RPC 配置"""
    endpoint: str = "127.0.0.1:9071"
    timeout: float = 5.0


class EpochConfig(BaseModel):
    """纪元参数（部署常量）"""
    layers_per_epoch: int = 4032
    round_open_offset: int = 2880


class SyncConfig(BaseModel):
    """对账循环配置"""
    enabled: bool = True
    interval: int = 1800
    page_size: int = Field(default=50, ge=1)
    concurrency: int = Field(default=8, ge=1)
    align_to_interval: bool = False


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = ["*"]
    request_timeout: float = 30.0


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseSettings):
    """应用配置（完整配置）"""

    model_config = SettingsConfigDict(
        env_prefix="POOL_MONITOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    node: NodeConfig = Field(default_factory=NodeConfig)
    epoch: EpochConfig = Field(default_factory=EpochConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # 环境变量覆盖 YAML
        return env_settings, init_settings


_PATH_FIELDS = {
    "database": ["source_path", "registration_path", "activation_path", "cache_path"],
    "logging": ["file"],
}


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 POOL_MONITOR_CONFIG_PATH
    3. 默认路径 config.yaml

    YAML 中的相对路径以配置文件所在目录为基准。
    """
    if config_path is None:
        config_path = os.environ.get("POOL_MONITOR_CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
        if raw_config:
            base_dir = config_file.resolve().parent

            def _resolve(value: Optional[str]) -> Optional[str]:
                if not value:
                    return value
                path = Path(value)
                if path.is_absolute():
                    return str(path)
                return str((base_dir / path).resolve())

            for section, fields in _PATH_FIELDS.items():
                section_data = raw_config.get(section)
                if not isinstance(section_data, dict):
                    continue
                for field in fields:
                    if field in section_data:
                        section_data[field] = _resolve(section_data[field])

            return AppConfig(**raw_config)

    # 配置文件不存在时使用默认配置（仍可被环境变量覆盖）
    return AppConfig()
