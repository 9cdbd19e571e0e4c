"""
core/config.py — YAML 配置加载

• 默认读取工作目录下的 config.yaml，可用环境变量 CONFIG_FILE 指定
• 支持 ${VAR} / ${VAR:-default} 形式的环境变量替换
• cfg.get("a.b.c", default) 按点号路径读取
"""

import os
import re
from typing import Any

import yaml

VERSION = "1.0.0"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class Config:
    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv("CONFIG_FILE", "config.yaml")
        self.config = {}
        self.reload()

    def reload(self):
        if not os.path.exists(self.config_path):
            self.config = {}
            return self.config
        with open(self.config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        self.config = data if isinstance(data, dict) else {}
        return self.config

    def replace_env_vars(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: self.replace_env_vars(v) for k, v in data.items()}
        if isinstance(data, list):
            return [self.replace_env_vars(v) for v in data]
        if isinstance(data, str):
            # 环境变量替换后的值一律为字符串，数值由调用方自行转换
            return _ENV_PATTERN.sub(
                lambda m: os.getenv(m.group(1), m.group(2) if m.group(2) is not None else ""),
                data,
            )
        return data

    def get(self, key: str, default: Any = None) -> Any:
        current: Any = self.config
        for part in [x for x in str(key or "").split(".") if x]:
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        value = self.replace_env_vars(current)
        if value is None or value == "":
            return default
        return value


cfg = Config()

API_BASE = str(cfg.get("server.api_base", "") or "").rstrip("/")
