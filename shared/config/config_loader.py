"""配置加载。

YAML -> `.env` 注入 -> `${VAR}` 展开 -> `EngineConfig`（pydantic）严格校验。
"""

import os
import re
from pathlib import Path
from typing import Any, Iterator

import yaml

from shared.config.schema import EngineConfig

ENV_FILES = (".env", ".env.local")
_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


def _env_candidates(cfg_path: Path) -> Iterator[Path]:
    # 配置目录优先，其次仓库根目录
    for base in (cfg_path.parent, cfg_path.parent.parent):
        for name in ENV_FILES:
            yield base / name


def load_env_files(cfg_path: Path) -> None:
    """把 .env/.env.local 注入 os.environ，已存在的变量不覆盖。"""
    for env_file in _env_candidates(cfg_path):
        if not env_file.exists():
            continue
        for line in env_file.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(line)
            if parsed is not None:
                os.environ.setdefault(*parsed)


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}`；未设置的变量直接报错，避免静默替换为空。"""
    if isinstance(value, str):
        def _lookup(match: re.Match) -> str:
            name = match.group(1)
            if name not in os.environ:
                raise ValueError(f"Missing environment variable: {name}")
            return os.environ[name]

        return _PLACEHOLDER.sub(_lookup, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_config(path: str, load_env: bool = True, expand: bool = True) -> EngineConfig:
    """从 YAML 读取并校验引擎配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand:
        是否展开 `${VAR}` 占位符。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        根节点不是映射，或缺失环境变量。
    pydantic.ValidationError
        字段类型错误或出现未知字段。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    if load_env:
        load_env_files(cfg_path)

    raw = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a dict")
    if expand:
        raw = expand_env(raw)
    return EngineConfig.model_validate(raw)
