from typing import Any, Optional
import json
import os
import re
from pathlib import Path

import yaml
import json5  # type: ignore

from .models import Settings


# Environment placeholder pattern: ${env:NAME}
# Ignores '$${env:NAME}' so it can be used to escape a literal placeholder.
VAR_PATTERN = re.compile(r"(?<!\$)\$\{env:([A-Za-z_][A-Za-z0-9_]*)\}")


def _interpolate_string(s: str) -> str:
    """Interpolate ${env:NAME} placeholders inside arbitrary strings.

    Unknown environment variables are left as the original placeholder.
    '$${' collapses to a literal '${'.
    """

    def repl(m: re.Match) -> str:
        val = os.getenv(m.group(1))
        if val is None:
            return m.group(0)
        return val

    interpolated = VAR_PATTERN.sub(repl, s)
    return interpolated.replace("$${", "${")


def _apply_env(obj: Any) -> Any:
    if isinstance(obj, str):
        return _interpolate_string(obj)
    if isinstance(obj, dict):
        return {k: _apply_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_apply_env(v) for v in obj]
    return obj


def _load_raw_file(path: Path) -> Any:
    ext = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    data: Any = None
    if ext in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif ext in {".json5", ".jsonc"}:
        data = json5.loads(text)
    elif ext == ".json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unsupported config file extension: {ext}")
    if data is None:
        return {}
    return data


def load_settings(path: str | os.PathLike[str]) -> Settings:
    data = _load_raw_file(Path(path))
    if not isinstance(data, dict):
        raise ValueError("Root configuration must be a mapping/object")
    return Settings.model_validate(_apply_env(data))


def load_settings_or_default(path: Optional[str | os.PathLike[str]]) -> Settings:
    if path is None:
        return Settings()
    return load_settings(path)


