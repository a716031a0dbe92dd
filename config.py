"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from cloud_client import DEFAULT_CLOUD_MODEL
from transport import DEFAULT_CHUNK_SIZE

PROVIDERS = ("cloud", "local")


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "livescribe" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "")) or os.getenv("DASHSCOPE_API_KEY", "")

    def set_api_key(self, key: str) -> None:
        self._update("api_key", key)

    def get_provider(self) -> str:
        value = str(self._read_all().get("provider", "cloud"))
        return value if value in PROVIDERS else "cloud"

    def set_provider(self, provider: str) -> None:
        if provider not in PROVIDERS:
            raise ValueError(f"unknown provider {provider!r}")
        self._update("provider", provider)

    def get_cloud_model(self) -> str:
        return str(self._read_all().get("cloud_model", DEFAULT_CLOUD_MODEL))

    def get_local_model_path(self) -> str:
        return str(self._read_all().get("local_model_path", ""))

    def set_local_model_path(self, path: str) -> None:
        self._update("local_model_path", path)

    def get_chunk_size(self) -> int:
        try:
            value = int(self._read_all().get("chunk_size", DEFAULT_CHUNK_SIZE))
        except (TypeError, ValueError):
            return DEFAULT_CHUNK_SIZE
        return value if value > 0 else DEFAULT_CHUNK_SIZE

    def get_input_device(self) -> Optional[str]:
        value = self._read_all().get("input_device")
        return str(value) if value not in (None, "") else None

    def set_input_device(self, device: Optional[str]) -> None:
        self._update("input_device", device)

    def _update(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
