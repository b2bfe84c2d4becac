"""Configuration management"""

import json
from pathlib import Path

from pydantic import BaseModel, Field

from .schema import ContextConfig, ModelConfig


class Config(BaseModel):
    """Main configuration"""
    context: ContextConfig = Field(default_factory=ContextConfig)
    summary_model: ModelConfig = Field(default_factory=ModelConfig)
    working_directory: Path = Field(default_factory=Path.cwd)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from file"""
        if path is None:
            # Look for ctxkeep.json in current dir or home
            candidates = [
                Path.cwd() / "ctxkeep.json",
                Path.home() / ".config" / "ctxkeep" / "config.json",
            ]
            for p in candidates:
                if p.exists():
                    path = p
                    break

        if path and path.exists():
            data = json.loads(path.read_text())
            return cls(**data)

        return cls()

    def save(self, path: Path):
        """Save config to file"""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))
