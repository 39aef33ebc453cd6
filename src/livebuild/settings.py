"""Tool settings supplied at startup."""

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Settings(BaseModel):
    """Paths and tuning knobs for one livebuild process."""
    model_config = ConfigDict(frozen=True)

    config_path: Path = Path("livebuild.config.json")
    schema_path: Path = Path("schema.graphql")
    generated_dir: Path = Path("generated")
    database_path: Path = Path(".livebuild/cache.db")
    fingerprint_cache_path: Optional[Path] = Path(".livebuild/fingerprints.json")
    debounce_ms: int = Field(300, ge=0)
    max_workers: int = Field(4, ge=1)
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @property
    def quiet_period(self) -> float:
        return self.debounce_ms / 1000

    def resolve(self, root: Optional[Path] = None) -> "Settings":
        """Return a copy with every relative path anchored at ``root`` (default: cwd)."""
        base = Path(root) if root is not None else Path.cwd()

        def anchor(p: Optional[Path]) -> Optional[Path]:
            if p is None:
                return None
            return p if p.is_absolute() else (base / p).resolve()

        return self.model_copy(update={
            "config_path": anchor(self.config_path),
            "schema_path": anchor(self.schema_path),
            "generated_dir": anchor(self.generated_dir),
            "database_path": anchor(self.database_path),
            "fingerprint_cache_path": anchor(self.fingerprint_cache_path),
        })
