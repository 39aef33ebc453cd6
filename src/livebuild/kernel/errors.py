"""Exception taxonomy for derivation failures.

Every failure raised while turning a watched input into artifacts is a
``RegenerationError``. The subclass determines the failure code that ends up
in chain reports and logs:

- ``InputReadError``  -> IO_ERROR  (file unreadable)
- ``ParseError``      -> PARSE_ERROR (malformed configuration or schema)
- ``BuildError``      -> BUILD_ERROR (downstream derivation failed)
- ``DatabaseError``   -> DB_ERROR (migration failed)
"""

from typing import Optional

from livebuild.codes import FailureCode


class RegenerationError(Exception):
    """Base exception for failures raised by derivation steps."""

    code: FailureCode = FailureCode.BUILD_ERROR

    def __init__(
        self,
        message: str,
        input_path: Optional[str] = None,
        step: Optional[str] = None,
    ):
        self.message = message
        self.input_path = input_path
        self.step = step
        super().__init__(message)

    def __str__(self) -> str:
        parts = []
        if self.step:
            parts.append(f"[{self.step}]")
        if self.input_path:
            parts.append(f"{self.input_path}:")
        parts.append(self.message)
        return " ".join(parts)


class InputReadError(RegenerationError):
    """Raised when a watched input cannot be read."""
    code = FailureCode.IO_ERROR


class ParseError(RegenerationError):
    """Raised when a configuration or schema file is malformed."""
    code = FailureCode.PARSE_ERROR


class BuildError(RegenerationError):
    """Raised when a derivation step fails despite valid inputs."""
    code = FailureCode.BUILD_ERROR


class DatabaseError(RegenerationError):
    """Raised when applying a database schema fails."""
    code = FailureCode.DB_ERROR


def _label(kind) -> str:
    return getattr(kind, "value", str(kind))


class ArtifactAbsentError(LookupError):
    """Raised when a required artifact is not present in the store."""

    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"Artifact not present: {_label(kind)}")


class OrphanedArtifactError(RuntimeError):
    """Raised when publishing an artifact whose dependencies are absent."""

    def __init__(self, kind, missing):
        self.kind = kind
        self.missing = set(missing)
        missing_str = ", ".join(sorted(_label(m) for m in self.missing))
        super().__init__(f"Cannot publish {_label(kind)}: dependencies absent: {missing_str}")
