"""Read-only repository analysis feeding the planner."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from persevere.vcs.base import VersionControl

logger = logging.getLogger(__name__)

MANIFEST_FILES = {
    "has_package_json": "package.json",
    "has_requirements_txt": "requirements.txt",
    "has_pyproject_toml": "pyproject.toml",
    "has_pom_xml": "pom.xml",
    "has_cargo_toml": "Cargo.toml",
    "has_go_mod": "go.mod",
}


@dataclass(slots=True)
class RepositoryAnalysis:
    """Facts about the target repository that the planner sees."""

    language: str | None = None
    file_count: int = 0
    files: list[str] = field(default_factory=list)
    manifests: dict[str, bool] = field(
        default_factory=lambda: dict.fromkeys(MANIFEST_FILES, False),
    )

    @classmethod
    def empty(cls) -> RepositoryAnalysis:
        return cls()

    def to_payload(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "file_count": self.file_count,
            "files": list(self.files),
            **self.manifests,
        }


@dataclass(slots=True)
class AnalysisOutcome:
    """Analysis result; `error` is set when analysis degraded to empty."""

    analysis: RepositoryAnalysis
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def analyze_repository(
    vcs: VersionControl,
    *,
    repository: str,
    ref: str,
    file_sample: int = 50,
) -> AnalysisOutcome:
    """Describe `repository` at `ref`; failures are returned, never raised."""

    try:
        snapshot = vcs.describe_repository(repository=repository, ref=ref)
    except Exception as error:  # noqa: BLE001
        logger.warning("Repository analysis failed for %s@%s: %s", repository, ref, error)
        return AnalysisOutcome(
            analysis=RepositoryAnalysis.empty(),
            error=str(error) or type(error).__name__,
        )

    root_files = {path for path in snapshot.files if "/" not in path}
    return AnalysisOutcome(
        analysis=RepositoryAnalysis(
            language=snapshot.language,
            file_count=len(snapshot.files),
            files=snapshot.files[:file_sample],
            manifests={flag: name in root_files for flag, name in MANIFEST_FILES.items()},
        ),
    )
