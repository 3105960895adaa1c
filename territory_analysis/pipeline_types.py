"""
Typed records for analysis results and step tracking.

The step/run types standardize what each analysis stage returns, enabling
structured logging and provenance. The domain types carry the values that
flow between stages (observations, home-range estimates, resampling trials,
fitted population parameters, model candidates).
"""

import math
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NewType, Optional

BirdId = NewType("BirdId", str)


class StepStatus(str, Enum):
    """Analysis step outcome status."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def _get_git_sha():
    """Return the short git SHA of the current HEAD, or None."""
    try:
        return subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],
            stderr=subprocess.DEVNULL,
            text=True,
        ).strip()
    except (subprocess.SubprocessError, FileNotFoundError):
        return None


# ── Domain records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Observation:
    """A single located sighting of a bird, in geographic and UTM space."""

    bird_id: BirdId
    longitude: float
    latitude: float
    easting: float
    northing: float


@dataclass(frozen=True)
class HomeRangeEstimate:
    """Area enclosed by a percent-volume contour of a kernel UD."""

    bird_id: Optional[BirdId]
    percent: float
    area: float  # m²
    h: float
    h_method: str  # "href" or "fixed"
    n_points: int
    contour: Any = None  # shapely Polygon/MultiPolygon when requested


@dataclass(frozen=True)
class TrialResult:
    """One resampling trial of the sample-size validation."""

    bird_id: BirdId
    sample_size: int
    trial: int
    area: float
    h_value: float
    error: Optional[str] = None

    @property
    def ok(self):
        return self.error is None and not math.isnan(self.area)

    def to_dict(self):
        return {
            "bird_id": self.bird_id,
            "sample_size": self.sample_size,
            "trial": self.trial,
            "area": self.area,
            "h_value": self.h_value,
            "error": self.error,
        }


@dataclass(frozen=True)
class ConditionParameters:
    """Population-level Scaled Mass Index parameters."""

    slope: float      # OLS slope of weight on wing
    r: float          # Pearson correlation of weight and wing
    exponent: float   # b_SMA = slope / r
    l0: float         # population mean wing length
    n: int

    def to_dict(self):
        return {
            "slope": self.slope,
            "r": self.r,
            "exponent": self.exponent,
            "l0": self.l0,
            "n": self.n,
        }


@dataclass(frozen=True)
class ModelCandidate:
    """A fitted candidate linear model and its information-criterion score."""

    name: str
    predictors: tuple
    formula: str
    params: dict
    pvalues: dict
    n: int
    k: int
    log_likelihood: float
    r_squared: float
    aicc: float
    delta_aicc: float = float("nan")
    weight: float = float("nan")
    rank: int = 0

    def to_dict(self):
        return {
            "rank": self.rank,
            "name": self.name,
            "formula": self.formula,
            "k": self.k,
            "n": self.n,
            "log_likelihood": self.log_likelihood,
            "r_squared": self.r_squared,
            "aicc": self.aicc,
            "delta_aicc": self.delta_aicc,
            "weight": self.weight,
        }


# ── Step / run tracking ──────────────────────────────────────────────────


@dataclass
class StepResult:
    """Result of a single analysis step execution."""

    step_name: str
    status: str  # "success", "skipped", "error"
    input_summary: dict = field(default_factory=dict)
    output_summary: dict = field(default_factory=dict)
    timing_seconds: float = 0.0
    warnings: list = field(default_factory=list)
    error: Optional[str] = None
    started_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None

    @property
    def ok(self):
        return self.status == StepStatus.SUCCESS.value

    def to_dict(self):
        return {
            "step_name": self.step_name,
            "status": self.status,
            "input_summary": self.input_summary,
            "output_summary": self.output_summary,
            "timing_seconds": self.timing_seconds,
            "warnings": self.warnings,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct a StepResult from a serialized dict."""
        return cls(
            step_name=d["step_name"],
            status=d["status"],
            input_summary=d.get("input_summary", {}),
            output_summary=d.get("output_summary", {}),
            timing_seconds=d.get("timing_seconds", 0.0),
            warnings=d.get("warnings", []),
            error=d.get("error"),
            started_at=d.get("started_at", ""),
            completed_at=d.get("completed_at"),
        )


@dataclass
class AnalysisRunResult:
    """Result of a complete analysis run."""

    output_dir: str = ""
    analyses: list = field(default_factory=list)
    step_results: list = field(default_factory=list)
    total_time_seconds: float = 0.0
    output_files: list = field(default_factory=list)
    git_sha: Optional[str] = field(default_factory=_get_git_sha)
    started_at: str = field(default_factory=now_iso)

    @property
    def all_ok(self):
        return all(s.ok for s in self.step_results)

    @property
    def failed_steps(self):
        return [s for s in self.step_results if s.status == StepStatus.ERROR.value]

    def to_dict(self):
        return {
            "output_dir": self.output_dir,
            "analyses": self.analyses,
            "steps": [s.to_dict() for s in self.step_results],
            "total_time_seconds": self.total_time_seconds,
            "output_files": self.output_files,
            "all_ok": self.all_ok,
            "git_sha": self.git_sha,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, d):
        """Reconstruct an AnalysisRunResult from a serialized dict."""
        result = cls(
            output_dir=d.get("output_dir", ""),
            analyses=d.get("analyses", []),
            total_time_seconds=d.get("total_time_seconds", 0.0),
            output_files=d.get("output_files", []),
            git_sha=d.get("git_sha"),
            started_at=d.get("started_at", ""),
        )
        result.step_results = [
            StepResult.from_dict(s) for s in d.get("steps", [])
        ]
        return result
