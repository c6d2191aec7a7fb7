# src/pgsample/server/requests.py
"""Request bodies of the HTTP surface.

Field names follow the wire format (camelCase aliases); numbers arriving as
strings are coerced, as JSON clients frequently send them that way.
"""

from pydantic import BaseModel, Field, ValidationError

from pgsample.contracts.results import ResolutionOptions
from pgsample.core.config import SamplingSettings


class LiveQueryRequest(BaseModel):
    """Body of POST /postgres/live."""

    model_config = {"frozen": True, "populate_by_name": True}

    db: str = Field(min_length=1, description="Target connection URL")


class SyncRequest(LiveQueryRequest):
    """Body of POST /postgres/all."""

    seed: float = Field(default=0.0, ge=0.0, le=1.0, description="Sampling seed")
    db_schema: str = Field(default="public", min_length=1, alias="schema", description="Schema to sync")
    required_rows: int = Field(default=2, gt=0, alias="requiredRows", description="Organic rows per table")
    max_rows: int = Field(default=8, gt=0, alias="maxRows", description="Hard cap per table")

    def warnings(self) -> list[str]:
        """Legal but questionable combinations worth logging."""
        found = []
        if self.required_rows > self.max_rows:
            found.append(f"`requiredRows` ({self.required_rows}) is greater than `maxRows` ({self.max_rows})")
        if self.max_rows < self.required_rows + 2:
            found.append(f"`maxRows` ({self.max_rows}) is too low. This might cause problems with foreign keys")
        return found

    def resolution_options(self, sampling: SamplingSettings) -> ResolutionOptions:
        """Per-request knobs merged with the server's sampling policy."""
        return ResolutionOptions(
            seed=self.seed,
            required_rows=self.required_rows,
            max_rows=self.max_rows,
            cap_policy=sampling.cap_policy,
            sample_discovered_tables=sampling.sample_discovered_tables,
            max_iterations=sampling.max_iterations,
        )


def describe_validation_error(error: ValidationError) -> str:
    """One line per issue: ``field: message``."""
    lines = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"])
        lines.append(f"{location}: {issue['msg']}" if location else issue["msg"])
    return "\n".join(lines)

