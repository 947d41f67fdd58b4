"""Pydantic schemas for the data-collection control API."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MIN_YEAR = 1990


def _max_year() -> int:
    return date.today().year + 1


class SearchRequest(BaseModel):
    """One make (and optional model) to collect now."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    make: str
    model: str | None = None
    year_from: int | None = Field(default=None, alias="yearFrom")
    year_to: int | None = Field(default=None, alias="yearTo")

    @field_validator("make")
    @classmethod
    def make_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Vehicle make is required")
        return value

    @model_validator(mode="after")
    def check_years(self) -> "SearchRequest":
        max_year = _max_year()
        for year in (self.year_from, self.year_to):
            if year is not None and not MIN_YEAR <= year <= max_year:
                raise ValueError(f"Years must be between {MIN_YEAR} and {max_year}")
        if self.year_from and self.year_from > (self.year_to or date.today().year):
            raise ValueError("yearTo must not be before yearFrom")
        return self


class StartMultipleRequest(BaseModel):
    searches: list[SearchRequest] = Field(min_length=1)


class RestartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scope_key: str = Field(alias="scopeKey")
    reason: str = Field(min_length=1)
    actor: str = "operator"
