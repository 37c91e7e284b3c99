"""Request-side models: patient identity queries and optional section requests."""

from datetime import UTC, date, datetime

from pydantic import BaseModel, field_validator

from patient_summary.codes import LOINC


class Token(BaseModel):
    """A coded (system, value) pair, written ``system|value`` on the wire."""

    system: str | None = None
    value: str

    @classmethod
    def parse(cls, raw: str) -> "Token":
        raw = raw.strip()
        if not raw:
            raise ValueError("Empty token")
        if "|" in raw:
            system, _, value = raw.partition("|")
            if not value:
                raise ValueError(f"Token {raw!r} has no value")
            return cls(system=system or None, value=value)
        return cls(value=raw)

    def matches(self, system: str, value: str) -> bool:
        return self.system == system and self.value == value


class PatientIdentityQuery(BaseModel):
    """Exact-match demographics used to resolve a single patient."""

    identifier: Token
    birthdate: date
    family: str
    gender: str


class SectionRequest(BaseModel):
    """An optional section asked for by code, with an optional lookback date."""

    code: Token
    lookback: datetime | None = None

    @classmethod
    def parse(cls, raw: str) -> "SectionRequest":
        """Parse a composite ``system|code$date`` value.

        The date part may be omitted (``system|code`` or ``system|code$``).
        Dates without a time component are read as midnight UTC.
        """
        token_part, _, date_part = raw.partition("$")
        code = Token.parse(token_part)
        date_part = date_part.strip()
        if not date_part:
            return cls(code=code)
        try:
            lookback = datetime.fromisoformat(date_part)
        except ValueError:
            raise ValueError(f"Invalid lookback date {date_part!r}") from None
        return cls(code=code, lookback=lookback)

    @field_validator("lookback")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_loinc(self, code: str) -> bool:
        return self.code.matches(LOINC, code)
