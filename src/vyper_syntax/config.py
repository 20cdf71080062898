from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional

TAB_WIDTH_ENV = "VYPER_SYNTAX_TAB_WIDTH"
STRICT_ENV = "VYPER_SYNTAX_STRICT"

_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ParserConfig:
    """Knobs shared by the lexer and parser of one parse"""

    tab_width: int = 8
    strict: bool = True
    source_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.tab_width < 1:
            raise ValueError(f"tab_width must be >= 1, got {self.tab_width}")

    @classmethod
    def from_env(cls, source_id: Optional[str] = None) -> ParserConfig:
        """Build a config from VYPER_SYNTAX_* environment variables, defaults for the rest"""
        kwargs = {}

        raw_tab = os.getenv(TAB_WIDTH_ENV)
        if raw_tab is not None:
            try:
                kwargs["tab_width"] = int(raw_tab)
            except ValueError:
                raise ValueError(f"{TAB_WIDTH_ENV} must be an integer, got {raw_tab!r}") from None

        raw_strict = os.getenv(STRICT_ENV)
        if raw_strict is not None:
            kwargs["strict"] = raw_strict.strip().lower() not in _FALSY

        return cls(source_id=source_id, **kwargs)

    def with_source(self, source_id: Optional[str]) -> ParserConfig:
        if source_id is None:
            return self
        return replace(self, source_id=source_id)
