from dataclasses import dataclass

from sqldeps.models.domain import DEFAULT_DIALECT, SqlDialect, coerce_dialect


@dataclass
class ExtractionOptions:
    dialect: SqlDialect = DEFAULT_DIALECT
    extract_columns: bool = True
    max_subquery_depth: int = 10
    max_columns_per_query: int = 500

    def __post_init__(self):
        self.dialect = coerce_dialect(self.dialect)

    @classmethod
    def from_settings(cls, settings) -> "ExtractionOptions":
        return cls(
            dialect=settings.DIALECT,
            extract_columns=settings.EXTRACT_COLUMNS,
            max_subquery_depth=settings.MAX_SUBQUERY_DEPTH,
            max_columns_per_query=settings.MAX_COLUMNS_PER_QUERY,
        )
