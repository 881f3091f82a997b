"""Typed query predicates.

A ``FilterSpec`` is a plain list of predicates describing which rows a caller
wants. Repositories translate it into SQLAlchemy clauses with
:func:`to_clauses`, so no caller ever composes ``.where()`` chains directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from sqlalchemy import ColumnElement, and_, or_


@dataclass(frozen=True)
class Predicate:
    field: str
    value: Any

    def clause(self, model: type) -> ColumnElement[bool]:
        raise NotImplementedError

    def _column(self, model: type):
        try:
            return getattr(model, self.field)
        except AttributeError as exc:
            raise ValueError(f"{model.__name__} has no column {self.field!r}") from exc


@dataclass(frozen=True)
class Eq(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model) == self.value


@dataclass(frozen=True)
class Ne(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model) != self.value


@dataclass(frozen=True)
class Lt(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model) < self.value


@dataclass(frozen=True)
class Gt(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model) > self.value


@dataclass(frozen=True)
class Le(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model) <= self.value


@dataclass(frozen=True)
class Ge(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model) >= self.value


@dataclass(frozen=True)
class In(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model).in_(list(self.value))


@dataclass(frozen=True)
class NotIn(Predicate):
    def clause(self, model: type) -> ColumnElement[bool]:
        return self._column(model).not_in(list(self.value))


@dataclass(frozen=True)
class Search:
    """Case-insensitive substring match against any of several columns."""

    fields: Sequence[str]
    term: str

    def clause(self, model: type) -> ColumnElement[bool]:
        pattern = f"%{self.term}%"
        return or_(*(getattr(model, name).ilike(pattern) for name in self.fields))


@dataclass
class FilterSpec:
    predicates: List[Any] = field(default_factory=list)

    def extend(self, predicates: Iterable[Any]) -> "FilterSpec":
        self.predicates.extend(predicates)
        return self

    def add_if(self, value: Any, predicate: Any) -> "FilterSpec":
        """Append ``predicate`` only when the optional ``value`` was supplied."""
        if value is not None and value != "":
            self.predicates.append(predicate)
        return self

    def __iter__(self):
        return iter(self.predicates)

    def __len__(self) -> int:
        return len(self.predicates)


def to_clauses(model: type, spec: Iterable[Any]) -> List[ColumnElement[bool]]:
    return [predicate.clause(model) for predicate in spec]


@dataclass(frozen=True)
class AnyOf:
    predicates: Sequence[Any]

    def clause(self, model: type) -> ColumnElement[bool]:
        return or_(*(predicate.clause(model) for predicate in self.predicates))


@dataclass(frozen=True)
class AllOf:
    predicates: Sequence[Any]

    def clause(self, model: type) -> ColumnElement[bool]:
        return and_(*(predicate.clause(model) for predicate in self.predicates))
