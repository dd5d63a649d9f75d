"""Localized text values used for every user-facing notification"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

FALLBACK_ORDER = ("en", "ar")


class LocalizedText(Mapping):
    """
    Immutable mapping of language code to text.

    Always built from explicit languages, never from a bare string:

        LocalizedText(en="Confirmed", ar="تم التأكيد")
        LocalizedText({"en": "Confirmed"})
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping] = None, **languages: str):
        if isinstance(values, str):
            raise TypeError("LocalizedText requires a language mapping, not a bare string")
        merged = dict(values or {})
        merged.update(languages)
        for lang, value in merged.items():
            if not isinstance(lang, str) or not isinstance(value, str):
                raise TypeError(f"Invalid localized entry {lang!r}: {value!r}")
        object.__setattr__(self, "_values", MappingProxyType(merged))

    def __setattr__(self, name, value):
        raise AttributeError("LocalizedText is immutable")

    def __getitem__(self, lang: str) -> str:
        return self._values[lang]

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"LocalizedText({dict(self._values)!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, Mapping):
            return dict(self._values) == dict(other)
        return NotImplemented

    def __hash__(self):
        return hash(frozenset(self._values.items()))

    def resolve(self, locale: Optional[str] = None) -> str:
        """Requested language, then English, then Arabic, then empty"""
        for lang in (locale, *FALLBACK_ORDER):
            if lang and self._values.get(lang):
                return self._values[lang]
        return ""

    def to_dict(self) -> dict:
        return dict(self._values)


@dataclass(frozen=True)
class NotificationContent:
    title: LocalizedText
    body: LocalizedText
    data: dict = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.title, LocalizedText) or not isinstance(self.body, LocalizedText):
            raise TypeError("Notification title and body must be LocalizedText")
