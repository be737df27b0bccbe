"""Supported language catalog.

Each language has an internal code, an optional public alias and an English
name. The public code (alias when present, internal code otherwise) is what
the HTTP API exposes; both forms are accepted on input.
"""

from __future__ import annotations

from dataclasses import dataclass

AUTO = "auto"

# (code, alias, name)
_LANGS: tuple[tuple[str, str, str], ...] = (
    ("en", "", "English"),
    ("sq", "", "Albanian"),
    ("ar", "", "Arabic"),
    ("az", "", "Azerbaijani"),
    ("eu", "", "Basque"),
    ("bn", "", "Bengali"),
    ("bg", "", "Bulgarian"),
    ("ca", "", "Catalan"),
    ("zh", "zh-Hans", "Chinese"),
    ("zt", "zh-Hant", "Chinese (traditional)"),
    ("cs", "", "Czech"),
    ("da", "", "Danish"),
    ("nl", "", "Dutch"),
    ("eo", "", "Esperanto"),
    ("et", "", "Estonian"),
    ("fi", "", "Finnish"),
    ("fr", "", "French"),
    ("gl", "", "Galician"),
    ("de", "", "German"),
    ("el", "", "Greek"),
    ("he", "", "Hebrew"),
    ("hi", "", "Hindi"),
    ("hu", "", "Hungarian"),
    ("id", "", "Indonesian"),
    ("ga", "", "Irish"),
    ("it", "", "Italian"),
    ("ja", "", "Japanese"),
    ("ko", "", "Korean"),
    ("lv", "", "Latvian"),
    ("lt", "", "Lithuanian"),
    ("ms", "", "Malay"),
    ("nb", "", "Norwegian"),
    ("fa", "", "Persian"),
    ("pl", "", "Polish"),
    ("pt", "", "Portuguese"),
    ("pb", "pt-BR", "Portuguese (Brazil)"),
    ("ro", "", "Romanian"),
    ("ru", "", "Russian"),
    ("sr", "", "Serbian"),
    ("sk", "", "Slovak"),
    ("sl", "", "Slovenian"),
    ("es", "", "Spanish"),
    ("sv", "", "Swedish"),
    ("tl", "", "Tagalog"),
    ("th", "", "Thai"),
    ("tr", "", "Turkish"),
    ("uk", "", "Ukrainian"),
    ("ur", "", "Urdu"),
    ("vi", "", "Vietnamese"),
)


@dataclass(frozen=True)
class Language:
    code: str
    name: str
    targets: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "name": self.name, "targets": list(self.targets)}


def _public_code(code: str, alias: str) -> str:
    return alias or code


def _build() -> tuple[Language, ...]:
    languages = []
    for code, alias, name in _LANGS:
        targets = tuple(_public_code(c, a) for c, a, _ in _LANGS if c != code)
        languages.append(Language(code=_public_code(code, alias), name=name, targets=targets))
    return tuple(languages)


LANGUAGES: tuple[Language, ...] = _build()

_BY_CODE: dict[str, Language] = {}
for (_code, _alias, _name), _lang in zip(_LANGS, LANGUAGES):
    _BY_CODE[_code] = _lang
    _BY_CODE[_lang.code] = _lang


def get_language(code: str) -> Language | None:
    """Look up a language by public code or internal code. Returns None if unsupported."""
    return _BY_CODE.get(code)


def is_supported(code: str, *, allow_auto: bool = False) -> bool:
    if allow_auto and code == AUTO:
        return True
    return code in _BY_CODE


def language_name(code: str) -> str:
    """English name of a supported language.

    Raises:
        ValueError: If the code is not supported.
    """
    language = _BY_CODE.get(code)
    if language is None:
        raise ValueError(f"Unsupported language code: {code!r}")
    return language.name
