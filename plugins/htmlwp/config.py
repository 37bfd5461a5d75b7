"""
Entry decoding for the htmlwp plugin.

The raw `entry` mapping from mkdocs.yml is turned into tagged variants once, at
configuration load, so the build never has to guess what an entry is.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

GLOBAL_ENTRY_KEY = "global"

INJECT_POINTS = ("head", "body")

PAGE_KEYS = {"import", "filename", "styles", "jschunks"}
COPY_KEYS = {"srcPath", "destPath"}


class HtmlwpError(Exception):
    """Base class for errors raised by the htmlwp pipeline."""


class HtmlwpConfigError(HtmlwpError):
    """An entry in the `entry` mapping has an unexpected shape."""


@dataclass(frozen=True)
class StyleReference:
    import_path: str
    filename: str


@dataclass(frozen=True)
class ScriptChunkReference:
    name: str
    inject: str = "body"
    attributes: Dict[str, Union[str, bool]] = field(default_factory=dict)


@dataclass
class PageEntry:
    """A page and/or style bundle. Both `import_path` and `filename` are needed to emit HTML."""

    key: str
    import_path: Optional[str] = None
    filename: Optional[str] = None
    styles: List[StyleReference] = field(default_factory=list)
    jschunks: List[ScriptChunkReference] = field(default_factory=list)

    @property
    def has_page(self) -> bool:
        return bool(self.import_path and self.filename)


@dataclass
class CopyEntry:
    key: str
    src_path: str
    dest_path: str


Entry = Union[PageEntry, CopyEntry]


def _require_str(value: Any, where: str) -> str:
    if not isinstance(value, str) or not value:
        raise HtmlwpConfigError(f"{where} must be a non-empty string, got {value!r}")
    return value


def _decode_style(raw: Any, where: str) -> StyleReference:
    if not isinstance(raw, Mapping):
        raise HtmlwpConfigError(f"{where} must be a mapping with 'import' and 'filename'")
    unknown = set(raw) - {"import", "filename"}
    if unknown:
        raise HtmlwpConfigError(f"{where} has unknown keys: {', '.join(sorted(unknown))}")
    return StyleReference(
        import_path=_require_str(raw.get("import"), f"{where}.import"),
        filename=_require_str(raw.get("filename"), f"{where}.filename"),
    )


def _decode_chunk(raw: Any, where: str) -> ScriptChunkReference:
    if not isinstance(raw, Mapping):
        raise HtmlwpConfigError(f"{where} must be a mapping with at least 'name'")
    unknown = set(raw) - {"name", "inject", "attributes"}
    if unknown:
        raise HtmlwpConfigError(f"{where} has unknown keys: {', '.join(sorted(unknown))}")

    inject = raw.get("inject") or "body"
    if inject not in INJECT_POINTS:
        raise HtmlwpConfigError(f"{where}.inject must be one of {INJECT_POINTS}, got {inject!r}")

    attributes = raw.get("attributes") or {}
    if not isinstance(attributes, Mapping):
        raise HtmlwpConfigError(f"{where}.attributes must be a mapping")
    for name, value in attributes.items():
        if not isinstance(value, (str, bool)):
            raise HtmlwpConfigError(
                f"{where}.attributes.{name} must be a string or a boolean, got {value!r}"
            )

    return ScriptChunkReference(
        name=_require_str(raw.get("name"), f"{where}.name"),
        inject=inject,
        attributes=dict(attributes),
    )


def _decode_list(raw: Any, where: str, decode) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise HtmlwpConfigError(f"{where} must be a list")
    return [decode(item, f"{where}[{i}]") for i, item in enumerate(raw)]


def decode_entry(key: str, raw: Any) -> Entry:
    """Decode a single entry; copy entries are recognised by `srcPath`."""
    where = f"entry.{key}"
    if not isinstance(raw, Mapping):
        raise HtmlwpConfigError(f"{where} must be a mapping, got {type(raw).__name__}")

    if "srcPath" in raw or "destPath" in raw:
        unknown = set(raw) - COPY_KEYS
        if unknown:
            raise HtmlwpConfigError(
                f"{where} is a copy entry but also has {', '.join(sorted(unknown))}"
            )
        return CopyEntry(
            key=key,
            src_path=_require_str(raw.get("srcPath"), f"{where}.srcPath"),
            dest_path=_require_str(raw.get("destPath"), f"{where}.destPath"),
        )

    unknown = set(raw) - PAGE_KEYS
    if unknown:
        raise HtmlwpConfigError(f"{where} has unknown keys: {', '.join(sorted(unknown))}")

    import_path = raw.get("import")
    filename = raw.get("filename")
    if import_path is not None:
        _require_str(import_path, f"{where}.import")
    if filename is not None:
        _require_str(filename, f"{where}.filename")
    if bool(import_path) != bool(filename):
        raise HtmlwpConfigError(f"{where} needs both 'import' and 'filename' to emit a page")

    return PageEntry(
        key=key,
        import_path=import_path,
        filename=filename,
        styles=_decode_list(raw.get("styles"), f"{where}.styles", _decode_style),
        jschunks=_decode_list(raw.get("jschunks"), f"{where}.jschunks", _decode_chunk),
    )


def decode_entries(raw: Any) -> Dict[str, Entry]:
    """Decode the whole `entry` option, preserving declaration order."""
    if not isinstance(raw, Mapping) or not raw:
        raise HtmlwpConfigError("entry must be a non-empty mapping")
    return {str(key): decode_entry(str(key), value) for key, value in raw.items()}


def global_entry(entries: Mapping[str, Entry]) -> Optional[PageEntry]:
    """Return the shared injection source, unless `global` is itself a page."""
    entry = entries.get(GLOBAL_ENTRY_KEY)
    if isinstance(entry, PageEntry) and not entry.import_path:
        return entry
    return None
