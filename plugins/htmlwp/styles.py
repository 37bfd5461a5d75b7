"""
SCSS -> CSS compilation with dependency capture, vendor prefixing and
content-hashed filenames.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import sass

from plugins.htmlwp.bundler import BundleResult
from plugins.htmlwp.config import StyleReference
from plugins.htmlwp.files import PathLike, Writer, resolve_source
from plugins.htmlwp.state import BuildState

logger = logging.getLogger(f"mkdocs.plugins.{__name__}")

# `[contenthash]` is the documented token; `[hash]` is accepted as a shorthand.
HASH_PLACEHOLDERS: Tuple[str, ...] = ("[contenthash]", "[hash]")
HASH_LENGTH = 12

# Properties that still need vendor-prefixed copies for the browsers we target.
PREFIXED_PROPERTIES: Dict[str, Tuple[str, ...]] = {
    "user-select": ("-webkit-", "-moz-", "-ms-"),
    "appearance": ("-webkit-", "-moz-"),
    "backdrop-filter": ("-webkit-",),
    "text-size-adjust": ("-webkit-", "-moz-", "-ms-"),
    "hyphens": ("-webkit-", "-ms-"),
    "mask-image": ("-webkit-",),
    "clip-path": ("-webkit-",),
    "box-decoration-break": ("-webkit-",),
    "tab-size": ("-moz-",),
    "print-color-adjust": ("-webkit-",),
}

_declaration_re = re.compile(
    r"(?P<lead>[{;]\s*)(?P<prop>"
    + "|".join(re.escape(p) for p in PREFIXED_PROPERTIES)
    + r")\s*:\s*(?P<value>[^;{}]+)"
)
_sticky_re = re.compile(r"(?P<lead>[{;]\s*)position\s*:\s*sticky\b")


def prefix_css(css: str) -> str:
    """Add vendor-prefixed declarations in front of the unprefixed ones."""

    def _prefix_declaration(m: re.Match) -> str:
        prop = m.group("prop")
        value = m.group("value").rstrip()
        prefixed = "".join(f"{vendor}{prop}:{value};" for vendor in PREFIXED_PROPERTIES[prop])
        return f"{m.group('lead')}{prefixed}{prop}:{value}"

    css = _declaration_re.sub(_prefix_declaration, css)
    return _sticky_re.sub(lambda m: f"{m.group('lead')}position:-webkit-sticky;position:sticky", css)


def content_hash(css: str) -> str:
    return hashlib.md5(css.encode("utf8")).hexdigest()[:HASH_LENGTH]


def has_hash_placeholder(filename: str) -> bool:
    return any(token in filename for token in HASH_PLACEHOLDERS)


def substitute_hash(filename: str, digest: str) -> str:
    for token in HASH_PLACEHOLDERS:
        filename = filename.replace(token, digest)
    return filename


@dataclass
class StyleResult(BundleResult):
    filename: str = ""


class StyleCompiler:
    """Compile style entry points and keep the shared indexes current."""

    def __init__(
        self,
        state: BuildState,
        base_dir: PathLike = ".",
        include_paths: Optional[Sequence[PathLike]] = None,
    ):
        self.state = state
        self.base_dir = Path(base_dir).resolve()
        self.include_paths = [str(resolve_source(self.base_dir, p)) for p in include_paths or []]

    def _compile_sass(self, source_path: Path, production: bool) -> Tuple[str, List[str]]:
        # The source map is only generated to learn which files libsass loaded; it is never written.
        map_path = source_path.with_name(source_path.name + ".map")
        css, source_map = sass.compile(
            filename=str(source_path),
            output_style="compressed" if production else "expanded",
            include_paths=self.include_paths,
            source_map_filename=str(map_path),
            omit_source_map_url=True,
        )

        file_paths = [source_path.as_posix()]
        for src in json.loads(source_map).get("sources", []):
            resolved = (map_path.parent / src).resolve().as_posix()
            if resolved not in file_paths:
                file_paths.append(resolved)
        return css, file_paths

    def compile(self, style: StyleReference, production: bool = False) -> StyleResult:
        """Compile `style` to its final CSS text and filename.

        Updates the style hash index (hashed patterns only) and the dependency
        index. Nothing is recorded if compilation fails.
        """
        source_path = resolve_source(self.base_dir, style.import_path)
        css, file_paths = self._compile_sass(source_path, production)

        if production:
            css = prefix_css(css)

        filename = style.filename
        if has_hash_placeholder(filename):
            filename = substitute_hash(filename, content_hash(css))
            self.state.style_hashes.record(style.import_path, filename)

        self.state.dependencies.record(style.import_path, file_paths)
        logger.debug(f"[htmlwp] compiled {style.import_path} -> {filename} ({len(file_paths)} file(s))")
        return StyleResult(source=css, file_paths=file_paths, filename=filename)

    def build(self, style: StyleReference, writer: Writer, production: bool = False) -> StyleResult:
        """Compile and write `style` under the writer's output root."""
        result = self.compile(style, production)
        writer.write(result.filename, result.source)
        return result
