"""
Injects <link> and <script> tags into bundled HTML.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union

from plugins.htmlwp.config import ScriptChunkReference, StyleReference
from plugins.htmlwp.files import url_path
from plugins.htmlwp.state import StyleHashIndex

logger = logging.getLogger(f"mkdocs.plugins.{__name__}")

HEAD_CLOSE = "</head>"
BODY_CLOSE = "</body>"


def render_attributes(attributes: Mapping[str, Union[str, bool]]) -> str:
    """Booleans render as a bare name, strings as name="value"."""
    parts: List[str] = []
    for name, value in attributes.items():
        if isinstance(value, str):
            parts.append(f'{name}="{value}"')
        else:
            parts.append(name)
    return " ".join(parts)


def insert_before_first(source: str, marker: str, text: str) -> Optional[str]:
    index = source.find(marker)
    if index == -1:
        return None
    return source[:index] + text + source[index:]


def insert_before_last(source: str, marker: str, text: str) -> Optional[str]:
    index = source.rfind(marker)
    if index == -1:
        return None
    return source[:index] + text + source[index:]


class TagInjector:
    """Resolve style and script references for one pass and insert their tags.

    Hashed style names come from the shared style hash index so that pages
    built in a later pass still point at the last compiled file.
    """

    def __init__(
        self,
        style_hashes: StyleHashIndex,
        named_chunks: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.style_hashes = style_hashes
        self.named_chunks = named_chunks or {}

    def style_href(self, style: StyleReference) -> str:
        return url_path(self.style_hashes.resolve(style.import_path, style.filename))

    def link_tags(self, styles: Sequence[StyleReference]) -> str:
        return "".join(f'<link rel="stylesheet" href="{self.style_href(s)}">' for s in styles)

    def script_tag(self, chunk: ScriptChunkReference) -> Optional[str]:
        files = self.named_chunks.get(chunk.name)
        if not files:
            logger.warning(f"[htmlwp] chunk '{chunk.name}' has no emitted files; skipping its <script>")
            return None
        attributes = render_attributes(chunk.attributes)
        prefix = f"<script {attributes} " if attributes else "<script "
        return f'{prefix}src="{url_path(files[0])}"></script>'

    def script_tags(self, jschunks: Sequence[ScriptChunkReference]) -> Dict[str, str]:
        """Group rendered tags by injection point, keeping declaration order in each group."""
        groups: Dict[str, List[str]] = {"head": [], "body": []}
        for chunk in jschunks:
            tag = self.script_tag(chunk)
            if tag is not None:
                groups[chunk.inject].append(tag)
        return {point: "".join(tags) for point, tags in groups.items()}

    def inject(
        self,
        source: str,
        styles: Sequence[StyleReference] = (),
        jschunks: Sequence[ScriptChunkReference] = (),
    ) -> str:
        """Return `source` with all tags inserted.

        Links and head scripts go before the first </head>, body scripts before
        the last </body>. A missing closing tag only skips that group.
        """
        links = self.link_tags(styles)
        scripts = self.script_tags(jschunks)

        head = links + scripts["head"]
        if head:
            injected = insert_before_first(source, HEAD_CLOSE, head)
            if injected is None:
                logger.debug("[htmlwp] no </head>; skipping head injection")
            else:
                source = injected

        if scripts["body"]:
            injected = insert_before_last(source, BODY_CLOSE, scripts["body"])
            if injected is None:
                logger.debug("[htmlwp] no </body>; skipping body injection")
            else:
                source = injected

        return source
