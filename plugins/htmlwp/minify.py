"""
Production HTML minification for bundled pages.

Markup goes through `htmlmin`; inline <style> and <script> bodies go through
`csscompressor` and `jsmin`.
"""

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional

import csscompressor
import htmlmin
import jsmin
from packaging import version

logger = logging.getLogger(f"mkdocs.plugins.{__name__}")

# Minifier dispatch table for inline assets.
MINIFIERS: Dict[str, Callable] = {
    "js": jsmin.jsmin,
    "css": csscompressor.compress,
}

# Compatibility: csscompressor<=0.9.5 strips whitespace inside url(), which breaks SVG data URIs.
if version.parse(csscompressor.__version__) <= version.parse("0.9.5"):
    # See https://github.com/sprymix/csscompressor/issues/9#issuecomment-1024417374
    _preserve_call_tokens_original = csscompressor._preserve_call_tokens
    _url_re = csscompressor._url_re

    def _preserve_url_tokens(*args, **kwargs):
        if _url_re == args[1]:
            kwargs["remove_ws"] = False
        return _preserve_call_tokens_original(*args, **kwargs)

    csscompressor._preserve_call_tokens = _preserve_url_tokens

# Options understood by htmlmin.minify.
HTMLMIN_KEYS = (
    "remove_comments",
    "remove_empty_space",
    "remove_all_empty_space",
    "reduce_empty_attributes",
    "reduce_boolean_attributes",
    "remove_optional_attribute_quotes",
    "convert_charrefs",
    "keep_pre",
    "pre_tags",
    "pre_attr",
)

# Default set: comments removed, redundant attributes removed, whitespace
# collapsed, inline CSS/JS minified, short doctype.
DEFAULT_HTMLMIN_OPTS: Dict[str, Any] = {
    "remove_comments": True,
    "remove_empty_space": True,
    "remove_all_empty_space": False,
    "reduce_empty_attributes": True,
    "reduce_boolean_attributes": True,
    "remove_optional_attribute_quotes": False,
    "convert_charrefs": True,
    "keep_pre": False,
    "pre_tags": ("pre", "textarea"),
    "pre_attr": "pre",
    "remove_type_attributes": True,
    "minify_css": True,
    "minify_js": True,
    "use_short_doctype": True,
}

_doctype_re = re.compile(r"<!doctype[^>]*>", re.IGNORECASE)
_style_re = re.compile(r"(<style\b[^>]*>)(.*?)(</style\s*>)", re.IGNORECASE | re.DOTALL)
_script_re = re.compile(r"(<script\b([^>]*)>)(.*?)(</script\s*>)", re.IGNORECASE | re.DOTALL)
_script_type_re = re.compile(r"""(<script\b[^>]*?)\s+type\s*=\s*(["']?)text/javascript\2""", re.IGNORECASE)
_style_type_re = re.compile(r"""(<(?:style|link)\b[^>]*?)\s+type\s*=\s*(["']?)text/css\2""", re.IGNORECASE)
_js_type_re = re.compile(r"""\btype\s*=\s*(["']?)(?!text/javascript|module|application/javascript)[^"'\s>]+""", re.IGNORECASE)


def minify_file_data_with_func(file_data: str, minify_func: Callable) -> str:
    """Run the correct minifier with safe parameters."""
    if minify_func.__name__ == "jsmin":
        return minify_func(file_data, quote_chars="'\"`")
    return minify_func(file_data)


def merge_htmlmin_opts(selected_opts: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge user options over the defaults; unknown keys are reported and dropped."""
    output_opts = dict(DEFAULT_HTMLMIN_OPTS)
    for key, value in (selected_opts or {}).items():
        if key in output_opts:
            output_opts[key] = value
        else:
            logger.warning("htmlmin option '%s' not recognized", key)
    if isinstance(output_opts.get("pre_tags"), list):
        output_opts["pre_tags"] = tuple(output_opts["pre_tags"])
    return output_opts


def _minify_inline(output: str, opts: Mapping[str, Any]) -> str:
    if opts.get("minify_css"):
        output = _style_re.sub(
            lambda m: m.group(1) + minify_file_data_with_func(m.group(2), MINIFIERS["css"]) + m.group(3),
            output,
        )

    if opts.get("minify_js"):

        def _sub_script(m: re.Match) -> str:
            attributes = m.group(2)
            # External scripts and non-JS payloads (JSON, templates) are left alone.
            if "src=" in attributes.lower() or _js_type_re.search(attributes):
                return m.group(0)
            body = minify_file_data_with_func(m.group(3), MINIFIERS["js"])
            return m.group(1) + body + m.group(4)

        output = _script_re.sub(_sub_script, output)
    return output


def minify_html(output: str, selected_opts: Optional[Mapping[str, Any]] = None) -> str:
    """Minify a bundled page using the default option set merged with `selected_opts`."""
    opts = merge_htmlmin_opts(selected_opts)

    output = _minify_inline(output, opts)

    if opts.get("remove_type_attributes"):
        output = _script_type_re.sub(r"\1", output)
        output = _style_type_re.sub(r"\1", output)

    output = htmlmin.minify(output, **{key: opts[key] for key in HTMLMIN_KEYS})

    if opts.get("use_short_doctype"):
        output = _doctype_re.sub("<!DOCTYPE html>", output, count=1)
    return output
