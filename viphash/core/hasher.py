"""
Content addressing for reviewed source files.

A file's address is the SHA-1 of its contents with comments and insignificant
whitespace removed, so reformatting a file never changes its identity.
"""

import hashlib
import re
from pathlib import Path
from typing import List, Tuple, Union

LANGUAGE_BY_EXTENSION = {
    "php": "php",
    "php5": "php",
    "js": "js",
    "html": "markup",
    "htm": "markup",
    "twig": "markup",
}

SUPPORTED_EXTENSIONS = sorted(LANGUAGE_BY_EXTENSION)

_WHITESPACE = " \t\r\n\f\v"
_WHITESPACE_RE = re.compile(r"\s+")
_MARKUP_COMMENT_RE = re.compile(r"<!--.*?-->|\{#.*?#\}", re.DOTALL)
_PHP_TAG_RE = re.compile(r"<\?(?:php|=)?|\?>")


class EmptyContentError(Exception):
    """Raised when nothing significant is left to hash."""
    pass


def _scan_string(text: str, i: int) -> int:
    """Return the index just past the string literal that starts at i."""
    quote = text[i]
    n = len(text)
    j = i + 1
    while j < n:
        if text[j] == "\\":
            j += 2
            continue
        if text[j] == quote:
            return j + 1
        j += 1
    return n


def _strip_code(text: str, i: int, quotes: str, hash_comments: bool,
                php_tags: bool) -> Tuple[List[str], int]:
    """
    Strip comments and collapse whitespace in a code section.

    Stops at a PHP close tag when php_tags is set and returns the collected
    chunks together with the index where scanning stopped.
    """
    out = []
    pending_space = False
    n = len(text)

    while i < n:
        c = text[i]

        if php_tags and text.startswith("?>", i):
            break

        if c in _WHITESPACE:
            pending_space = True
            i += 1
            continue

        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            pending_space = True
            continue

        if text.startswith("//", i) or (hash_comments and c == "#" and not text.startswith("#[", i)):
            end = text.find("\n", i)
            if end < 0:
                end = n
            if php_tags:
                # Single line comments end at a close tag as well
                close = text.find("?>", i, end)
                if close >= 0:
                    end = close
            i = end
            pending_space = True
            continue

        if pending_space and out:
            out.append(" ")
        pending_space = False

        if c in quotes:
            end = _scan_string(text, i)
            out.append(text[i:end])
            i = end
            continue

        out.append(c)
        i += 1

    return out, i


def strip_php(text: str) -> str:
    """Strip like php_strip_whitespace: inline HTML kept, PHP code compacted."""
    out = []
    i = 0
    n = len(text)
    while i < n:
        start = text.find("<?", i)
        if start < 0:
            out.append(text[i:])
            break
        out.append(text[i:start])

        if text.startswith("<?php", start):
            tag_end = start + 5
        elif text.startswith("<?=", start):
            tag_end = start + 3
        else:
            tag_end = start + 2
        out.append(text[start:tag_end])

        chunks, i = _strip_code(text, tag_end, "'\"", hash_comments=True, php_tags=True)
        if chunks:
            out.append(" ")
            out.extend(chunks)
        if text.startswith("?>", i):
            out.append(" ?>")
            i += 2

    return "".join(out)


def strip_js(text: str) -> str:
    chunks, _ = _strip_code(text, 0, "'\"`", hash_comments=False, php_tags=False)
    return "".join(chunks)


def strip_markup(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", _MARKUP_COMMENT_RE.sub(" ", text))


def strip_plain(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text)


STRIPPERS = {
    "php": strip_php,
    "js": strip_js,
    "markup": strip_markup,
    "plain": strip_plain,
}


def extension_of(path: Union[str, Path]) -> str:
    """Text after the last dot of the file name; '.htaccess' has extension 'htaccess'."""
    name = Path(path).name
    return name.rsplit(".", 1)[1].lower() if "." in name else ""


def language_for(path: Union[str, Path]) -> str:
    """Pick the stripping rules for a file from its extension."""
    return LANGUAGE_BY_EXTENSION.get(extension_of(path), "plain")


class ContentHasher:
    """Derives content addresses from file contents."""

    def strip(self, content: bytes, language: str = "php") -> str:
        """Return the semantically significant part of content."""
        stripper = STRIPPERS.get(language, strip_plain)
        # latin-1 maps every byte, so any encoding round-trips unchanged
        return stripper(content.decode("latin-1")).strip()

    def hash(self, content: bytes, language: str = "php") -> str:
        """Hash content into a 40 character content address."""
        stripped = self.strip(content, language)
        significant = _PHP_TAG_RE.sub("", stripped) if language == "php" else stripped
        if not significant.strip():
            raise EmptyContentError("nothing to hash after removing comments and whitespace")
        return hashlib.sha1(stripped.encode("latin-1")).hexdigest()

    def hash_file(self, path: Union[str, Path]) -> str:
        """Read a file and hash it with the rules for its extension."""
        path = Path(path)
        try:
            return self.hash(path.read_bytes(), language_for(path))
        except EmptyContentError:
            raise EmptyContentError(f"{path} has no content left to hash")
